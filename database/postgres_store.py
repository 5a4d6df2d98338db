"""PostgreSQL store for contacts, orders, messages and chat sessions"""

import logging
import uuid
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from sqlalchemy import (
    create_engine, Column, Integer, String, Text, DateTime, Date, JSON, Numeric,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects import postgresql, sqlite
from config.settings import DATABASE_URL
from utils.retry import retry_db_operation
from utils.error_handler import DatabaseError

logger = logging.getLogger(__name__)

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Contact(Base):
    """CRM contact, keyed internally by UUID and externally by the CRM id"""
    __tablename__ = "contacts"

    id = Column(String(36), primary_key=True, default=_new_id)
    external_id = Column(String(255), unique=True, nullable=False)
    name = Column(String(255))
    email = Column(String(255))
    phone = Column(String(50))
    company = Column(String(255))
    last_activity_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Message(Base):
    """Customer conversation message ingested from the CRM"""
    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversations_contact_occurred", "contact_id", "occurred_at"),
    )

    id = Column(Integer, primary_key=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    external_contact_id = Column(String(255))
    external_message_id = Column(String(255), unique=True, nullable=False)
    conversation_id = Column(String(255))
    channel = Column(String(50))
    direction = Column(String(10))  # inbound/outbound
    sender = Column(String(255))
    message_type = Column(String(50))
    status = Column(String(50))
    body = Column(Text)
    attachments = Column(JSON)
    occurred_at = Column(DateTime)
    synced_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow)


class Order(Base):
    """Customer order ingested from the CRM"""
    __tablename__ = "orders"
    __table_args__ = (
        Index("idx_orders_contact_date", "contact_id", "order_date"),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(String(255), unique=True, nullable=False)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    external_contact_id = Column(String(255))
    status = Column(String(50))
    order_date = Column(Date)
    order_total = Column(Numeric(12, 2, asdecimal=False))
    tax = Column(Numeric(12, 2, asdecimal=False))
    tips = Column(Numeric(12, 2, asdecimal=False))
    shipping_cost = Column(Numeric(12, 2, asdecimal=False))
    invoice_link = Column(Text)
    invoice_description = Column(Text)
    invoice_line_items = Column(Text)  # plain text
    shipping_address_raw = Column(Text)
    shipping_street1 = Column(String(255))
    shipping_street2 = Column(String(255))
    shipping_city = Column(String(255))
    shipping_state = Column(String(100))
    shipping_zip = Column(String(20))
    tracking_number = Column(String(255))
    tracking_link = Column(Text)
    terms_notes = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)


class ChatSession(Base):
    """Agent chat session about one contact"""
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=_new_id)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    title = Column(String(255))
    model_tier = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ChatTurn(Base):
    """Append-only turn in a chat session"""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(36), ForeignKey("chat_sessions.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # user/assistant
    content = Column(Text, nullable=False)
    model = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)


class ContactSummary(Base):
    """Daily AI summary of a contact's activity"""
    __tablename__ = "contact_summaries"
    __table_args__ = (
        UniqueConstraint("contact_id", "summary_date", "summary_type", name="uq_contact_summary_day"),
    )

    id = Column(Integer, primary_key=True)
    contact_id = Column(String(36), ForeignKey("contacts.id"), nullable=False)
    summary_date = Column(Date, nullable=False)
    summary_type = Column(String(20), nullable=False, default="daily")
    conversation_summary = Column(Text)
    order_summary = Column(Text)
    key_topics = Column(JSON, default=list)
    action_items = Column(JSON, default=list)
    message_count = Column(Integer, default=0)
    order_count = Column(Integer, default=0)
    total_order_value = Column(Numeric(12, 2, asdecimal=False), default=0)
    last_message_at = Column(DateTime)
    model_used = Column(String(100))
    input_tokens_used = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)


def to_dict(row) -> Dict[str, Any]:
    """Convert an ORM row into a plain dictionary"""
    return {column.name: getattr(row, column.key) for column in row.__table__.columns}


class PostgresStore:
    """PostgreSQL store for CRM records and chat sessions"""

    def __init__(self, database_url: str = DATABASE_URL):
        """Initialize database connection with production-ready pooling"""
        try:
            if database_url.startswith("sqlite") and ":memory:" in database_url:
                # Single shared connection so in-memory databases survive across sessions
                engine_config = {
                    'poolclass': StaticPool,
                    'connect_args': {'check_same_thread': False}
                }
            elif database_url.startswith("sqlite"):
                engine_config = {'connect_args': {'check_same_thread': False}}
            else:
                engine_config = {
                    # Pool settings
                    'pool_size': 20,  # Number of connections to maintain
                    'max_overflow': 40,  # Maximum overflow connections
                    'pool_timeout': 30,  # Seconds to wait for connection
                    'pool_recycle': 3600,  # Recycle connections after 1 hour
                    'pool_pre_ping': True,  # Verify connections before using
                    'pool_use_lifo': True,

                    # Connection settings
                    'connect_args': {
                        'connect_timeout': 10,
                        'application_name': 'crm_chat',
                        'options': '-c statement_timeout=30000'  # 30 second query timeout
                    }
                }

            self.engine = create_engine(database_url, echo=False, **engine_config)
            self.SessionLocal = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False
            )

            # Create tables if they don't exist
            Base.metadata.create_all(self.engine)
            logger.info(f"✓ Database connection established ({self.engine.dialect.name})")
        except Exception as e:
            logger.error(f"❌ Failed to connect to database: {e}")
            raise DatabaseError("Failed to connect to database", details={"error": str(e)}) from e

    def get_session(self) -> Session:
        """Get database session"""
        return self.SessionLocal()

    def _insert(self, model):
        """Dialect-specific INSERT supporting ON CONFLICT"""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    @retry_db_operation()
    def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        """Get a contact by internal id"""
        session = self.get_session()
        try:
            contact = session.get(Contact, contact_id)
            return to_dict(contact) if contact else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting contact {contact_id}: {e}")
            raise DatabaseError("Failed to load contact", details={"contact_id": contact_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def find_contact_id(self, external_id: str) -> Optional[str]:
        """Resolve the internal contact id for a CRM (external) id"""
        session = self.get_session()
        try:
            row = session.query(Contact.id).filter(Contact.external_id == external_id).first()
            return row[0] if row else None
        except SQLAlchemyError as e:
            logger.error(f"Error resolving contact {external_id}: {e}")
            raise DatabaseError("Failed to resolve contact", details={"external_id": external_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def get_or_create_contact(self, external_id: str, profile: Optional[Dict[str, Any]] = None) -> str:
        """
        Get or create a contact by CRM id and return its internal id

        Only profile fields that are present (not None) overwrite stored values,
        so partial webhook payloads never blank out an existing contact.
        """
        profile = profile or {}
        fields = {
            key: profile[key]
            for key in ("name", "email", "phone", "company", "last_activity_at")
            if profile.get(key) is not None
        }

        session = self.get_session()
        try:
            stmt = self._insert(Contact).values(id=_new_id(), external_id=external_id, **fields)
            if fields:
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Contact.external_id],
                    set_={**fields, "updated_at": datetime.utcnow()}
                )
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=[Contact.external_id])
            session.execute(stmt)
            session.commit()

            contact_id = session.query(Contact.id).filter(Contact.external_id == external_id).scalar()
            logger.debug(f"Resolved contact {external_id} -> {contact_id}")
            return contact_id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error upserting contact {external_id}: {e}")
            raise DatabaseError("Failed to upsert contact", details={"external_id": external_id}) from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @retry_db_operation()
    def get_recent_orders(self, contact_id: str, limit: int = 5, since: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Get the most recent orders for a contact

        Sorted by order_date desc (nulls last) with created_at desc as tie-break.
        """
        session = self.get_session()
        try:
            query = session.query(Order).filter(Order.contact_id == contact_id)
            if since is not None:
                query = query.filter(Order.order_date >= since)
            orders = (
                query
                .order_by(Order.order_date.desc().nulls_last(), Order.created_at.desc())
                .limit(limit)
                .all()
            )
            return [to_dict(o) for o in orders]
        except SQLAlchemyError as e:
            logger.error(f"Error getting orders for {contact_id}: {e}")
            raise DatabaseError("Failed to load orders", details={"contact_id": contact_id}) from e
        finally:
            session.close()

    def get_latest_order(self, contact_id: str) -> Optional[Dict[str, Any]]:
        """Get the latest order for a contact"""
        orders = self.get_recent_orders(contact_id, limit=1)
        return orders[0] if orders else None

    @retry_db_operation()
    def upsert_order(self, payload: Dict[str, Any]):
        """Insert or update an order keyed by its CRM order_id"""
        values = dict(payload)
        session = self.get_session()
        try:
            stmt = self._insert(Order).values(**values)
            updates = {k: v for k, v in values.items() if k != "order_id"}
            stmt = stmt.on_conflict_do_update(index_elements=[Order.order_id], set_=updates)
            session.execute(stmt)
            session.commit()
            logger.debug(f"Upserted order {payload.get('order_id')}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error upserting order: {e}")
            raise DatabaseError("Failed to upsert order", details={"order_id": payload.get("order_id")}) from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @retry_db_operation()
    def get_recent_messages(self, contact_id: str, limit: int = 10, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Get the most recent messages for a contact

        Sorted by occurred_at desc (nulls last) with created_at desc as tie-break.
        """
        session = self.get_session()
        try:
            query = session.query(Message).filter(Message.contact_id == contact_id)
            if since is not None:
                query = query.filter(Message.occurred_at >= since)
            messages = (
                query
                .order_by(Message.occurred_at.desc().nulls_last(), Message.created_at.desc())
                .limit(limit)
                .all()
            )
            return [to_dict(m) for m in messages]
        except SQLAlchemyError as e:
            logger.error(f"Error getting messages for {contact_id}: {e}")
            raise DatabaseError("Failed to load messages", details={"contact_id": contact_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def get_messages_between(self, contact_id: str, since: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        """Get messages since a cutoff in chronological order"""
        session = self.get_session()
        try:
            messages = (
                session.query(Message)
                .filter(Message.contact_id == contact_id, Message.occurred_at >= since)
                .order_by(Message.occurred_at.asc(), Message.created_at.asc())
                .limit(limit)
                .all()
            )
            return [to_dict(m) for m in messages]
        except SQLAlchemyError as e:
            logger.error(f"Error getting messages for {contact_id}: {e}")
            raise DatabaseError("Failed to load messages", details={"contact_id": contact_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def upsert_message(self, payload: Dict[str, Any]):
        """Insert or update a message keyed by its CRM message id"""
        session = self.get_session()
        try:
            stmt = self._insert(Message).values(**payload)
            updates = {k: v for k, v in payload.items() if k != "external_message_id"}
            stmt = stmt.on_conflict_do_update(index_elements=[Message.external_message_id], set_=updates)
            session.execute(stmt)
            session.commit()
            logger.debug(f"Upserted message {payload.get('external_message_id')}")
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error upserting message: {e}")
            raise DatabaseError(
                "Failed to upsert message",
                details={"external_message_id": payload.get("external_message_id")}
            ) from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Chat sessions
    # ------------------------------------------------------------------

    @retry_db_operation()
    def get_chat_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get a chat session by id"""
        session = self.get_session()
        try:
            chat_session = session.get(ChatSession, session_id)
            return to_dict(chat_session) if chat_session else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting session {session_id}: {e}")
            raise DatabaseError("Failed to load session", details={"session_id": session_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def get_or_create_session(self, session_id: str, contact_id: str, model_tier: Optional[str] = None) -> Dict[str, Any]:
        """
        Get a chat session, creating it on first use

        Args:
            session_id: Client-supplied session id
            contact_id: Contact the session is about
            model_tier: Tier of the first question

        Returns:
            dict: The stored session (its contact_id may differ from the one given)
        """
        session = self.get_session()
        try:
            chat_session = session.get(ChatSession, session_id)
            if chat_session is None:
                chat_session = ChatSession(id=session_id, contact_id=contact_id, model_tier=model_tier)
                session.add(chat_session)
                session.commit()
                logger.info(f"Created chat session {session_id} for contact {contact_id}")
            return to_dict(chat_session)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error loading session {session_id}: {e}")
            raise DatabaseError("Failed to load session", details={"session_id": session_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def append_turn(self, session_id: str, role: str, content: str, model: Optional[str] = None):
        """Append a turn to a session log and bump the session's updated_at"""
        session = self.get_session()
        try:
            session.add(ChatTurn(session_id=session_id, role=role, content=content, model=model))
            chat_session = session.get(ChatSession, session_id)
            if chat_session:
                chat_session.updated_at = datetime.utcnow()
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error appending turn to {session_id}: {e}")
            raise DatabaseError("Failed to save chat turn", details={"session_id": session_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def get_turns(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Get session turns in chronological order

        Args:
            session_id: Chat session id
            limit: If set, only the most recent `limit` turns (still oldest first)
        """
        session = self.get_session()
        try:
            query = session.query(ChatTurn).filter(ChatTurn.session_id == session_id)
            if limit is not None:
                turns = query.order_by(ChatTurn.created_at.desc(), ChatTurn.id.desc()).limit(limit).all()
                turns = list(reversed(turns))
            else:
                turns = query.order_by(ChatTurn.created_at.asc(), ChatTurn.id.asc()).all()
            return [
                {
                    "role": t.role,
                    "content": t.content,
                    "model": t.model,
                    "created_at": t.created_at
                }
                for t in turns
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error getting turns for {session_id}: {e}")
            raise DatabaseError("Failed to load chat turns", details={"session_id": session_id}) from e
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    @retry_db_operation()
    def get_summary(self, contact_id: str, summary_date: date, summary_type: str = "daily") -> Optional[Dict[str, Any]]:
        """Get a stored contact summary"""
        session = self.get_session()
        try:
            summary = (
                session.query(ContactSummary)
                .filter(
                    ContactSummary.contact_id == contact_id,
                    ContactSummary.summary_date == summary_date,
                    ContactSummary.summary_type == summary_type
                )
                .first()
            )
            return to_dict(summary) if summary else None
        except SQLAlchemyError as e:
            logger.error(f"Error getting summary for {contact_id}: {e}")
            raise DatabaseError("Failed to fetch summary", details={"contact_id": contact_id}) from e
        finally:
            session.close()

    @retry_db_operation()
    def upsert_summary(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert or replace the summary for (contact, date, type)"""
        session = self.get_session()
        try:
            stmt = self._insert(ContactSummary).values(**record)
            keys = ("contact_id", "summary_date", "summary_type")
            stmt = stmt.on_conflict_do_update(
                index_elements=[ContactSummary.contact_id, ContactSummary.summary_date, ContactSummary.summary_type],
                set_={k: v for k, v in record.items() if k not in keys}
            )
            session.execute(stmt)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error saving summary: {e}")
            raise DatabaseError("Failed to save summary", details={"contact_id": record.get("contact_id")}) from e
        finally:
            session.close()

        return self.get_summary(record["contact_id"], record["summary_date"], record.get("summary_type", "daily"))

    def get_pool_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics"""
        try:
            pool = self.engine.pool
            return {
                "status": "connected",
                "dialect": self.engine.dialect.name,
                "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else None
            }
        except Exception as e:
            logger.error(f"Error getting pool stats: {e}")
            return {"status": "error", "error": str(e)}

    def close(self):
        """Close database connection and cleanup pool"""
        self.engine.dispose()
        logger.info("Database connection pool closed")


postgres_store: Optional[PostgresStore] = None


def get_postgres_store() -> PostgresStore:
    """Get or create the shared store instance"""
    global postgres_store
    if postgres_store is None:
        postgres_store = PostgresStore()
    return postgres_store
