"""
CRM webhook ingestion.

Orders and conversation messages arrive keyed by CRM (external) ids. Contacts
are resolved or created by external id, and rows are upserted on their
external key, so replaying the same webhook never creates duplicates.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from utils.error_handler import InvalidRequestError

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("name", "email", "phone", "company", "last_activity_at")

ORDER_FIELDS = (
    "status", "order_date", "order_total", "tax", "tips", "shipping_cost",
    "invoice_link", "invoice_description", "invoice_line_items",
    "shipping_address_raw", "shipping_street1", "shipping_street2",
    "shipping_city", "shipping_state", "shipping_zip",
    "tracking_number", "tracking_link", "terms_notes",
)
ORDER_MONEY_FIELDS = ("order_total", "tax", "tips", "shipping_cost")

MESSAGE_FIELDS = (
    "conversation_id", "channel", "direction", "sender", "message_type",
    "status", "body", "attachments", "occurred_at", "synced_at",
)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise InvalidRequestError(f"Invalid timestamp: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise InvalidRequestError(f"Invalid date: {value}")
    return parse_datetime(text).date()


def parse_amount(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace("$", "").replace(",", ""))
    except ValueError:
        raise InvalidRequestError(f"Invalid amount: {value}")


def contact_profile(contact: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    contact = contact or {}
    profile = {k: contact.get(k) for k in CONTACT_FIELDS if contact.get(k) not in (None, "")}
    if "last_activity_at" in profile:
        profile["last_activity_at"] = parse_datetime(profile["last_activity_at"])
    return profile


class IngestionService:
    """Upserts CRM orders and messages into the store"""

    def __init__(self, store):
        self.store = store

    async def ingest_order(self, external_contact_id: Optional[str], order: Optional[Dict[str, Any]], contact: Optional[Dict[str, Any]] = None) -> str:
        """
        Upsert an order (and its contact)

        Returns:
            str: Internal contact id
        """
        if not external_contact_id:
            raise InvalidRequestError("ghl_contact_id required")
        if not order or not order.get("order_id"):
            raise InvalidRequestError("order.order_id required")

        contact_id = await asyncio.to_thread(
            self.store.get_or_create_contact, external_contact_id, contact_profile(contact)
        )

        payload = {k: order.get(k) for k in ORDER_FIELDS}
        payload["order_date"] = parse_date(payload["order_date"])
        for key in ORDER_MONEY_FIELDS:
            payload[key] = parse_amount(payload[key])
        payload.update({
            "order_id": str(order["order_id"]),
            "contact_id": contact_id,
            "external_contact_id": external_contact_id,
        })

        await asyncio.to_thread(self.store.upsert_order, payload)
        logger.info(f"✓ Ingested order {payload['order_id']} for contact {external_contact_id}")
        return contact_id

    async def ingest_conversation(self, external_contact_id: Optional[str], message: Optional[Dict[str, Any]], contact: Optional[Dict[str, Any]] = None) -> str:
        """
        Upsert a conversation message

        A contact is created only when the payload carries contact data with a
        name; otherwise the contact must already exist.

        Returns:
            str: Internal contact id
        """
        if not external_contact_id:
            raise InvalidRequestError("ghl_contact_id required")
        if not message or not message.get("ghl_message_id"):
            raise InvalidRequestError("message.ghl_message_id required")

        if contact and contact.get("name"):
            contact_id = await asyncio.to_thread(
                self.store.get_or_create_contact, external_contact_id, contact_profile(contact)
            )
        else:
            contact_id = await asyncio.to_thread(self.store.find_contact_id, external_contact_id)
            if not contact_id:
                raise InvalidRequestError(
                    f"Contact not found for GHL ID: {external_contact_id}. Import contacts first."
                )

        payload = {k: message.get(k) for k in MESSAGE_FIELDS}
        payload["occurred_at"] = parse_datetime(payload["occurred_at"])
        payload["synced_at"] = parse_datetime(payload["synced_at"])
        payload.update({
            "external_message_id": str(message["ghl_message_id"]),
            "contact_id": contact_id,
            "external_contact_id": external_contact_id,
        })

        await asyncio.to_thread(self.store.upsert_message, payload)
        logger.info(f"✓ Ingested message {payload['external_message_id']} for contact {external_contact_id}")
        return contact_id
