"""
Database-backed answers for deterministic intents.

Each resolver reads the minimal set of records for its intent and renders a
plain-text answer. None of them call a model; every answer is labelled with
the DB_ORIGIN marker so the UI can tell looked-up facts from generated text.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config.budgets import ContextBudget, DEFAULT_BUDGET
from services.intent_classifier import Intent

logger = logging.getLogger(__name__)

DB_ORIGIN = "tool:db"

NO_ORDERS = "No orders found for this contact."
NO_CONVERSATIONS = "No conversations found for this contact."
NO_SHIPPING_ADDRESS = "No shipping address found on the latest order."

ADDRESS_FIELDS = ("shipping_street1", "shipping_street2", "shipping_city", "shipping_state", "shipping_zip")

MONTHS = ['January', 'February', 'March', 'April', 'May', 'June',
          'July', 'August', 'September', 'October', 'November', 'December']


@dataclass
class Answer:
    answer: str
    model: str = DB_ORIGIN


# ----------------------------------------------------------------------
# Formatting helpers (shared with the context builder)
# ----------------------------------------------------------------------

def format_official_address(order: Optional[Dict[str, Any]]) -> Optional[str]:
    """Raw address first, else the parsed fields joined with ', ', else None"""
    if not order:
        return None
    raw = order.get("shipping_address_raw")
    if raw:
        return raw
    parsed = ", ".join(str(order[f]) for f in ADDRESS_FIELDS if order.get(f))
    return parsed or None


def format_date(value: Any) -> str:
    if value is None:
        return "unknown date"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def format_money(value: Any) -> str:
    try:
        amount = float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        amount = 0.0
    return f"${amount:.2f}"


def iso_stamp(value: Optional[datetime]) -> str:
    if value is None:
        return "unknown time"
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_natural_datetime(value: datetime) -> str:
    """Human readable date and time, e.g. 'January 10, 2024 at 3:05 PM'"""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{MONTHS[value.month - 1]} {value.day}, {value.year} at {hour}:{value.minute:02d} {suffix}"


def truncate(text: str, limit: int) -> str:
    """Cut text to at most `limit` characters, marking the cut with a single ellipsis"""
    if len(text) <= limit:
        return text
    if limit <= 0:
        return ""
    return text[:limit - 1].rstrip() + "…"


def speaker(message: Dict[str, Any]) -> str:
    if message.get("sender"):
        return message["sender"]
    return "Customer" if message.get("direction") == "inbound" else "Agent"


def format_order_line(order: Dict[str, Any]) -> str:
    return " • ".join([
        str(order.get("order_id")),
        format_date(order.get("order_date")),
        order.get("status") or "—",
        format_money(order.get("order_total")),
    ])


def format_message_line(message: Dict[str, Any], char_limit: int) -> str:
    # One line per message so logs can be trimmed line by line
    body = " ".join((message.get("body") or "(no content)").split())
    body = truncate(body, char_limit)
    channel = message.get("channel") or "msg"
    return f"[{iso_stamp(message.get('occurred_at'))}] {speaker(message)} ({channel}): {body}"


# ----------------------------------------------------------------------
# Resolvers
# ----------------------------------------------------------------------

class FactResolver:
    """Answers deterministic intents from the relational store"""

    def __init__(self, store, budget: ContextBudget = DEFAULT_BUDGET):
        self.store = store
        self.budget = budget
        self._handlers: Dict[str, Callable[[str, Intent], Awaitable[Answer]]] = {
            "shipping_address": self.shipping_address,
            "last_order_total": self.last_order_total,
            "tracking": self.tracking,
            "last_n_orders": self.last_n_orders,
            "last_message": self.last_message,
            "last_contact_date": self.last_contact_date,
            "list_recent": self.list_recent,
        }

    def handles(self, intent: Intent) -> bool:
        return intent.type in self._handlers

    async def resolve(self, contact_id: str, intent: Intent) -> Answer:
        handler = self._handlers[intent.type]
        logger.info(f"🔎 Resolving {intent.type} from database for contact {contact_id}")
        return await handler(contact_id, intent)

    async def _latest_order(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self.store.get_latest_order, contact_id)

    async def _messages(self, contact_id: str, limit: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.store.get_recent_messages, contact_id, limit)

    async def shipping_address(self, contact_id: str, intent: Intent) -> Answer:
        order = await self._latest_order(contact_id)
        if not order:
            return Answer(NO_ORDERS)
        address = format_official_address(order)
        if not address:
            return Answer(NO_SHIPPING_ADDRESS)
        return Answer(
            f"Official shipping address (latest order {order['order_id']} on "
            f"{format_date(order.get('order_date'))}):\n{address}"
        )

    async def last_order_total(self, contact_id: str, intent: Intent) -> Answer:
        order = await self._latest_order(contact_id)
        if not order:
            return Answer(NO_ORDERS)
        parts = [
            f"Latest order {order['order_id']} on {format_date(order.get('order_date'))}",
            f"Total: {format_money(order.get('order_total'))}",
        ]
        if order.get("invoice_link"):
            parts.append(f"Invoice: {order['invoice_link']}")
        return Answer(" • ".join(parts))

    async def tracking(self, contact_id: str, intent: Intent) -> Answer:
        order = await self._latest_order(contact_id)
        if not order:
            return Answer(NO_ORDERS)
        if not order.get("tracking_number") and not order.get("tracking_link"):
            return Answer(f"Latest order {order['order_id']} has no tracking recorded.")
        lines = [f"Latest order {order['order_id']}:"]
        if order.get("tracking_number"):
            lines.append(f"Tracking #: {order['tracking_number']}")
        if order.get("tracking_link"):
            lines.append(f"Link: {order['tracking_link']}")
        return Answer("\n".join(lines))

    async def last_n_orders(self, contact_id: str, intent: Intent) -> Answer:
        n = intent.n or 3
        orders = await asyncio.to_thread(self.store.get_recent_orders, contact_id, n)
        orders = orders[:n]
        if not orders:
            return Answer(NO_ORDERS)
        lines = [format_order_line(o) for o in orders]
        return Answer(f"Last {len(orders)} orders:\n" + "\n".join(lines))

    async def last_message(self, contact_id: str, intent: Intent) -> Answer:
        messages = await self._messages(contact_id, 1)
        if not messages:
            return Answer(NO_CONVERSATIONS)
        m = messages[0]
        header = " • ".join([
            iso_stamp(m.get("occurred_at")),
            m.get("channel") or "",
            m.get("direction") or "",
        ])
        if m.get("sender"):
            header += f" • {m['sender']}"
        return Answer(f"{header}\n{m.get('body') or '(no body)'}")

    async def last_contact_date(self, contact_id: str, intent: Intent) -> Answer:
        messages = await self._messages(contact_id, 1)
        if not messages:
            return Answer(NO_CONVERSATIONS)
        occurred_at = messages[0].get("occurred_at")
        when = format_natural_datetime(occurred_at) if occurred_at else "(no timestamp)"
        return Answer(f"Last contact: {when}")

    async def list_recent(self, contact_id: str, intent: Intent) -> Answer:
        n = intent.n or 10
        messages = (await self._messages(contact_id, n))[:n]
        if not messages:
            return Answer(NO_CONVERSATIONS)
        lines = [format_message_line(m, self.budget.message_char_limit) for m in messages]
        return Answer(f"Last {len(messages)} messages:\n" + "\n".join(lines))
