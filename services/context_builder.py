"""
Context assembly for model-backed answers.

Loads a bounded window of a contact's recent messages and orders, renders
them as text, and trims the result to the prompt budget of the chosen tier.
Per-message and per-section caps come from ContextBudget.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from config.budgets import ContextBudget, DEFAULT_BUDGET
from services.fact_resolvers import format_message_line, format_order_line, truncate

logger = logging.getLogger(__name__)

NO_RECENT_ORDERS = "(no recent orders)"
NO_RECENT_MESSAGES = "(no recent messages)"

PROFILE_FIELDS = (
    ("Name", "name"),
    ("Email", "email"),
    ("Phone", "phone"),
    ("Company", "company"),
    ("Last Activity", "last_activity_at"),
)


@dataclass
class ContactContext:
    """Textual snapshot of a contact handed to the model"""
    profile_text: str
    orders_text: str
    messages_log: str
    message_count: int
    messages: List[Dict[str, Any]] = field(default_factory=list, repr=False)

    def render(self) -> str:
        return (
            f"{self.profile_text}\n\n"
            f"Recent orders:\n{self.orders_text}\n\n"
            f"Recent messages (oldest first):\n{self.messages_log}"
        )

    @property
    def shown_count(self) -> int:
        """Messages actually present in messages_log (after any fit)"""
        if not self.message_count or not self.messages_log:
            return 0
        return self.messages_log.count("\n") + 1

    def fit(self, max_chars: int, budget: ContextBudget = DEFAULT_BUDGET) -> "ContactContext":
        """
        Trim the context so render() stays within max_chars.

        The profile keeps its head (name and email come first), orders keep
        their newest lines, and messages keep the most recent lines.
        """
        # Fixed labels added by render()
        overhead = len(self.render()) - len(self.profile_text) - len(self.orders_text) - len(self.messages_log)
        available = max(max_chars - overhead, 0)

        profile = truncate(self.profile_text, int(available * budget.profile_share))
        orders_cap = int(available * budget.orders_share)
        orders = _keep_lines(self.orders_text.split("\n"), orders_cap, head=True)
        if not orders and len(NO_RECENT_ORDERS) <= orders_cap:
            orders = NO_RECENT_ORDERS

        remaining = max(available - len(profile) - len(orders), 0)
        if self.message_count:
            messages_log = _keep_lines(self.messages_log.split("\n"), remaining, head=False)
            kept = messages_log.count("\n") + 1 if messages_log else 0
            if kept < self.message_count:
                logger.info(f"✂️ Dropped {self.message_count - kept} older messages to fit {max_chars} chars")
        else:
            messages_log = self.messages_log if len(self.messages_log) <= remaining else ""

        return ContactContext(
            profile_text=profile,
            orders_text=orders,
            messages_log=messages_log,
            message_count=self.message_count,
            messages=self.messages,
        )


def _keep_lines(lines: List[str], limit: int, head: bool) -> str:
    """Keep whole lines from the head (or tail) while they fit in `limit` chars"""
    ordered = lines if head else list(reversed(lines))
    kept: List[str] = []
    used = 0
    for line in ordered:
        cost = len(line) + (1 if kept else 0)
        if used + cost > limit:
            if not kept and limit > 0:
                # Not even one whole line fits: keep a truncated one
                kept.append(truncate(line, limit))
            break
        kept.append(line)
        used += cost
    if not head:
        kept.reverse()
    return "\n".join(kept)


def format_profile(contact: Optional[Dict[str, Any]]) -> str:
    contact = contact or {}
    lines = ["Customer:"]
    for label, key in PROFILE_FIELDS:
        value = contact.get(key)
        if isinstance(value, datetime):
            value = value.isoformat()
        lines.append(f"- {label}: {value if value not in (None, '') else 'Unknown'}")
    return "\n".join(lines)


def format_orders(orders: List[Dict[str, Any]]) -> str:
    if not orders:
        return NO_RECENT_ORDERS
    return "\n".join(format_order_line(o) for o in orders)


def format_message_log(messages: List[Dict[str, Any]], char_limit: int) -> str:
    """Render messages (given newest first) as an oldest-to-newest log"""
    if not messages:
        return NO_RECENT_MESSAGES
    return "\n".join(format_message_line(m, char_limit) for m in reversed(messages))


class ContextBuilder:
    """Builds bounded contact context from the store"""

    def __init__(self, store, budget: ContextBudget = DEFAULT_BUDGET):
        self.store = store
        self.budget = budget

    async def build_context(self, contact_id: str, contact: Optional[Dict[str, Any]]) -> ContactContext:
        """
        Gather profile, recent orders and recent messages for a contact

        Args:
            contact_id: Internal contact id
            contact: Contact header (name, email, company, ...)

        Returns:
            ContactContext with rendered sections
        """
        since = datetime.utcnow() - timedelta(days=self.budget.lookback_days)

        # Both reads are independent; run them at the same time
        messages, orders = await asyncio.gather(
            asyncio.to_thread(self.store.get_recent_messages, contact_id, self.budget.max_messages, since),
            asyncio.to_thread(self.store.get_recent_orders, contact_id, self.budget.max_orders),
        )
        messages = messages[:self.budget.max_messages]
        orders = orders[:self.budget.max_orders]

        logger.info(f"✅ Context for {contact_id}: {len(messages)} messages, {len(orders)} orders")

        return ContactContext(
            profile_text=format_profile(contact),
            orders_text=format_orders(orders),
            messages_log=format_message_log(messages, self.budget.message_char_limit),
            message_count=len(messages),
            messages=messages,
        )

    async def recent_messages(self, contact_id: str, n: int) -> ContactContext:
        """Context made only of the last n messages (no lookback window)"""
        messages = await asyncio.to_thread(self.store.get_recent_messages, contact_id, n)
        messages = messages[:n]
        return ContactContext(
            profile_text="",
            orders_text="",
            messages_log=format_message_log(messages, self.budget.message_char_limit),
            message_count=len(messages),
            messages=messages,
        )
