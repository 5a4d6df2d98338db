"""
Daily contact summaries.

One summary per contact and day, built from the last 24 hours of messages and
orders. Summaries are cached in contact_summaries and only regenerated on
request; a day without activity gets a minimal summary without a model call.
"""

import asyncio
import json
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from bot.model_dispatcher import ModelDispatcher, NO_ANSWER, model_for_tier
from config.budgets import ContextBudget, DEFAULT_BUDGET
from services.fact_resolvers import speaker, truncate
from utils.error_handler import InvalidRequestError

logger = logging.getLogger(__name__)

SUMMARY_CUTOFF_HOURS = 24
SUMMARY_MESSAGE_LIMIT = 100
SUMMARY_ORDER_LIMIT = 20
SUMMARY_TEMPERATURE = 0.3
SUMMARY_TIER = "light"

NO_CONVERSATION_SUMMARY = "No significant conversations."
NO_ORDER_SUMMARY = "No orders to summarize."

SUMMARY_SYSTEM_PROMPT = """You are a CRM assistant that creates concise daily summaries of customer interactions.
Focus on: key topics discussed, action items, order details, and important context.
Keep summaries brief but comprehensive. Extract specific action items and topics.
Format your response as JSON with these exact keys:
{
  "conversation_summary": "Brief paragraph summarizing conversations",
  "order_summary": "Brief paragraph about orders if any",
  "key_topics": ["topic1", "topic2"],
  "action_items": ["item1", "item2"]
}"""


def build_summary_prompt(messages: List[Dict[str, Any]], orders: List[Dict[str, Any]]) -> str:
    lines = ["Create a daily summary for this customer based on the following activity:", ""]

    if messages:
        lines.append("RECENT CONVERSATIONS:")
        for m in messages:
            when = m["occurred_at"].strftime("%Y-%m-%d %H:%M") if m.get("occurred_at") else "unknown time"
            lines.append(f"[{when}] {speaker(m)}: {truncate(m.get('body') or '', 500)}")
        lines.append("")

    if orders:
        lines.append("RECENT ORDERS:")
        for o in orders:
            lines.append(f"Order #{o['order_id']} - {o.get('status')} - ${o.get('order_total')} - {o.get('order_date')}")
            if o.get("shipping_address_raw"):
                lines.append(f"Shipping: {o['shipping_address_raw'][:100]}")

    return "\n".join(lines)


def parse_summary(text: str) -> Dict[str, Any]:
    """Parse the model's JSON reply; unusable replies yield an empty dict"""
    if not text or text == NO_ANSWER:
        return {}
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("⚠️ Summary reply is not valid JSON")
        return {}
    return data if isinstance(data, dict) else {}


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v]


class SummaryService:
    """Generates and caches daily contact summaries"""

    def __init__(self, store, dispatcher: ModelDispatcher, budget: ContextBudget = DEFAULT_BUDGET):
        self.store = store
        self.dispatcher = dispatcher
        self.budget = budget

    async def get_summary(self, contact_id: str, summary_date: Optional[date] = None) -> Optional[Dict[str, Any]]:
        if not contact_id:
            raise InvalidRequestError("contactId required")
        summary_date = summary_date or datetime.utcnow().date()
        return await asyncio.to_thread(self.store.get_summary, contact_id, summary_date)

    async def generate(self, contact_id: str, force_regenerate: bool = False, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Return today's summary, generating it if needed

        Args:
            contact_id: Internal contact id
            force_regenerate: Ignore a cached summary for today
            now: Reference time (UTC)

        Returns:
            dict: {"summary": record, "cached": bool, "tokens_used": int}
        """
        if not contact_id:
            raise InvalidRequestError("contactId required")

        now = now or datetime.utcnow()
        today = now.date()

        if not force_regenerate:
            existing = await asyncio.to_thread(self.store.get_summary, contact_id, today)
            if existing:
                logger.info(f"✓ Using cached summary for {contact_id} ({today})")
                return {"summary": existing, "cached": True, "tokens_used": 0}

        cutoff = now - timedelta(hours=SUMMARY_CUTOFF_HOURS)
        messages, orders = await asyncio.gather(
            asyncio.to_thread(self.store.get_messages_between, contact_id, cutoff, SUMMARY_MESSAGE_LIMIT),
            asyncio.to_thread(self.store.get_recent_orders, contact_id, SUMMARY_ORDER_LIMIT, cutoff.date()),
        )

        if not messages and not orders:
            record = {
                "contact_id": contact_id,
                "summary_date": today,
                "summary_type": "daily",
                "conversation_summary": "No recent conversations in the last 24 hours.",
                "order_summary": "No recent orders in the last 24 hours.",
                "key_topics": [],
                "action_items": [],
                "message_count": 0,
                "order_count": 0,
                "total_order_value": 0,
                "last_message_at": None,
                "model_used": "none",
                "input_tokens_used": 0,
            }
            saved = await asyncio.to_thread(self.store.upsert_summary, record)
            logger.info(f"✓ No activity for {contact_id}; stored minimal summary")
            return {"summary": saved, "cached": False, "tokens_used": 0}

        model_id = model_for_tier(SUMMARY_TIER)
        reply = await self.dispatcher.answer(
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            user_prompt=build_summary_prompt(messages, orders),
            model_id=model_id,
            max_tokens=self.budget.max_tokens("general"),
            temperature=SUMMARY_TEMPERATURE,
            response_format={"type": "json_object"}
        )
        data = parse_summary(reply.answer)
        tokens_used = int(reply.usage.get("prompt_tokens") or 0)

        record = {
            "contact_id": contact_id,
            "summary_date": today,
            "summary_type": "daily",
            "conversation_summary": data.get("conversation_summary") or NO_CONVERSATION_SUMMARY,
            "order_summary": data.get("order_summary") or NO_ORDER_SUMMARY,
            "key_topics": _string_list(data.get("key_topics")),
            "action_items": _string_list(data.get("action_items")),
            "message_count": len(messages),
            "order_count": len(orders),
            "total_order_value": sum(float(o.get("order_total") or 0) for o in orders),
            "last_message_at": messages[-1].get("occurred_at") if messages else None,
            "model_used": model_id,
            "input_tokens_used": tokens_used,
        }
        saved = await asyncio.to_thread(self.store.upsert_summary, record)
        logger.info(f"✅ Generated summary for {contact_id} with {model_id}")
        return {"summary": saved, "cached": False, "tokens_used": tokens_used}
