"""
Conversation status analysis.

Labels a conversation PAID, ACTIVE, DORMANT or UNSURE. A small model reads the
conversation; when the completion API fails, or answers with something outside
the label set, the label is derived deterministically from payment keywords
and the days elapsed since the last message.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from bot.model_dispatcher import ModelDispatcher, NO_ANSWER
from config.budgets import ContextBudget, DEFAULT_BUDGET
from config.settings import STATUS_MODEL
from utils.error_handler import CompletionAPIError

logger = logging.getLogger(__name__)

PAID = "PAID"
ACTIVE = "ACTIVE"
DORMANT = "DORMANT"
UNSURE = "UNSURE"
STATUSES = (PAID, ACTIVE, DORMANT, UNSURE)

DORMANT_AFTER_DAYS = 30
STATUS_TEMPERATURE = 0.1
MAX_ANALYZED_MESSAGES = 50

PAYMENT_KEYWORDS = re.compile(
    r"\b(payment received|order placed|paid|purchased|payment confirmed|transaction complete)\b", re.I
)

STATUS_SYSTEM_PROMPT = "You classify customer conversations. Reply with a single status word."

STATUS_PROMPT = """Analyze this conversation and return ONLY one status word:
- PAID: if you find words like "payment received", "order placed", "paid", "purchased", "payment confirmed", "transaction complete"
- ACTIVE: if last message was less than {threshold} days ago ({days} days ago) and no payment mentioned
- DORMANT: if last message was {threshold} or more days ago ({days} days ago) and no payment mentioned
- UNSURE: if cannot determine

Today is {today}.
Days since last message: {days}

Conversation:
{conversation}

Return only the status word (PAID, ACTIVE, DORMANT, or UNSURE)."""


@dataclass
class StatusResult:
    status: str
    source: str  # "model" or "fallback"
    days_since_last_message: Optional[int] = None


def days_since(last: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days elapsed since `last`; None when there is no timestamp"""
    if last is None:
        return None
    now = now or datetime.utcnow()
    return max((now - last).days, 0)


def fallback_status(conversation_text: str, days_since_last_message: Optional[int]) -> str:
    """
    Deterministic status used when the model cannot be asked

    Payment keywords win; otherwise the elapsed days decide. With no
    messages at all there is nothing to judge, so the result is UNSURE.
    """
    if conversation_text and PAYMENT_KEYWORDS.search(conversation_text):
        return PAID
    if days_since_last_message is None:
        return UNSURE
    if days_since_last_message < DORMANT_AFTER_DAYS:
        return ACTIVE
    return DORMANT


def parse_status(text: str) -> Optional[str]:
    """Normalize the model reply to a status word, or None if it is not one"""
    if not text or text == NO_ANSWER:
        return None
    word = text.strip().strip(".!\"'`*").upper()
    return word if word in STATUSES else None


def format_turns(turns: List[Dict[str, Any]]) -> str:
    return "\n".join(f"{t.get('role')}: {t.get('content')}" for t in turns)


class StatusAnalyzer:
    """Classifies a conversation into a sales status"""

    def __init__(self, store, dispatcher: ModelDispatcher, budget: ContextBudget = DEFAULT_BUDGET):
        self.store = store
        self.dispatcher = dispatcher
        self.budget = budget

    async def classify(
        self,
        conversation_text: str,
        days_since_last_message: Optional[int],
        today: Optional[datetime] = None
    ) -> StatusResult:
        """
        Label a conversation

        Args:
            conversation_text: "role: content" lines, oldest first
            days_since_last_message: Whole days since the last message, None if there are none
            today: Reference date shown to the model

        Returns:
            StatusResult with the label and where it came from
        """
        today = today or datetime.utcnow()
        days = days_since_last_message if days_since_last_message is not None else "unknown"
        prompt = STATUS_PROMPT.format(
            threshold=DORMANT_AFTER_DAYS,
            days=days,
            today=today.strftime("%Y-%m-%d"),
            conversation=conversation_text or "No messages yet"
        )

        try:
            reply = await self.dispatcher.answer(
                system_prompt=STATUS_SYSTEM_PROMPT,
                user_prompt=prompt,
                model_id=STATUS_MODEL,
                max_tokens=self.budget.max_tokens("status"),
                temperature=STATUS_TEMPERATURE
            )
        except CompletionAPIError as e:
            status = fallback_status(conversation_text, days_since_last_message)
            logger.warning(f"⚠️ Status model unavailable ({e.message}); fallback status {status}")
            return StatusResult(status, "fallback", days_since_last_message)

        status = parse_status(reply.answer)
        if status is None:
            status = fallback_status(conversation_text, days_since_last_message)
            logger.warning(f"⚠️ Unrecognized status reply {reply.answer!r}; fallback status {status}")
            return StatusResult(status, "fallback", days_since_last_message)

        return StatusResult(status, "model", days_since_last_message)

    async def analyze(
        self,
        contact_id: Optional[str] = None,
        session_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> StatusResult:
        """
        Analyze a chat session log, or a contact's CRM conversation

        The session log takes precedence when both ids are given.
        """
        now = now or datetime.utcnow()

        if session_id:
            turns = await asyncio.to_thread(self.store.get_turns, session_id)
            last = turns[-1]["created_at"] if turns else None
            text = format_turns(turns)
        elif contact_id:
            messages = await asyncio.to_thread(
                self.store.get_recent_messages, contact_id, MAX_ANALYZED_MESSAGES
            )
            messages = list(reversed(messages))
            last = messages[-1].get("occurred_at") if messages else None
            text = "\n".join(
                f"{'customer' if m.get('direction') == 'inbound' else 'agent'}: {m.get('body') or ''}"
                for m in messages
            )
        else:
            last, text = None, ""

        return await self.classify(text, days_since(last, now), today=now)
