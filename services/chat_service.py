"""
Chat ask pipeline.

One pass per question: validate, load the contact, classify the question,
then either answer from the database (fact resolvers) or assemble a bounded
context and ask a model. When a session id is given, earlier turns are
replayed to the model and the new question/answer pair is appended to the
session log.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bot import prompts
from bot.model_dispatcher import ModelAnswer, ModelDispatcher, model_for_tier
from config.budgets import ContextBudget, DEFAULT_BUDGET
from config.settings import DEFAULT_TIER
from database.redis_store import RedisStore
from services.context_builder import ContextBuilder, format_message_log
from services.fact_resolvers import Answer, FactResolver, NO_CONVERSATIONS
from services.intent_classifier import Intent, classify_intent
from services.usage_tracking import UsageTracker, estimate_tokens
from utils.error_handler import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

PRIVACY_MODE_ANSWER = (
    "Privacy mode is on: only answers looked up directly from the database are available. "
    "Try asking about orders, tracking, shipping address or recent messages."
)

# Messages loaded for qa_last_message: the last one plus a few for references
LAST_MESSAGE_WINDOW = 5


@dataclass
class AskResult:
    answer: str
    model: str
    intent: str

    def to_dict(self) -> Dict[str, str]:
        return {"answer": self.answer, "model": self.model, "intent": self.intent}


class ChatService:
    """Routes agent questions to fact resolvers or to a model"""

    def __init__(
        self,
        store,
        dispatcher: ModelDispatcher,
        history_cache: Optional[RedisStore] = None,
        usage_tracker: Optional[UsageTracker] = None,
        budget: ContextBudget = DEFAULT_BUDGET
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.history_cache = history_cache
        self.usage_tracker = usage_tracker
        self.budget = budget
        self.resolver = FactResolver(store, budget)
        self.builder = ContextBuilder(store, budget)

    async def ask(
        self,
        contact_id: Optional[str],
        question: Optional[str],
        tier: Optional[str] = None,
        session_id: Optional[str] = None,
        privacy_mode: bool = False
    ) -> AskResult:
        """
        Answer a question about a contact

        Args:
            contact_id: Internal contact id
            question: Free-text question from the agent
            tier: Model tier for model-backed answers (light, medium, high)
            session_id: Chat session to replay and append to
            privacy_mode: Only allow database answers

        Returns:
            AskResult with the answer, the model (or tool:db) and the intent

        Raises:
            InvalidRequestError: Missing question or contact id
            NotFoundError: Unknown contact
            CompletionAPIError: The completion API failed
        """
        question = (question or "").strip()
        if not question:
            raise InvalidRequestError("question required")
        if not contact_id:
            raise InvalidRequestError("contactId required")

        tier = tier or DEFAULT_TIER
        contact = await asyncio.to_thread(self.store.get_contact, contact_id)
        if not contact:
            raise NotFoundError(f"Contact not found: {contact_id}", details={"contact_id": contact_id})

        if session_id:
            chat_session = await asyncio.to_thread(self.store.get_or_create_session, session_id, contact_id, tier)
            if chat_session["contact_id"] != contact_id:
                raise InvalidRequestError(
                    "Session belongs to a different contact",
                    details={"session_id": session_id}
                )

        intent = classify_intent(question)
        logger.info(f"🧭 Intent {intent.type} for contact {contact_id} (tier={tier}, privacy={privacy_mode})")

        if self.resolver.handles(intent):
            result = await self.resolver.resolve(contact_id, intent)
        elif privacy_mode:
            result = Answer(PRIVACY_MODE_ANSWER)
        else:
            prior_turns = await self._prior_turns(session_id) if session_id else []
            result = await self._model_answer(contact_id, contact, question, intent, tier, prior_turns)
            if isinstance(result, ModelAnswer):
                await self._track(contact_id, session_id, tier, result)

        if session_id:
            await self._record_turns(session_id, question, result.answer, result.model)

        return AskResult(answer=result.answer, model=result.model, intent=intent.type)

    async def _model_answer(
        self,
        contact_id: str,
        contact: Dict[str, Any],
        question: str,
        intent: Intent,
        tier: str,
        prior_turns: List[Dict[str, Any]]
    ):
        model_id = model_for_tier(tier)

        if intent.type == "summarize_recent":
            context = await self.builder.recent_messages(contact_id, intent.n or 10)
            if not context.message_count:
                return Answer(NO_CONVERSATIONS)
            fitted = context.fit(self.budget.context_chars(tier), self.budget)
            if intent.mode == "summary":
                user_prompt = prompts.summary_prompt(fitted.messages_log, fitted.shown_count)
                kind = "summary"
            else:
                user_prompt = prompts.recent_qa_prompt(question, fitted.messages_log, fitted.shown_count)
                kind = "qa"
            system_prompt = prompts.MESSAGES_SYSTEM_PROMPT

        elif intent.type == "qa_last_message":
            context = await self.builder.recent_messages(contact_id, LAST_MESSAGE_WINDOW)
            if not context.message_count:
                return Answer(NO_CONVERSATIONS)
            newest, earlier = context.messages[0], context.messages[1:]
            user_prompt = prompts.last_message_prompt(
                question,
                format_message_log(earlier, self.budget.message_char_limit) if earlier else "",
                format_message_log([newest], self.budget.message_char_limit)
            )
            system_prompt = prompts.MESSAGES_SYSTEM_PROMPT
            kind = "qa_last_message"

        else:
            context = await self.builder.build_context(contact_id, contact)
            fitted = context.fit(self.budget.context_chars(tier), self.budget)
            user_prompt = prompts.context_prompt(question, fitted.render())
            system_prompt = prompts.CONTEXT_SYSTEM_PROMPT
            kind = "general"

        return await self.dispatcher.answer(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model_id=model_id,
            max_tokens=self.budget.max_tokens(kind),
            prior_turns=prior_turns
        )

    async def _prior_turns(self, session_id: str) -> List[Dict[str, Any]]:
        """Recent turns of a session, from the cache when possible"""
        if self.history_cache is not None:
            cached = await asyncio.to_thread(self.history_cache.get_turns, session_id)
            if cached is not None:
                return cached[-self.budget.history_turns:]

        turns = await asyncio.to_thread(self.store.get_turns, session_id)
        if self.history_cache is not None:
            await asyncio.to_thread(self.history_cache.set_turns, session_id, turns)
        return turns[-self.budget.history_turns:]

    async def _record_turns(self, session_id: str, question: str, answer: str, model: str):
        await asyncio.to_thread(self.store.append_turn, session_id, "user", question)
        await asyncio.to_thread(self.store.append_turn, session_id, "assistant", answer, model)
        if self.history_cache is not None:
            await asyncio.to_thread(self.history_cache.append_turn, session_id, "user", question)
            await asyncio.to_thread(self.history_cache.append_turn, session_id, "assistant", answer, model)

    async def _track(self, contact_id: str, session_id: Optional[str], tier: str, result: ModelAnswer):
        if self.usage_tracker is None:
            return
        usage = result.usage or {}
        await asyncio.to_thread(
            self.usage_tracker.track_usage,
            endpoint="ask",
            contact_id=contact_id,
            session_id=session_id,
            model=result.model,
            tier=tier,
            input_tokens=usage.get("prompt_tokens") or 0,
            output_tokens=usage.get("completion_tokens") or estimate_tokens(result.answer),
            response_time_ms=result.elapsed_ms
        )


async def get_session_log(store, session_id: Optional[str]) -> Dict[str, Any]:
    """A session and its full turn log, oldest first"""
    if not session_id:
        raise InvalidRequestError("sessionId required")
    chat_session = await asyncio.to_thread(store.get_chat_session, session_id)
    if not chat_session:
        raise NotFoundError(f"Session not found: {session_id}", details={"session_id": session_id})
    turns = await asyncio.to_thread(store.get_turns, session_id)
    return {"session": chat_session, "messages": turns}
