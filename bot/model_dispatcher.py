"""
Model dispatcher.

Builds the chat-completion message list (system prompt, capped prior turns,
user prompt), sends it to the completion API for the requested model and
extracts the answer text. Completion failures propagate as CompletionAPIError;
a payload without usable content turns into NO_ANSWER.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bot.openrouter_client import OpenRouterClient
from config.budgets import ContextBudget, DEFAULT_BUDGET
from config.settings import MODEL_BY_TIER, DEFAULT_TIER
from services.fact_resolvers import truncate

logger = logging.getLogger(__name__)

NO_ANSWER = "(no answer)"
CHAT_ROLES = ("user", "assistant")


@dataclass
class ModelAnswer:
    answer: str
    model: str
    usage: Dict[str, Any] = field(default_factory=dict)
    elapsed_ms: int = 0


def model_for_tier(tier: Optional[str]) -> str:
    """Model id for a tier; unknown tiers fall back to the light model"""
    return MODEL_BY_TIER.get(tier or DEFAULT_TIER, MODEL_BY_TIER[DEFAULT_TIER])


def extract_content(payload: Optional[Dict[str, Any]]) -> str:
    """Pull choices[0].message.content out of a completion payload"""
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return NO_ANSWER
    if not isinstance(content, str) or not content.strip():
        return NO_ANSWER
    return content.strip()


class ModelDispatcher:
    """Routes prompts to the completion API"""

    def __init__(self, client: Optional[OpenRouterClient] = None, budget: ContextBudget = DEFAULT_BUDGET):
        self.client = client or OpenRouterClient()
        self.budget = budget

    def build_messages(
        self,
        system_prompt: str,
        user_prompt: str,
        prior_turns: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, str]]:
        """
        Assemble the message list sent to the model

        Only the last `history_turns` user/assistant turns are replayed, each
        capped at `history_char_limit` characters.
        """
        messages = [{"role": "system", "content": system_prompt}]

        turns = [t for t in (prior_turns or []) if t.get("role") in CHAT_ROLES and t.get("content")]
        if self.budget.history_turns > 0:
            for turn in turns[-self.budget.history_turns:]:
                messages.append({
                    "role": turn["role"],
                    "content": truncate(turn["content"], self.budget.history_char_limit)
                })

        messages.append({"role": "user", "content": user_prompt})
        return messages

    async def answer(
        self,
        system_prompt: str,
        user_prompt: str,
        model_id: str,
        max_tokens: int,
        prior_turns: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
        response_format: Optional[Dict[str, str]] = None
    ) -> ModelAnswer:
        """
        Ask a model and return its answer

        Args:
            system_prompt: Instructions for the model
            user_prompt: The rendered question with its context
            model_id: Completion API model slug
            max_tokens: Output token ceiling
            prior_turns: Earlier session turns ({role, content})
            temperature: Overrides the budget temperature
            response_format: Optional structured-output hint

        Returns:
            ModelAnswer with the answer text, model id and token usage

        Raises:
            CompletionAPIError: If the completion API fails
        """
        messages = self.build_messages(system_prompt, user_prompt, prior_turns)

        started = time.perf_counter()
        payload = await self.client.chat_completion(
            model=model_id,
            messages=messages,
            temperature=self.budget.temperature if temperature is None else temperature,
            max_tokens=max_tokens,
            response_format=response_format
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        text = extract_content(payload)
        if text == NO_ANSWER:
            logger.warning(f"⚠️ No usable content from {model_id}")
        else:
            logger.info(f"✅ {model_id} answered in {elapsed_ms}ms ({len(text)} chars)")

        usage = payload.get("usage") if isinstance(payload, dict) else None
        return ModelAnswer(answer=text, model=model_id, usage=usage or {}, elapsed_ms=elapsed_ms)


model_dispatcher: Optional[ModelDispatcher] = None


def get_model_dispatcher() -> ModelDispatcher:
    """Get or create the shared dispatcher"""
    global model_dispatcher
    if model_dispatcher is None:
        model_dispatcher = ModelDispatcher()
    return model_dispatcher
