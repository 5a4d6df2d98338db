"""
Context and output budgets for the chat-ask pipeline.

Every knob that bounds how much data goes into a prompt, or how much comes
back out, lives here so the context builder and the model dispatcher read
the same numbers.
"""

from dataclasses import dataclass, field
from typing import Dict


# Rough approximation: ~4 characters per token
CHARS_PER_TOKEN = 4


@dataclass(frozen=True)
class ContextBudget:
    """Budget knobs shared by the context builder and model dispatcher"""

    # Context window
    max_messages: int = 50
    lookback_days: int = 120
    max_orders: int = 5
    message_char_limit: int = 1000
    profile_share: float = 0.1  # Max 10% of the window for the profile
    orders_share: float = 0.3  # Max 30% of the window for orders

    # Prompt window per tier, in tokens
    context_tokens_by_tier: Dict[str, int] = field(default_factory=lambda: {
        "light": 4000,
        "medium": 8000,
        "high": 12000,
    })

    # Session history replayed into the prompt
    history_turns: int = 6
    history_char_limit: int = 1000

    # Output ceilings per answer kind
    max_tokens_by_kind: Dict[str, int] = field(default_factory=lambda: {
        "summary": 400,
        "qa": 300,
        "qa_last_message": 250,
        "general": 600,
        "status": 10,
    })

    temperature: float = 0.2

    def context_chars(self, tier: str) -> int:
        """Character budget for the assembled context block of a tier"""
        tokens = self.context_tokens_by_tier.get(tier, self.context_tokens_by_tier["light"])
        return tokens * CHARS_PER_TOKEN

    def max_tokens(self, kind: str) -> int:
        return self.max_tokens_by_kind.get(kind, self.max_tokens_by_kind["general"])


DEFAULT_BUDGET = ContextBudget()
