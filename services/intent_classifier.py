"""
Intent classifier for the agent chat box.

Regex heuristics decide whether a question can be answered straight from the
database (shipping address, tracking, last N orders, ...) or has to go to a
model with an assembled context. Rules are evaluated in a fixed order and the
first match wins, so the order of INTENT_RULES is the precedence policy:
summaries and judgments over recent messages must be checked before the
singular "last message" rule, and specificity decreases down the list.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Literal, NamedTuple, Optional

IntentType = Literal[
	"summarize_recent",
	"qa_last_message",
	"list_recent",
	"last_n_orders",
	"shipping_address",
	"last_order_total",
	"tracking",
	"last_message",
	"last_contact_date",
	"none",
]

# Intents answered directly from the database
DB_INTENTS = {
	"list_recent",
	"last_n_orders",
	"shipping_address",
	"last_order_total",
	"tracking",
	"last_message",
	"last_contact_date",
}

MESSAGE_COUNT_DEFAULT = 10
MESSAGE_COUNT_MAX = 50
ORDER_COUNT_DEFAULT = 3
ORDER_COUNT_MAX = 10


@dataclass(frozen=True)
class Intent:
	type: IntentType
	n: Optional[int] = None
	mode: Optional[Literal["summary", "qa"]] = None

	@property
	def uses_model(self) -> bool:
		return self.type not in DB_INTENTS


NO_INTENT = Intent("none")


MESSAGE_COUNT = re.compile(r"last\s+(\d+)\s+(?:messages?|msgs?|conversations?|notes?)", re.I)
SUMMARY_VERB = re.compile(r"(summari[sz]e|summary|recap|overview)", re.I)
SUMMARY_OBJECT = re.compile(r"(messages?|conversations?|thread)", re.I)
JUDGMENT = re.compile(
	r"(what.*mean|what do you think|is .*approved|approved or not|decision|intent|meaning)", re.I
)
RECENT_MESSAGES = re.compile(r"(last|recent).*(messages?|conversations?)", re.I)
FROM_LAST_MESSAGE = re.compile(r"\b(from|based on)\b.*\b(last|latest)\s+message\b(?!s)", re.I)
LIST_MESSAGES = re.compile(r"\b(what|which|show|list|display)\b.*\bmessages\b", re.I)
LAST_N_ORDERS = re.compile(r"\b(?:last|recent)\s+(?:(\d+)\s+)?orders\b", re.I)
SHIPPING = re.compile(r"(shipping address|ship(ping)?\s*address|where.*ship)", re.I)
ORDER_TOTAL = re.compile(
	r"((last|latest).*order.*(total|amount|price)|(total|amount|price).*(last|latest)\s+order|invoice.*total)",
	re.I,
)
TRACKING = re.compile(r"\b(track|tracking|tracking number|tracking link)\b", re.I)
LAST_MESSAGE = re.compile(r"(?:^|\b)(last|latest)\s+message\b(?!s)", re.I)
LAST_CONTACT = re.compile(
	r"((when|what).*(last|latest).*(talk|contact|message|reach(ed)?\s+out)|last contact date)", re.I
)


def clamp(value: int, low: int, high: int) -> int:
	return max(low, min(high, value))


def parse_count(text: str, default: int = MESSAGE_COUNT_DEFAULT) -> int:
	"""Extract N from 'last N messages' (clamped to [1, 50]), else the default"""
	m = MESSAGE_COUNT.search(text)
	return clamp(int(m.group(1)), 1, MESSAGE_COUNT_MAX) if m else default


def parse_order_count(text: str) -> Optional[int]:
	"""Extract N from 'last N orders' (clamped to [1, 10]); None when not asked"""
	m = LAST_N_ORDERS.search(text)
	if not m:
		return None
	return clamp(int(m.group(1)), 1, ORDER_COUNT_MAX) if m.group(1) else ORDER_COUNT_DEFAULT


class IntentRule(NamedTuple):
	name: IntentType
	match: Callable[[str, int], Optional[Intent]]


def _summary(text: str, n: int) -> Optional[Intent]:
	if SUMMARY_VERB.search(text) and SUMMARY_OBJECT.search(text):
		return Intent("summarize_recent", n=n, mode="summary")
	return None


def _judgment(text: str, n: int) -> Optional[Intent]:
	if JUDGMENT.search(text) and RECENT_MESSAGES.search(text):
		return Intent("summarize_recent", n=n, mode="qa")
	return None


def _qa_last_message(text: str, n: int) -> Optional[Intent]:
	return Intent("qa_last_message") if FROM_LAST_MESSAGE.search(text) else None


def _list_recent(text: str, n: int) -> Optional[Intent]:
	if LIST_MESSAGES.search(text) or MESSAGE_COUNT.search(text):
		return Intent("list_recent", n=n)
	return None


def _last_n_orders(text: str, n: int) -> Optional[Intent]:
	count = parse_order_count(text)
	return Intent("last_n_orders", n=count) if count is not None else None


def _keyword(intent_type: IntentType, pattern: "re.Pattern[str]") -> Callable[[str, int], Optional[Intent]]:
	def match(text: str, n: int) -> Optional[Intent]:
		return Intent(intent_type) if pattern.search(text) else None
	return match


INTENT_RULES: List[IntentRule] = [
	IntentRule("summarize_recent", _summary),
	IntentRule("summarize_recent", _judgment),
	IntentRule("qa_last_message", _qa_last_message),
	IntentRule("list_recent", _list_recent),
	IntentRule("last_n_orders", _last_n_orders),
	IntentRule("shipping_address", _keyword("shipping_address", SHIPPING)),
	IntentRule("last_order_total", _keyword("last_order_total", ORDER_TOTAL)),
	IntentRule("tracking", _keyword("tracking", TRACKING)),
	IntentRule("last_message", _keyword("last_message", LAST_MESSAGE)),
	IntentRule("last_contact_date", _keyword("last_contact_date", LAST_CONTACT)),
]


def classify_intent(text: Optional[str]) -> Intent:
	"""Map a free-text question to exactly one intent; never raises"""
	if not text:
		return NO_INTENT
	t = text.lower()
	n = parse_count(t)
	for rule in INTENT_RULES:
		intent = rule.match(t, n)
		if intent is not None:
			return intent
	return NO_INTENT
