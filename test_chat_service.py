"""End-to-end tests for the ask pipeline"""

import pytest

from conftest import CompletionRecorder, make_dispatcher
from config.budgets import ContextBudget
from config.settings import MODEL_BY_TIER
from services.chat_service import PRIVACY_MODE_ANSWER, ChatService, get_session_log
from services.fact_resolvers import DB_ORIGIN, NO_CONVERSATIONS
from utils.error_handler import CompletionAPIError, InvalidRequestError, NotFoundError


class RecordingTracker:
    def __init__(self):
        self.calls = []

    def track_usage(self, **kwargs):
        self.calls.append(kwargs)
        return True


@pytest.fixture
def tracker():
    return RecordingTracker()


@pytest.fixture
def chat(store, dispatcher, history_cache, tracker):
    return ChatService(store, dispatcher, history_cache=history_cache, usage_tracker=tracker)


@pytest.mark.asyncio
async def test_last_order_total_from_database(chat, jane, completion, tracker):
    result = await chat.ask(jane, "what's the total on her last order")

    assert result.to_dict() == {
        "answer": "Latest order ORD-1003 on 2024-01-10 • Total: $149.99 • "
                  "Invoice: https://invoices.example.com/ORD-1003",
        "model": DB_ORIGIN,
        "intent": "last_order_total",
    }
    assert completion.calls == 0
    assert tracker.calls == []


@pytest.mark.asyncio
async def test_last_contact_without_messages(chat, empty_contact, completion):
    result = await chat.ask(empty_contact, "when did we last talk to them")

    assert result.answer == NO_CONVERSATIONS
    assert result.model == DB_ORIGIN
    assert result.intent == "last_contact_date"
    assert completion.calls == 0


@pytest.mark.asyncio
async def test_validation_order(chat, jane):
    with pytest.raises(InvalidRequestError, match="question required"):
        await chat.ask(None, "   ")
    with pytest.raises(InvalidRequestError, match="contactId required"):
        await chat.ask(None, "what's the tracking number?")


@pytest.mark.asyncio
async def test_unknown_contact(chat):
    with pytest.raises(NotFoundError):
        await chat.ask("00000000-0000-0000-0000-000000000000", "tracking?")


@pytest.mark.asyncio
async def test_general_question_goes_to_model(chat, jane, completion, tracker):
    result = await chat.ask(jane, "Would she like our new frame range?", tier="medium")

    assert result.answer == "Grounded answer."
    assert result.model == MODEL_BY_TIER["medium"]
    assert result.intent == "none"

    body = completion.last_body
    assert body["model"] == MODEL_BY_TIER["medium"]
    assert body["max_tokens"] == 600
    prompt = body["messages"][-1]["content"]
    assert "Would she like our new frame range?" in prompt
    assert "ORD-1003" in prompt
    assert "Jane Doe" in prompt

    assert len(tracker.calls) == 1
    assert tracker.calls[0]["endpoint"] == "ask"
    assert tracker.calls[0]["input_tokens"] == 120
    assert tracker.calls[0]["output_tokens"] == 12
    assert tracker.calls[0]["tier"] == "medium"


@pytest.mark.asyncio
async def test_summary_uses_recent_messages(chat, jane, completion):
    result = await chat.ask(jane, "summarize the last 2 messages")

    assert result.intent == "summarize_recent"
    assert result.model == MODEL_BY_TIER["light"]
    assert completion.last_body["max_tokens"] == 400
    prompt = completion.last_body["messages"][-1]["content"]
    assert prompt.startswith("Summarize these 2 recent messages")
    assert "tracking link" in prompt
    assert "canvas prints" not in prompt


@pytest.mark.asyncio
async def test_summary_without_messages_skips_model(chat, empty_contact, completion):
    result = await chat.ask(empty_contact, "summarize the recent conversation")

    assert result.answer == NO_CONVERSATIONS
    assert completion.calls == 0


@pytest.mark.asyncio
async def test_question_about_last_message(chat, jane, completion):
    await chat.ask(jane, "based on the last message, what does she want?")

    assert completion.last_body["max_tokens"] == 250
    prompt = completion.last_body["messages"][-1]["content"]
    assert prompt.index("canvas prints") < prompt.index("Can you send the tracking link")


@pytest.mark.asyncio
async def test_privacy_mode_blocks_model(chat, jane, completion):
    blocked = await chat.ask(jane, "Would she like our new frame range?", privacy_mode=True)
    allowed = await chat.ask(jane, "what's the tracking number?", privacy_mode=True)

    assert blocked.answer == PRIVACY_MODE_ANSWER
    assert blocked.model == DB_ORIGIN
    assert allowed.answer.startswith("Latest order ORD-1003:")
    assert completion.calls == 0


@pytest.mark.asyncio
async def test_session_history_replayed(chat, store, jane, completion, history_cache):
    await chat.ask(jane, "what's the tracking number?", session_id="session-1")
    await chat.ask(jane, "Should we offer a discount?", session_id="session-1")

    messages = completion.last_body["messages"]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[1]["content"] == "what's the tracking number?"
    assert messages[2]["content"].startswith("Latest order ORD-1003:")

    log = await get_session_log(store, "session-1")
    assert log["session"]["contact_id"] == jane
    assert [t["role"] for t in log["messages"]] == ["user", "assistant", "user", "assistant"]
    assert log["messages"][-1]["content"] == "Grounded answer."
    assert len(history_cache.get_turns("session-1")) == 4


@pytest.mark.asyncio
async def test_history_served_from_cache(chat, store, jane, completion, history_cache):
    store.get_or_create_session("session-2", jane)
    history_cache.set_turns("session-2", [
        {"role": "user", "content": "cached question"},
        {"role": "assistant", "content": "cached answer"},
    ])

    await chat.ask(jane, "Should we offer a discount?", session_id="session-2")

    contents = [m["content"] for m in completion.last_body["messages"]]
    assert "cached question" in contents
    assert "cached answer" in contents


@pytest.mark.asyncio
async def test_session_for_other_contact_rejected(chat, store, jane, empty_contact):
    store.get_or_create_session("session-3", jane)

    with pytest.raises(InvalidRequestError):
        await chat.ask(empty_contact, "tracking?", session_id="session-3")


@pytest.mark.asyncio
async def test_completion_failure_propagates(store, jane):
    chat = ChatService(store, make_dispatcher(CompletionRecorder(status_code=503)))

    with pytest.raises(CompletionAPIError) as exc_info:
        await chat.ask(jane, "Would she like our new frame range?")

    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_session_log_errors(store):
    with pytest.raises(InvalidRequestError):
        await get_session_log(store, None)
    with pytest.raises(NotFoundError):
        await get_session_log(store, "missing")


@pytest.mark.asyncio
async def test_summary_prompt_counts_messages_kept_after_fit(store, dispatcher, jane, completion):
    tight = ContextBudget(context_tokens_by_tier={"light": 30, "medium": 30, "high": 30})
    chat = ChatService(store, dispatcher, budget=tight)

    await chat.ask(jane, "summarize the last 3 messages")

    prompt = completion.last_body["messages"][-1]["content"]
    assert prompt.startswith("Summarize these 1 recent messages")
    assert "canvas prints" not in prompt
