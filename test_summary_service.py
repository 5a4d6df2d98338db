"""Tests for daily contact summaries"""

import json
from datetime import datetime, timedelta

import pytest

from config.settings import MODEL_BY_TIER
from conftest import CompletionRecorder, add_message, make_dispatcher
from services.summary_service import NO_CONVERSATION_SUMMARY, SummaryService, parse_summary
from utils.error_handler import InvalidRequestError

SUMMARY_REPLY = json.dumps({
    "conversation_summary": "Jane asked for tracking on her canvas order.",
    "order_summary": "No new orders.",
    "key_topics": ["tracking", "canvas prints"],
    "action_items": ["Send tracking link"],
})


def test_parse_summary_variants():
    assert parse_summary(SUMMARY_REPLY)["key_topics"] == ["tracking", "canvas prints"]
    assert parse_summary("```json\n" + SUMMARY_REPLY + "\n```")["action_items"] == ["Send tracking link"]
    assert parse_summary("not json") == {}
    assert parse_summary("[1, 2]") == {}
    assert parse_summary("(no answer)") == {}


@pytest.mark.asyncio
async def test_no_activity_stores_minimal_summary(store, empty_contact, completion, dispatcher):
    result = await SummaryService(store, dispatcher).generate(empty_contact)

    assert result["cached"] is False
    assert result["tokens_used"] == 0
    assert result["summary"]["model_used"] == "none"
    assert result["summary"]["message_count"] == 0
    assert completion.calls == 0


@pytest.mark.asyncio
async def test_generate_then_cached(store, jane):
    recorder = CompletionRecorder(content=SUMMARY_REPLY)
    service = SummaryService(store, make_dispatcher(recorder))
    add_message(store, jane, "msg-today", datetime.utcnow() - timedelta(hours=2), "Any news on tracking?")

    first = await service.generate(jane)
    second = await service.generate(jane)

    assert first["cached"] is False
    assert first["tokens_used"] == 120
    summary = first["summary"]
    assert summary["message_count"] == 1
    assert summary["order_count"] == 0
    assert summary["key_topics"] == ["tracking", "canvas prints"]
    assert summary["model_used"] == MODEL_BY_TIER["light"]

    assert second["cached"] is True
    assert second["summary"]["conversation_summary"] == summary["conversation_summary"]
    assert recorder.calls == 1

    body = recorder.last_body
    assert body["temperature"] == 0.3
    assert body["response_format"] == {"type": "json_object"}
    assert "Any news on tracking?" in body["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_force_regenerate_replaces_summary(store, jane):
    recorder = CompletionRecorder(content="garbled")
    service = SummaryService(store, make_dispatcher(recorder))
    add_message(store, jane, "msg-today", datetime.utcnow() - timedelta(hours=1), "Hello again")

    await service.generate(jane)
    result = await service.generate(jane, force_regenerate=True)

    assert recorder.calls == 2
    assert result["summary"]["conversation_summary"] == NO_CONVERSATION_SUMMARY
    assert result["summary"]["key_topics"] == []


@pytest.mark.asyncio
async def test_get_summary(store, empty_contact, dispatcher):
    service = SummaryService(store, dispatcher)

    assert await service.get_summary(empty_contact) is None
    await service.generate(empty_contact)
    assert (await service.get_summary(empty_contact))["model_used"] == "none"

    with pytest.raises(InvalidRequestError):
        await service.get_summary("")
