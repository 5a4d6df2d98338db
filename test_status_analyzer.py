"""Tests for conversation status analysis"""

from datetime import datetime, timedelta

import pytest

from config.settings import STATUS_MODEL
from conftest import CompletionRecorder, make_dispatcher
from services.status_analyzer import (
    ACTIVE,
    DORMANT,
    PAID,
    UNSURE,
    StatusAnalyzer,
    days_since,
    fallback_status,
    parse_status,
)


@pytest.fixture
def failing_analyzer(store):
    return StatusAnalyzer(store, make_dispatcher(CompletionRecorder(status_code=500)))


def test_fallback_rules():
    assert fallback_status("customer: hello", 5) == ACTIVE
    assert fallback_status("customer: hello", 29) == ACTIVE
    assert fallback_status("customer: hello", 30) == DORMANT
    assert fallback_status("customer: hello", 45) == DORMANT
    assert fallback_status("customer: Payment received, thanks!", 90) == PAID
    assert fallback_status("", None) == UNSURE


def test_parse_status():
    assert parse_status("ACTIVE") == ACTIVE
    assert parse_status(" dormant. ") == DORMANT
    assert parse_status("**PAID**") == PAID
    assert parse_status("I think it is active") is None
    assert parse_status("(no answer)") is None


def test_days_since():
    now = datetime(2024, 3, 1, 12, 0)
    assert days_since(datetime(2024, 1, 16, 12, 0), now) == 45
    assert days_since(datetime(2024, 3, 2), now) == 0
    assert days_since(None, now) is None


@pytest.mark.asyncio
async def test_fallback_on_upstream_failure(failing_analyzer):
    dormant = await failing_analyzer.classify("customer: any update?", 45)
    active = await failing_analyzer.classify("customer: any update?", 5)

    assert (dormant.status, dormant.source) == (DORMANT, "fallback")
    assert (active.status, active.source) == (ACTIVE, "fallback")


@pytest.mark.asyncio
async def test_model_reply_used(store):
    recorder = CompletionRecorder(content="Active.")
    analyzer = StatusAnalyzer(store, make_dispatcher(recorder))

    result = await analyzer.classify("customer: any update?", 45)

    assert result.status == ACTIVE
    assert result.source == "model"
    assert recorder.last_body["model"] == STATUS_MODEL
    assert recorder.last_body["max_tokens"] == 10
    assert recorder.last_body["temperature"] == 0.1
    assert "Days since last message: 45" in recorder.last_body["messages"][-1]["content"]


@pytest.mark.asyncio
async def test_unrecognized_reply_falls_back(store):
    analyzer = StatusAnalyzer(store, make_dispatcher(CompletionRecorder(content="It depends")))

    result = await analyzer.classify("customer: order placed yesterday", 3)

    assert result.status == PAID
    assert result.source == "fallback"


@pytest.mark.asyncio
async def test_analyze_contact_messages(failing_analyzer, jane):
    result = await failing_analyzer.analyze(contact_id=jane)

    assert result.status == ACTIVE
    assert result.days_since_last_message == 1


@pytest.mark.asyncio
async def test_analyze_session_log(store, failing_analyzer, jane):
    store.get_or_create_session("session-1", jane)
    store.append_turn("session-1", "user", "Did the payment confirmed email go out?")
    store.append_turn("session-1", "assistant", "Yes, payment confirmed on Monday.", model="m")

    result = await failing_analyzer.analyze(contact_id=jane, session_id="session-1", now=datetime.utcnow() + timedelta(days=60))

    assert result.status == PAID
    assert result.days_since_last_message == 60


@pytest.mark.asyncio
async def test_analyze_without_ids(failing_analyzer):
    result = await failing_analyzer.analyze()

    assert result.status == UNSURE
    assert result.days_since_last_message is None
