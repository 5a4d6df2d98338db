"""Tests for the intent classifier and its precedence table"""

import pytest

from services.intent_classifier import (
    DB_INTENTS,
    INTENT_RULES,
    Intent,
    NO_INTENT,
    classify_intent,
    parse_count,
    parse_order_count,
)


class TestPrecedence:
    def test_rule_order_is_fixed(self):
        assert [rule.name for rule in INTENT_RULES] == [
            "summarize_recent",
            "summarize_recent",
            "qa_last_message",
            "list_recent",
            "last_n_orders",
            "shipping_address",
            "last_order_total",
            "tracking",
            "last_message",
            "last_contact_date",
        ]

    def test_summary_beats_list_recent(self):
        assert classify_intent("summarize the last 5 messages") == Intent("summarize_recent", n=5, mode="summary")

    def test_summary_beats_last_message(self):
        intent = classify_intent("Give me a recap of the last message thread")
        assert intent.type == "summarize_recent"
        assert intent.mode == "summary"

    def test_judgment_over_recent_messages_is_qa_mode(self):
        intent = classify_intent("Based on the recent messages, is the order approved?")
        assert intent == Intent("summarize_recent", n=10, mode="qa")

    def test_from_last_message_is_strict_grounding(self):
        assert classify_intent("From the last message, what color did she pick?") == Intent("qa_last_message")

    def test_last_messages_plural_is_not_qa_last_message(self):
        assert classify_intent("show me the last messages").type == "list_recent"

    def test_list_recent_with_count(self):
        assert classify_intent("show the last 7 messages") == Intent("list_recent", n=7)

    def test_tracking_question_is_not_shipping(self):
        assert classify_intent("what's the tracking number?").type == "tracking"

    def test_shipping_before_total(self):
        assert classify_intent("where did we ship the last order, and what was the total?").type == "shipping_address"


class TestSingleIntents:
    @pytest.mark.parametrize("question, expected", [
        ("what's the shipping address?", "shipping_address"),
        ("Where should we ship it?", "shipping_address"),
        ("what's the total on her last order", "last_order_total"),
        ("last order total please", "last_order_total"),
        ("can you track the package", "tracking"),
        ("what was the last message?", "last_message"),
        ("when did we last talk to them", "last_contact_date"),
        ("last contact date", "last_contact_date"),
    ])
    def test_keyword_intents(self, question, expected):
        assert classify_intent(question).type == expected

    def test_last_n_orders_defaults_to_three(self):
        assert classify_intent("show recent orders") == Intent("last_n_orders", n=3)

    def test_last_n_orders_with_count(self):
        assert classify_intent("list the last 4 orders") == Intent("last_n_orders", n=4)

    def test_unmatched_question_is_none(self):
        intent = classify_intent("Would she like our new frame range?")
        assert intent == NO_INTENT
        assert intent.uses_model

    def test_empty_question_is_none(self):
        assert classify_intent("") == NO_INTENT
        assert classify_intent(None) == NO_INTENT

    def test_db_intents_do_not_use_a_model(self):
        for name in DB_INTENTS:
            assert not Intent(name).uses_model


class TestCounts:
    def test_count_upper_clamp(self):
        assert parse_count("last 500 messages") == 50

    def test_count_lower_clamp(self):
        assert parse_count("last 0 messages") == 1

    def test_count_default(self):
        assert parse_count("recent messages please") == 10

    def test_count_accepts_synonyms(self):
        assert parse_count("last 3 notes") == 3
        assert parse_count("last 12 conversations") == 12

    def test_order_count_clamps(self):
        assert parse_order_count("last 25 orders") == 10
        assert parse_order_count("last 0 orders") == 1

    def test_order_count_absent(self):
        assert parse_order_count("what's the shipping address") is None

    def test_classified_counts_are_clamped(self):
        assert classify_intent("show the last 500 messages").n == 50
        assert classify_intent("summarize the last 0 messages").n == 1
