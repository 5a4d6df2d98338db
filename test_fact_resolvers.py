"""Tests for the database-backed fact resolvers"""

from datetime import date, datetime, timedelta

import pytest

from conftest import add_message, add_order
from services.fact_resolvers import (
    DB_ORIGIN,
    NO_CONVERSATIONS,
    NO_ORDERS,
    FactResolver,
    format_money,
    format_natural_datetime,
    format_official_address,
    truncate,
)
from services.intent_classifier import Intent, classify_intent


class TestFormatting:
    def test_raw_address_preferred_over_parsed_fields(self):
        order = {
            "shipping_address_raw": "12 Main St, Springfield",
            "shipping_street1": "Other Street",
            "shipping_city": "Elsewhere",
        }
        assert format_official_address(order) == "12 Main St, Springfield"

    def test_parsed_address_joined_without_blanks(self):
        order = {"shipping_street1": "1 Elm", "shipping_street2": "", "shipping_city": "Austin", "shipping_zip": "78701"}
        assert format_official_address(order) == "1 Elm, Austin, 78701"

    def test_no_address(self):
        assert format_official_address({"shipping_street2": None}) is None
        assert format_official_address(None) is None

    def test_money(self):
        assert format_money(149.99) == "$149.99"
        assert format_money(None) == "$0.00"
        assert format_money("12.5") == "$12.50"

    def test_natural_datetime(self):
        assert format_natural_datetime(datetime(2024, 1, 10, 15, 5)) == "January 10, 2024 at 3:05 PM"
        assert format_natural_datetime(datetime(2024, 3, 1, 0, 30)) == "March 1, 2024 at 12:30 AM"

    def test_truncate_adds_single_marker(self):
        text = truncate("a" * 50, 10)
        assert len(text) == 10
        assert text.endswith("…")
        assert text.count("…") == 1

    def test_truncate_short_text_untouched(self):
        assert truncate("short", 10) == "short"


class TestResolvers:
    @pytest.mark.asyncio
    async def test_last_order_total_end_to_end(self, store, jane):
        intent = classify_intent("what's the total on her last order")
        assert intent.type == "last_order_total"

        answer = await FactResolver(store).resolve(jane, intent)

        assert answer.answer == (
            "Latest order ORD-1003 on 2024-01-10 • Total: $149.99 • "
            "Invoice: https://invoices.example.com/ORD-1003"
        )
        assert answer.model == DB_ORIGIN

    @pytest.mark.asyncio
    async def test_last_contact_date_without_messages(self, store, empty_contact):
        intent = classify_intent("when did we last talk to them")
        assert intent.type == "last_contact_date"

        answer = await FactResolver(store).resolve(empty_contact, intent)

        assert answer.answer == NO_CONVERSATIONS
        assert answer.model == DB_ORIGIN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("intent_type", ["shipping_address", "tracking", "last_order_total", "last_n_orders"])
    async def test_zero_orders_sentinel(self, store, empty_contact, intent_type):
        answer = await FactResolver(store).resolve(empty_contact, Intent(intent_type, n=3))
        assert answer.answer == NO_ORDERS
        assert answer.model == DB_ORIGIN

    @pytest.mark.asyncio
    async def test_shipping_address_prefers_raw(self, store, jane):
        answer = await FactResolver(store).resolve(jane, Intent("shipping_address"))
        assert answer.answer == (
            "Official shipping address (latest order ORD-1003 on 2024-01-10):\n"
            "12 Main St, Springfield, IL 62701"
        )

    @pytest.mark.asyncio
    async def test_tracking(self, store, jane):
        answer = await FactResolver(store).resolve(jane, Intent("tracking"))
        assert answer.answer == (
            "Latest order ORD-1003:\n"
            "Tracking #: 1Z999AA10123456784\n"
            "Link: https://track.example.com/1Z999AA10123456784"
        )

    @pytest.mark.asyncio
    async def test_tracking_missing(self, store, empty_contact):
        add_order(store, empty_contact, "ORD-2001", date(2024, 2, 1))
        answer = await FactResolver(store).resolve(empty_contact, Intent("tracking"))
        assert answer.answer == "Latest order ORD-2001 has no tracking recorded."

    @pytest.mark.asyncio
    async def test_last_n_orders_respects_count(self, store, jane):
        answer = await FactResolver(store).resolve(jane, Intent("last_n_orders", n=2))
        lines = answer.answer.split("\n")
        assert lines[0] == "Last 2 orders:"
        assert lines[1:] == [
            "ORD-1003 • 2024-01-10 • shipped • $149.99",
            "ORD-1002 • 2023-12-15 • delivered • $42.00",
        ]

    @pytest.mark.asyncio
    async def test_orders_without_date_sort_last(self, store, jane):
        add_order(store, jane, "ORD-0000", None, order_total=5)
        answer = await FactResolver(store).resolve(jane, Intent("last_n_orders", n=10))
        assert answer.answer.split("\n")[-1].startswith("ORD-0000 • unknown date • — • $5.00")

    @pytest.mark.asyncio
    async def test_list_recent_respects_count(self, store, jane):
        answer = await FactResolver(store).resolve(jane, Intent("list_recent", n=2))
        lines = answer.answer.split("\n")
        assert lines[0] == "Last 2 messages:"
        assert len(lines) == 3
        assert lines[1].endswith("Customer (sms): Can you send the tracking link when it ships?")
        assert "Alex (sms): Thanks Jane, it ships tomorrow." in lines[2]

    @pytest.mark.asyncio
    async def test_last_message(self, store, jane):
        answer = await FactResolver(store).resolve(jane, Intent("last_message"))
        header, body = answer.answer.split("\n")
        assert header.endswith(" • sms • inbound")
        assert body == "Can you send the tracking link when it ships?"

    @pytest.mark.asyncio
    async def test_last_contact_date(self, store, empty_contact):
        add_message(store, empty_contact, "m-1", datetime(2024, 1, 10, 15, 5), "hello")
        answer = await FactResolver(store).resolve(empty_contact, Intent("last_contact_date"))
        assert answer.answer == "Last contact: January 10, 2024 at 3:05 PM"

    @pytest.mark.asyncio
    async def test_messages_without_timestamp_sort_last(self, store, empty_contact):
        add_message(store, empty_contact, "m-old", None, "undated")
        add_message(store, empty_contact, "m-new", datetime.utcnow() - timedelta(hours=1), "dated")
        answer = await FactResolver(store).resolve(empty_contact, Intent("last_message"))
        assert answer.answer.endswith("dated")
        assert not answer.answer.endswith("undated")


@pytest.mark.asyncio
async def test_same_day_orders_list_latest_insert_first(store, empty_contact):
    add_order(store, empty_contact, "ORD-A", date(2024, 3, 1), created_at=datetime(2024, 3, 1, 9, 0), order_total=10)
    add_order(store, empty_contact, "ORD-B", date(2024, 3, 1), created_at=datetime(2024, 3, 1, 10, 0), order_total=20)
    resolver = FactResolver(store)

    first = await resolver.resolve(empty_contact, Intent("last_n_orders", n=2))
    again = await resolver.resolve(empty_contact, Intent("last_n_orders", n=2))

    assert first.answer.split("\n")[1:] == [
        "ORD-B • 2024-03-01 • — • $20.00",
        "ORD-A • 2024-03-01 • — • $10.00",
    ]
    assert again.answer == first.answer
