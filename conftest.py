"""Shared pytest fixtures.

Provides a file-based SQLite store, an in-memory Redis stand-in, a completion
API mocked with httpx.MockTransport and a seeded contact.
"""

import json
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from bot.model_dispatcher import ModelDispatcher
from bot.openrouter_client import OpenRouterClient
from database.postgres_store import PostgresStore
from database.redis_store import RedisStore

TEST_BASE_URL = "https://openrouter.test/api/v1"


class FakeRedis:
    """Just enough of redis.Redis for the history cache and counters"""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}

    def ping(self):
        return True

    def get(self, key):
        return self.values.get(key)

    def setex(self, key, ttl, value):
        self.values[key] = value

    def info(self):
        return {"used_memory_human": "1M", "connected_clients": 1, "total_commands_processed": 0}

    def close(self):
        pass

    def pipeline(self):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis_client: FakeRedis):
        self.redis = redis_client
        self.ops: List[Callable[[], Any]] = []

    def zremrangebyscore(self, key, low, high):
        def op():
            members = self.redis.sorted_sets.setdefault(key, {})
            for member, score in list(members.items()):
                if low <= score <= high:
                    del members[member]
            return 0
        self.ops.append(op)

    def zadd(self, key, mapping):
        self.ops.append(lambda: self.redis.sorted_sets.setdefault(key, {}).update(mapping))

    def zcard(self, key):
        self.ops.append(lambda: len(self.redis.sorted_sets.get(key, {})))

    def expire(self, key, ttl):
        self.ops.append(lambda: True)

    def execute(self):
        return [op() for op in self.ops]


class CompletionRecorder:
    """MockTransport handler that records requests and replays a canned reply"""

    def __init__(self, content: Optional[str] = "ok", status_code: int = 200, payload: Optional[Any] = None):
        self.content = content
        self.status_code = status_code
        self.payload = payload
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append({"headers": request.headers, "url": str(request.url), "body": body})
        if self.status_code >= 400:
            return httpx.Response(self.status_code, text="upstream exploded")
        if self.payload is not None:
            return httpx.Response(200, json=self.payload)
        return httpx.Response(200, json={
            "choices": [{"message": {"role": "assistant", "content": self.content}}],
            "usage": {"prompt_tokens": 120, "completion_tokens": 12},
        })

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last_body(self) -> Dict[str, Any]:
        return self.requests[-1]["body"]


def make_dispatcher(handler: Callable[[httpx.Request], httpx.Response]) -> ModelDispatcher:
    client = OpenRouterClient(
        api_key="test-key",
        base_url=TEST_BASE_URL,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return ModelDispatcher(client)


@pytest.fixture
def store(tmp_path) -> PostgresStore:
    """File-based SQLite store so concurrent reads get their own connections"""
    db = PostgresStore(f"sqlite:///{tmp_path / 'crm.db'}")
    yield db
    db.close()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def history_cache(fake_redis) -> RedisStore:
    return RedisStore(client=fake_redis)


@pytest.fixture
def completion() -> CompletionRecorder:
    return CompletionRecorder(content="Grounded answer.")


@pytest.fixture
def dispatcher(completion) -> ModelDispatcher:
    return make_dispatcher(completion)


def add_order(store: PostgresStore, contact_id: str, order_id: str, order_date: Optional[date], **fields) -> None:
    store.upsert_order({
        "order_id": order_id,
        "contact_id": contact_id,
        "external_contact_id": "ghl-jane",
        "order_date": order_date,
        **fields,
    })


def add_message(store: PostgresStore, contact_id: str, message_id: str, occurred_at: Optional[datetime], body: str, direction: str = "inbound", **fields) -> None:
    store.upsert_message({
        "external_message_id": message_id,
        "contact_id": contact_id,
        "external_contact_id": "ghl-jane",
        "occurred_at": occurred_at,
        "body": body,
        "direction": direction,
        "channel": fields.pop("channel", "sms"),
        **fields,
    })


@pytest.fixture
def jane(store) -> str:
    """Jane Doe with three orders (latest 2024-01-10) and a short recent thread"""
    contact_id = store.get_or_create_contact("ghl-jane", {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "company": "Doe Prints",
    })
    add_order(store, contact_id, "ORD-1001", date(2023, 11, 2), status="delivered", order_total=89.5)
    add_order(store, contact_id, "ORD-1002", date(2023, 12, 15), status="delivered", order_total=42.0)
    add_order(
        store, contact_id, "ORD-1003", date(2024, 1, 10),
        status="shipped",
        order_total=149.99,
        invoice_link="https://invoices.example.com/ORD-1003",
        shipping_address_raw="12 Main St, Springfield, IL 62701",
        shipping_street1="12 Main Street",
        shipping_city="Springfield",
        tracking_number="1Z999AA10123456784",
        tracking_link="https://track.example.com/1Z999AA10123456784",
    )

    now = datetime.utcnow()
    add_message(store, contact_id, "msg-1", now - timedelta(days=3), "Hi, I placed an order for the canvas prints.")
    add_message(store, contact_id, "msg-2", now - timedelta(days=2), "Thanks Jane, it ships tomorrow.", direction="outbound", sender="Alex")
    add_message(store, contact_id, "msg-3", now - timedelta(days=1), "Can you send the tracking link when it ships?")
    return contact_id


@pytest.fixture
def empty_contact(store) -> str:
    """A contact with no orders and no messages"""
    return store.get_or_create_contact("ghl-new", {"name": "New Lead"})
