"""Service container shared by the API routers"""

from dataclasses import dataclass
from fastapi import Request

from bot.model_dispatcher import ModelDispatcher
from database.postgres_store import PostgresStore
from database.redis_store import RateLimiter, RedisStore
from services.chat_service import ChatService
from services.ingestion import IngestionService
from services.status_analyzer import StatusAnalyzer
from services.summary_service import SummaryService
from services.usage_tracking import UsageTracker
from utils.error_handler import RateLimitExceeded


@dataclass
class Services:
    store: PostgresStore
    dispatcher: ModelDispatcher
    history_cache: RedisStore
    usage_tracker: UsageTracker
    rate_limiter: RateLimiter
    chat: ChatService
    status: StatusAnalyzer
    summaries: SummaryService
    ingestion: IngestionService


def build_services(store, dispatcher, history_cache, usage_tracker, rate_limiter) -> Services:
    return Services(
        store=store,
        dispatcher=dispatcher,
        history_cache=history_cache,
        usage_tracker=usage_tracker,
        rate_limiter=rate_limiter,
        chat=ChatService(store, dispatcher, history_cache, usage_tracker),
        status=StatusAnalyzer(store, dispatcher),
        summaries=SummaryService(store, dispatcher),
        ingestion=IngestionService(store),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def rate_limited(endpoint: str):
    """Route dependency rejecting callers over the endpoint's request budget"""
    def check(request: Request):
        limiter = get_services(request).rate_limiter
        if not limiter.allow(endpoint, client_key(request)):
            raise RateLimitExceeded(endpoint, limiter.retry_after(endpoint))
    return check
