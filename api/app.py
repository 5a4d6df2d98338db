"""
CRM Chat Assistant API
FastAPI application: chat ask, CRM ingestion, contact tools, summaries
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import time
from config.settings import APP_NAME, ALLOWED_ORIGINS, OPENROUTER_API_KEY, RATE_LIMITS, ENABLE_RATE_LIMITING
from utils.error_handler import register_error_handlers
from api.dependencies import build_services
from api.chat import router as chat_router
from api.contacts import router as contacts_router
from api.ingest import router as ingest_router
from api.summaries import router as summaries_router
from api.analytics import router as analytics_router

logger = logging.getLogger(__name__)


def create_app(store=None, dispatcher=None, history_cache=None, usage_tracker=None, rate_limiter=None) -> FastAPI:
    """
    Build the application

    Components that are not passed in are created from settings.
    """
    from database.postgres_store import get_postgres_store
    from database.redis_store import RateLimiter, get_redis_store
    from bot.model_dispatcher import get_model_dispatcher
    from services.usage_tracking import get_usage_tracker

    app = FastAPI(
        title=APP_NAME,
        version="1.0.0",
        description="Internal chat assistant answering questions about CRM contacts"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register error handlers
    register_error_handlers(app)

    history_cache = history_cache or get_redis_store()
    app.state.services = build_services(
        store=store or get_postgres_store(),
        dispatcher=dispatcher or get_model_dispatcher(),
        history_cache=history_cache,
        usage_tracker=usage_tracker or get_usage_tracker(),
        rate_limiter=rate_limiter or RateLimiter(history_cache, RATE_LIMITS, ENABLE_RATE_LIMITING),
    )

    app.include_router(chat_router)
    app.include_router(contacts_router)
    app.include_router(ingest_router)
    app.include_router(summaries_router)
    app.include_router(analytics_router)

    @app.get("/")
    async def root():
        """Health check endpoint"""
        return {"status": "ok", "service": APP_NAME}

    @app.get("/health")
    async def health_check():
        """Detailed health check with dependency verification"""
        services = app.state.services
        health_status = {
            "status": "healthy",
            "timestamp": time.time(),
            "components": {}
        }

        db = services.store.get_pool_stats()
        health_status["components"]["database"] = db
        if db.get("status") != "connected":
            health_status["status"] = "unhealthy"

        cache = services.history_cache.get_stats()
        health_status["components"]["redis"] = cache
        if cache.get("status") != "connected" and health_status["status"] == "healthy":
            health_status["status"] = "degraded"

        if OPENROUTER_API_KEY:
            health_status["components"]["openrouter"] = "configured"
        else:
            health_status["components"]["openrouter"] = "not_configured"
            health_status["status"] = "unhealthy"

        return health_status

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.services.dispatcher.client.close()
        logger.info("✓ Completion client closed")

    logger.info(f"✅ {APP_NAME} ready")
    return app
