"""
CRM Chat Assistant - Production Version
Answers agent questions about CRM contacts from the database or an LLM
"""

import uvicorn
import logging
from config.settings import PORT, APP_NAME, MODEL_BY_TIER, ENVIRONMENT, DEBUG

logging.basicConfig(
    level=logging.DEBUG if DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    """Start the API server"""
    logger.info(f"🚀 Starting {APP_NAME} ({ENVIRONMENT})...")
    logger.info(f"📡 API server will listen on port {PORT}")
    logger.info("="*60)
    logger.info("⚙️  Configuration:")
    for tier, model in MODEL_BY_TIER.items():
        logger.info(f"  - {tier} tier: {model}")
    logger.info("  - Database: PostgreSQL (SQLAlchemy)")
    logger.info("  - Session history cache: Redis")
    logger.info("="*60)

    uvicorn.run(
        "api.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=PORT,
        reload=False,
        log_level="debug" if DEBUG else "info"
    )


if __name__ == "__main__":
    main()
