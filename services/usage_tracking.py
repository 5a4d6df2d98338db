"""
Usage Tracking Service
Records completion usage and estimated cost in the Supabase usage_tracking table
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from supabase import create_client, Client
from config.settings import SUPABASE_URL, SUPABASE_KEY

logger = logging.getLogger(__name__)

# Cost per 1M tokens (OpenRouter pricing)
COST_PER_MILLION = {
    "google/gemini-2.0-flash": 0.15,
    "google/gemini-2.0-flash-001": 0.15,
    "google/gemini-2.5-flash": 0.30,
    "anthropic/claude-3.7-sonnet": 3.00,
}

USAGE_TABLE = "usage_tracking"


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token estimate: ~4 characters per token"""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def estimate_cost(model: Optional[str], input_tokens: int, output_tokens: int) -> float:
    total = (input_tokens or 0) + (output_tokens or 0)
    return total * COST_PER_MILLION.get(model or "", 0) / 1_000_000


class UsageTracker:
    """Writes one usage row per model call; failures are logged, never raised"""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client"""
        self.supabase: Optional[Client] = client
        if self.supabase is not None:
            return
        if SUPABASE_URL and SUPABASE_KEY:
            try:
                self.supabase = create_client(SUPABASE_URL, SUPABASE_KEY)
                logger.info("✓ Usage Tracking: Supabase client initialized")
            except Exception as e:
                logger.error(f"Failed to initialize Supabase client for usage tracking: {e}")
                self.supabase = None
        else:
            logger.warning("Usage Tracking: Supabase credentials not configured")

    def track_usage(
        self,
        endpoint: str,
        contact_id: Optional[str] = None,
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        tier: Optional[str] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        response_time_ms: Optional[int] = None,
        error: Optional[str] = None
    ) -> bool:
        """
        Record a model call

        Returns:
            True if the row was written
        """
        if not self.supabase:
            return False

        record = {
            "endpoint": endpoint,
            "contact_id": contact_id,
            "session_id": session_id,
            "model": model,
            "tier": tier,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "estimated_cost": estimate_cost(model, input_tokens, output_tokens),
            "response_time_ms": response_time_ms,
            "error": error[:500] if error else None,
        }

        try:
            self.supabase.table(USAGE_TABLE).insert(record).execute()
            return True
        except Exception as e:
            logger.error(f"Failed to track usage for {endpoint}: {e}")
            return False

    def get_usage_stats(self, days: int = 7) -> Optional[Dict[str, Any]]:
        """Aggregate usage of the last `days` days by model and tier"""
        if not self.supabase:
            logger.warning("Supabase not available, cannot load usage stats")
            return None

        since = datetime.utcnow() - timedelta(days=days)
        try:
            response = self.supabase.table(USAGE_TABLE).select("*").gte(
                "created_at", since.isoformat()
            ).order("created_at", desc=True).execute()
        except Exception as e:
            logger.error(f"Failed to get usage stats: {e}")
            return None

        rows = response.data or []
        stats: Dict[str, Any] = {
            "totalRequests": len(rows),
            "totalTokens": 0,
            "totalCost": 0.0,
            "avgResponseTime": 0.0,
            "errorRate": 0.0,
            "byModel": {},
            "byTier": {},
        }
        if not rows:
            return stats

        by_model = defaultdict(lambda: {"count": 0, "tokens": 0, "cost": 0.0})
        by_tier = defaultdict(lambda: {"count": 0, "tokens": 0, "cost": 0.0})
        response_time = 0
        errors = 0

        for row in rows:
            tokens = (row.get("input_tokens") or 0) + (row.get("output_tokens") or 0)
            cost = float(row.get("estimated_cost") or 0)
            stats["totalTokens"] += tokens
            stats["totalCost"] += cost
            response_time += row.get("response_time_ms") or 0
            if row.get("error"):
                errors += 1
            for key, bucket in (("model", by_model), ("tier", by_tier)):
                if row.get(key):
                    entry = bucket[row[key]]
                    entry["count"] += 1
                    entry["tokens"] += tokens
                    entry["cost"] += cost

        stats["avgResponseTime"] = response_time / len(rows)
        stats["errorRate"] = errors / len(rows)
        stats["byModel"] = dict(by_model)
        stats["byTier"] = dict(by_tier)
        return stats


usage_tracker: Optional[UsageTracker] = None


def get_usage_tracker() -> UsageTracker:
    """Get or create the shared usage tracker"""
    global usage_tracker
    if usage_tracker is None:
        usage_tracker = UsageTracker()
    return usage_tracker
