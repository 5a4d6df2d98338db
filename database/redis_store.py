"""Redis store for chat session history and request counters"""

import redis
import json
import logging
import time
import uuid
from typing import Optional, List, Dict, Any
from config.settings import REDIS_URL, HISTORY_CACHE_TTL
from utils.retry import retry_redis_operation

logger = logging.getLogger(__name__)

# Turns kept per cached session; the prompt replays fewer than this
MAX_CACHED_TURNS = 20


class RedisStore:
    """
    Read-through cache of recent session turns, plus sliding-window counters.

    Postgres holds the full turn log; Redis keeps the latest turns of active
    sessions so follow-up questions skip the database round trip. A missing
    or unavailable Redis is never an error: history falls back to Postgres
    and rate limits are not enforced.
    """

    def __init__(self, url: str = REDIS_URL, client: Optional[redis.Redis] = None):
        """Initialize Redis connection with connection pooling"""
        if client is not None:
            self.client = client
            return

        try:
            pool = redis.ConnectionPool.from_url(
                url,
                decode_responses=True,
                max_connections=50,  # Maximum connections in pool
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30  # Health check every 30 seconds
            )

            self.client = redis.Redis(connection_pool=pool)
            self.client.ping()
            logger.info("✓ Redis connection pool established (max_connections=50)")
        except Exception as e:
            logger.error(f"❌ Failed to connect to Redis: {e}")
            self.client = None

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session_turns:{session_id}"

    @retry_redis_operation()
    def _write(self, key: str, ttl: int, payload: str):
        self.client.setex(key, ttl, payload)

    def set_turns(self, session_id: str, turns: List[Dict[str, Any]], ttl: int = HISTORY_CACHE_TTL):
        """
        Store the latest turns of a session

        Args:
            session_id: Chat session id
            turns: Turns in chronological order ({role, content, model})
            ttl: Time to live in seconds
        """
        if not self.client:
            return

        cached = [
            {"role": t["role"], "content": t["content"], "model": t.get("model")}
            for t in turns[-MAX_CACHED_TURNS:]
        ]
        try:
            self._write(self._key(session_id), ttl, json.dumps(cached))
            logger.debug(f"Cached {len(cached)} turns for session {session_id}")
        except redis.exceptions.RedisError as e:
            logger.error(f"Error caching turns for {session_id}: {e}")

    def get_turns(self, session_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Cached turns of a session, oldest first

        Returns:
            List of turns, or None on a cache miss
        """
        if not self.client:
            return None

        try:
            data = self.client.get(self._key(session_id))
            return json.loads(data) if data else None
        except (redis.exceptions.RedisError, ValueError) as e:
            logger.error(f"Error reading cached turns for {session_id}: {e}")
            return None

    def append_turn(self, session_id: str, role: str, content: str, model: Optional[str] = None):
        """Append a turn to a cached session; sessions not in the cache are left alone"""
        if not self.client:
            return

        turns = self.get_turns(session_id)
        if turns is None:
            return
        turns.append({"role": role, "content": content, "model": model})
        self.set_turns(session_id, turns)

    @retry_redis_operation()
    def _record_hit(self, key: str, window: int, now: float) -> int:
        pipe = self.client.pipeline()
        pipe.zremrangebyscore(key, 0, now - window)
        pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.zcard(key)
        pipe.expire(key, window)
        results = pipe.execute()
        return int(results[2])

    def check_rate_limit(self, key: str, window: int, max_requests: int) -> bool:
        """
        Record a request and report whether it fits the sliding window

        Args:
            key: Counter key (endpoint + caller)
            window: Window length in seconds
            max_requests: Maximum requests allowed inside the window

        Returns:
            True if the request is allowed
        """
        if not self.client:
            logger.warning("Redis not available, skipping rate limit check")
            return True

        try:
            count = self._record_hit(f"ratelimit:{key}", window, time.time())
        except redis.exceptions.RedisError as e:
            logger.error(f"Error checking rate limit for {key}: {e}")
            return True

        if count > max_requests:
            logger.warning(f"⚠️ Rate limit hit for {key}: {count}/{max_requests} in {window}s")
            return False
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get Redis stats"""
        if not self.client:
            return {"status": "unavailable"}

        try:
            info = self.client.info()
            return {
                "status": "connected",
                "used_memory": info.get("used_memory_human"),
                "connected_clients": info.get("connected_clients"),
                "total_commands": info.get("total_commands_processed")
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"status": "error", "error": str(e)}

    def close(self):
        """Close Redis connection"""
        if self.client:
            self.client.close()
            logger.info("Redis connection closed")


class RateLimiter:
    """Per-endpoint request limiter backed by a counter store"""

    def __init__(self, store: RedisStore, limits: Dict[str, Dict[str, int]], enabled: bool = True):
        self.store = store
        self.limits = limits
        self.enabled = enabled

    def allow(self, endpoint: str, caller: str) -> bool:
        limit = self.limits.get(endpoint)
        if not self.enabled or not limit:
            return True
        return self.store.check_rate_limit(f"{endpoint}:{caller}", limit["window"], limit["max"])

    def retry_after(self, endpoint: str) -> int:
        return self.limits.get(endpoint, {}).get("window", 60)


redis_store: Optional[RedisStore] = None


def get_redis_store() -> RedisStore:
    """Get or create the shared Redis store"""
    global redis_store
    if redis_store is None:
        redis_store = RedisStore()
    return redis_store
