"""Retry utilities with exponential backoff"""

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    retry_if_exception_type,
    before_sleep_log
)
from sqlalchemy.exc import OperationalError, DisconnectionError
import redis
import logging
from utils.error_handler import DatabaseError

logger = logging.getLogger(__name__)


def retry_with_backoff(max_attempts=3, multiplier=1, min_wait=1, max_wait=10, exceptions=(Exception,)):
    """
    Generic retry decorator with exponential backoff

    Args:
        max_attempts: Maximum number of retry attempts
        multiplier: Exponential multiplier
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Tuple of exceptions to retry on
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


TRANSIENT_DB_ERRORS = (OperationalError, DisconnectionError)


def is_transient_db_error(exc: BaseException) -> bool:
    """True for connection failures, raw or wrapped in a DatabaseError by the store"""
    if isinstance(exc, DatabaseError):
        exc = exc.__cause__
    return isinstance(exc, TRANSIENT_DB_ERRORS)


def retry_db_operation(max_attempts=3):
    """
    Retry a store call on transient connection failures

    Query errors surface immediately. Store methods convert SQLAlchemy errors
    into DatabaseError (raised from the original), so the cause is inspected.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        retry=retry_if_exception(is_transient_db_error),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


retry_redis_operation = lambda max_attempts=2: retry_with_backoff(
    max_attempts=max_attempts,
    multiplier=0.5,
    min_wait=0.5,
    max_wait=2,
    exceptions=(redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)
)
