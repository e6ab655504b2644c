"""
Thread-safe rate-limited logging.

Used for warnings that can repeat on every poll (undecodable log entries,
retried fetches) so they stay visible without flooding the log.
"""
import logging
import threading
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Keys seen recently; entries expire on their own after the TTL
_seen_cache = TTLCache(maxsize=256, ttl=3600)
_seen_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None
) -> bool:
    """
    Log a message at most once per `interval` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between two logs with the same key, in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: De-duplication key; defaults to level and message

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)

    cache_key = (key or f"{level}:{message}", interval)

    with _seen_cache_lock:
        # TTLCache has one TTL for all entries, so the interval is enforced
        # by comparing against the cache timer
        last = _seen_cache.get(cache_key)
        now = _seen_cache.timer()
        if last is not None and now - last < interval:
            return False
        _seen_cache[cache_key] = now

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget all suppressed keys."""
    with _seen_cache_lock:
        _seen_cache.clear()
