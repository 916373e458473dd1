"""
Thread-safe rate-limited logging.

Polling loops report progress on every iteration; this keeps the log
readable by emitting a given message at most once per interval.
"""
import logging
import threading
import time
from typing import Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

# Entries expire after an hour regardless of the per-call interval
_log_cache: TTLCache = TTLCache(maxsize=256, ttl=3600)
_log_cache_lock = threading.RLock()


def rate_limited_log(
    message: str,
    level: str = "info",
    interval: float = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message unless the same key was logged within ``interval`` seconds.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between two emissions of the same key
        logger_instance: Logger to use (defaults to module logger)
        key: Rate-limiting key; defaults to level plus message

    Returns:
        True if the message was emitted
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _log_cache_lock:
        now = time.monotonic()
        last = _log_cache.get(cache_key)
        if last is not None and now - last < interval:
            return False
        log_method(message)
        _log_cache[cache_key] = now
        return True


def reset_rate_limits() -> None:
    """Forget every recorded emission."""
    with _log_cache_lock:
        _log_cache.clear()
