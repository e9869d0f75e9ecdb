"""
Flask Caching Utilities
=======================

TTL caching for expensive read-only route helpers (queue inspection,
domain status), backed by Flask-Caching.

Usage:
    from sync_dashboard.flask_cache_utils import cache_data

    @cache_data(ttl=30)
    def get_expensive_data(param1, param2):
        return data
"""

import hashlib
import json
import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional

from flask import Flask, has_app_context
from flask_caching import Cache

logger = logging.getLogger(__name__)

cache = Cache()


def init_cache(app: Flask) -> Cache:
    """Attach the cache to an app. CACHE_TYPE defaults to SimpleCache."""
    app.config.setdefault('CACHE_TYPE', 'SimpleCache')
    app.config.setdefault('CACHE_DEFAULT_TIMEOUT', 30)
    cache.init_app(app)
    logger.debug(f"Cache initialized with backend {app.config['CACHE_TYPE']}")
    return cache


def _make_cache_key(func_name: str, args: tuple, kwargs: dict) -> str:
    """
    Generate a cache key from function name and arguments.
    """
    key_parts = [func_name]

    if args:
        args_str = json.dumps(args, sort_keys=True, default=str)
        key_parts.append(f"args:{hashlib.md5(args_str.encode()).hexdigest()}")

    if kwargs:
        kwargs_str = json.dumps(kwargs, sort_keys=True, default=str)
        key_parts.append(f"kwargs:{hashlib.md5(kwargs_str.encode()).hexdigest()}")

    full_key = "|".join(key_parts)
    return hashlib.sha256(full_key.encode()).hexdigest()


def cache_data(ttl: Optional[int] = None):
    """
    Decorator for caching function results.

    Outside an app context the function runs uncached.

    Args:
        ttl: Time to live in seconds. None uses CACHE_DEFAULT_TIMEOUT.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not has_app_context():
                return func(*args, **kwargs)

            cache_key = _make_cache_key(func.__name__, args, kwargs)
            cached_value = cache.get(cache_key)

            if cached_value is not None:
                logger.debug(f"Cache hit for {func.__name__} with key {cache_key[:16]}...")
                return cached_value

            logger.debug(f"Cache miss for {func.__name__} with key {cache_key[:16]}...")
            result = func(*args, **kwargs)
            cache.set(cache_key, result, timeout=ttl)
            return result

        def clear_cache(*args, **kwargs):
            """Clear cache for this function with specific arguments."""
            cache.delete(_make_cache_key(func.__name__, args, kwargs))

        wrapper.clear_cache = clear_cache
        return wrapper

    return decorator


def clear_all_caches() -> None:
    """Clear all cached data."""
    cache.clear()
    logger.info("All caches cleared")


def get_cache_stats() -> Dict[str, Any]:
    """Backend name and timeout of the active cache."""
    if not has_app_context():
        return {'backend': None}
    from flask import current_app
    return {
        'backend': current_app.config.get('CACHE_TYPE'),
        'default_timeout': current_app.config.get('CACHE_DEFAULT_TIMEOUT'),
    }
