# common/cache.py
import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger(__name__)

AVAILABILITY_PREFIX = "rooms:availability:"
PERSON_NAME_PREFIX = "people:name:"

_redis_client: Optional[redis.Redis] = None
_redis_url: Optional[str] = None


def configure(redis_url: Optional[str]) -> None:
    """
    Point the cache at a Redis URL (or disable it with ``None``).

    The connection is opened lazily on first use.
    """
    global _redis_client, _redis_url
    _redis_url = redis_url
    _redis_client = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Return a Redis client if a URL is configured and reachable, otherwise None.
    Caching is silently disabled when Redis is down.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client
    if not _redis_url:
        return None

    try:
        client = redis.from_url(_redis_url, decode_responses=True)
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable at %s, caching disabled: %s", _redis_url, exc)
        return None

    _redis_client = client
    return _redis_client


def get_cached_json(key: str) -> Optional[Any]:
    client = get_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except redis.RedisError:
        return None
    return json.loads(raw) if raw is not None else None


def set_cached_json(key: str, value: Any, ttl_seconds: int = 60) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(key, ttl_seconds, json.dumps(value, default=str))
    except redis.RedisError as exc:
        logger.warning("Could not cache %s: %s", key, exc)


def delete_prefix(prefix: str) -> None:
    """
    Delete all keys starting with prefix.
    Example: prefix='rooms:availability:12:'.
    """
    client = get_redis_client()
    if client is None:
        return
    try:
        for key in client.scan_iter(prefix + "*"):
            client.delete(key)
    except redis.RedisError as exc:
        logger.warning("Could not invalidate %s*: %s", prefix, exc)


def availability_key(room_id: int, *parts: Any) -> str:
    return AVAILABILITY_PREFIX + ":".join(str(p) for p in (room_id,) + parts)


def invalidate_room_availability(room_id: Optional[int] = None) -> None:
    """Drop cached availability for one room, or for every room."""
    if room_id is None:
        delete_prefix(AVAILABILITY_PREFIX)
    else:
        delete_prefix(f"{AVAILABILITY_PREFIX}{room_id}:")
