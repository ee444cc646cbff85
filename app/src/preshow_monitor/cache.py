import hashlib
import json
import logging
from dataclasses import asdict
from typing import Optional

import redis

from .config import Config
from .models import Automation, PlaylistCacheEntry, PlaylistItem

PLAYLIST_KEY_PREFIX = "preshow:playlist:"


class Cache:
    """JSON documents by key, each with its own expiry."""

    def get_json(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set_json(self, key: str, value: dict, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class NullCache(Cache):
    def get_json(self, key: str) -> Optional[dict]:
        return None

    def set_json(self, key: str, value: dict, ttl_seconds: int) -> None:
        return None

    def delete(self, key: str) -> None:
        return None

    def close(self) -> None:
        return None


class RedisCache(Cache):
    """Shared second tier; every failure is logged and reads as a miss."""

    def __init__(self, redis_url: str, logger: logging.Logger, *, timeout_seconds: float = 2.0) -> None:
        self._logger = logger
        self._client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=timeout_seconds,
            socket_timeout=timeout_seconds,
        )
        self._client.ping()

    def get_json(self, key: str) -> Optional[dict]:
        try:
            raw = self._client.get(key)
        except redis.RedisError:
            self._logger.warning("cache_get_failed key=%s", key, exc_info=True)
            return None
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except ValueError:
            self._logger.warning("cache_value_unreadable key=%s", key)
            return None
        return value if isinstance(value, dict) else None

    def set_json(self, key: str, value: dict, ttl_seconds: int) -> None:
        try:
            self._client.setex(key, ttl_seconds, json.dumps(value, ensure_ascii=False))
        except (redis.RedisError, TypeError, ValueError):
            self._logger.warning("cache_set_failed key=%s", key, exc_info=True)

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError:
            self._logger.warning("cache_delete_failed key=%s", key, exc_info=True)

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError:
            self._logger.debug("cache_close_failed", exc_info=True)


def cache_key_for_playlist(theater: str, show_title: str) -> str:
    digest = hashlib.sha1(f"{theater}|{show_title}".encode("utf-8")).hexdigest()
    return PLAYLIST_KEY_PREFIX + digest


def encode_playlist(entry: PlaylistCacheEntry) -> dict:
    return {
        "show_title": entry.show_title,
        "fetched_at": entry.fetched_at,
        "items": [asdict(item) for item in entry.items],
    }


def decode_playlist(raw: dict) -> PlaylistCacheEntry:
    """Inverse of encode_playlist. Raises KeyError/TypeError/ValueError on a malformed document."""
    items = []
    for doc in raw["items"]:
        fields = dict(doc)
        automations = tuple(Automation(**a) for a in fields.pop("automations", None) or ())
        fields["classes"] = tuple(fields.get("classes") or ())
        items.append(PlaylistItem(**fields, automations=automations))
    return PlaylistCacheEntry(
        show_title=str(raw["show_title"]),
        items=items,
        fetched_at=float(raw["fetched_at"]),
    )


def build_cache(cfg: Config, logger: logging.Logger) -> Cache:
    if not cfg.cache_enabled:
        logger.info("cache_disabled")
        return NullCache()
    if not cfg.redis_url:
        logger.warning("cache_enabled_but_no_redis_url")
        return NullCache()
    try:
        cache = RedisCache(cfg.redis_url, logger)
    except redis.RedisError:
        logger.warning("cache_init_failed fallback=null", exc_info=True)
        return NullCache()
    logger.info("cache_enabled redis_url=%s", cfg.redis_url)
    return cache
