"""Short-lived cache of ranked recommendation lists."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..data.stores import CacheStore

logger = logging.getLogger(__name__)

RECOMMENDATIONS_PREFIX = "recommendations"
TOP_PICKS_PREFIX = "top-picks"


@dataclass
class CacheConfig:
    recommendations_ttl_seconds: int = 1800
    top_picks_ttl_seconds: int = 86_400


class RecommendationCache:
    """
    Per-user cache of recommendation payloads.

    Entries remember the limit they were computed for; a cached list only
    serves requests whose limit does not exceed it. Concurrent writers are
    last-write-wins.
    """

    def __init__(self, store: CacheStore, config: Optional[CacheConfig] = None):
        self.store = store
        self.config = config or CacheConfig()

    @staticmethod
    def recommendations_key(user_id: str) -> str:
        return f"{RECOMMENDATIONS_PREFIX}:{user_id}"

    @staticmethod
    def top_picks_key(user_id: str) -> str:
        return f"{TOP_PICKS_PREFIX}:{user_id}"

    def get_recommendations(self, user_id: str, limit: int) -> Optional[List[Dict[str, Any]]]:
        return self._get(self.recommendations_key(user_id), limit)

    def put_recommendations(self, user_id: str, limit: int, items: List[Dict[str, Any]]) -> None:
        self._put(
            self.recommendations_key(user_id),
            limit,
            items,
            self.config.recommendations_ttl_seconds,
        )

    def get_top_picks(self, user_id: str, limit: int) -> Optional[List[Dict[str, Any]]]:
        return self._get(self.top_picks_key(user_id), limit)

    def put_top_picks(self, user_id: str, limit: int, items: List[Dict[str, Any]]) -> None:
        self._put(self.top_picks_key(user_id), limit, items, self.config.top_picks_ttl_seconds)

    def invalidate(self, user_id: str) -> None:
        """Drop every cached list for ``user_id``."""
        for key in (self.recommendations_key(user_id), self.top_picks_key(user_id)):
            self.store.delete(key)
        logger.debug(f"Invalidated recommendation cache for {user_id}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _get(self, key: str, limit: int) -> Optional[List[Dict[str, Any]]]:
        raw = self.store.get(key)
        if raw is None:
            logger.debug(f"Cache miss {key}")
            return None
        try:
            entry = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            self.store.delete(key)
            return None
        if entry.get("limit", 0) < limit:
            logger.debug(f"Cache entry {key} too short for limit={limit}")
            return None
        logger.debug(f"Cache hit {key}")
        return entry["items"][:limit]

    def _put(self, key: str, limit: int, items: List[Dict[str, Any]], ttl: int) -> None:
        payload = json.dumps({"limit": limit, "items": items})
        self.store.set(key, payload, ttl)
