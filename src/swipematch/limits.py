"""
Per-user daily quotas for likes, superlikes and undos.

Counters live in the cache store under ``limits:{user}:{YYYY-MM-DD}:{kind}``
so they reset implicitly at the UTC day boundary. A quota is consumed by
reserving it with an atomic increment first; if the increment overshoots
the cap it is rolled back and the request rejected, so concurrent swipes
can never exceed the cap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from .data.profiles import SubscriptionTier, UserProfile
from .data.records import DailyCounters, SwipeAction
from .data.stores import CacheStore, Clock, utc_now
from .errors import LimitExceededError

logger = logging.getLogger(__name__)

COUNTER_KINDS = ("swipes", "likes", "superlikes", "undos")


@dataclass
class TierQuota:
    """Daily caps for one tier. ``None`` means unlimited."""

    likes: Optional[int] = None
    superlikes: Optional[int] = None
    undos: Optional[int] = None


def _default_quotas() -> Dict[str, TierQuota]:
    return {
        SubscriptionTier.FREE.value: TierQuota(likes=100, superlikes=1, undos=1),
        SubscriptionTier.PLUS.value: TierQuota(),
        SubscriptionTier.GOLD.value: TierQuota(),
        SubscriptionTier.PLATINUM.value: TierQuota(),
    }


@dataclass
class TierLimits:
    quotas: Dict[str, TierQuota] = field(default_factory=_default_quotas)
    counter_ttl_seconds: int = 86_400

    def for_tier(self, tier: SubscriptionTier) -> TierQuota:
        return self.quotas.get(tier.value, TierQuota())


def _action_counter(action: SwipeAction) -> Optional[str]:
    if action is SwipeAction.LIKE:
        return "likes"
    if action is SwipeAction.SUPERLIKE:
        return "superlikes"
    return None


class DailyLimits:
    """Reads, reserves and releases daily quota for a user."""

    def __init__(
        self,
        cache: CacheStore,
        limits: Optional[TierLimits] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.cache = cache
        self.limits = limits or TierLimits()
        self._clock = clock or utc_now

    @staticmethod
    def key(user_id: str, now: datetime, kind: str) -> str:
        day = now.astimezone(timezone.utc).strftime("%Y-%m-%d")
        return f"limits:{user_id}:{day}:{kind}"

    def counters(self, user_id: str, now: Optional[datetime] = None) -> DailyCounters:
        now = now or self._clock()
        values = {}
        for kind in COUNTER_KINDS:
            raw = self.cache.get(self.key(user_id, now, kind))
            values[kind] = int(raw) if raw is not None else 0
        return DailyCounters(**values)

    def reserve_swipe(self, profile: UserProfile, action: SwipeAction, now: datetime) -> None:
        """Consume one unit of the action's quota or raise LimitExceededError."""
        kind = _action_counter(action)
        if kind is None:
            return
        cap = getattr(self.limits.for_tier(profile.tier), kind)
        self._reserve(profile.user_id, kind, cap, now)

    def release_swipe(self, profile: UserProfile, action: SwipeAction, now: datetime) -> None:
        kind = _action_counter(action)
        if kind is not None:
            self._increment(profile.user_id, kind, now, -1)

    def record_swipe(self, user_id: str, now: datetime) -> int:
        return self._increment(user_id, "swipes", now, 1)

    def reserve_undo(self, profile: UserProfile, now: datetime) -> None:
        self._reserve(profile.user_id, "undos", self.limits.for_tier(profile.tier).undos, now)

    def release_undo(self, profile: UserProfile, now: datetime) -> None:
        self._increment(profile.user_id, "undos", now, -1)

    def remaining(self, profile: UserProfile, now: Optional[datetime] = None) -> Dict[str, Optional[int]]:
        """Quota left today per capped action; ``None`` means unlimited."""
        now = now or self._clock()
        used = self.counters(profile.user_id, now)
        quota = self.limits.for_tier(profile.tier)
        result: Dict[str, Optional[int]] = {}
        for kind in ("likes", "superlikes", "undos"):
            cap = getattr(quota, kind)
            result[kind] = None if cap is None else max(0, cap - getattr(used, kind))
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _reserve(self, user_id: str, kind: str, cap: Optional[int], now: datetime) -> None:
        if cap is None:
            self._increment(user_id, kind, now, 1)
            return
        used = self._increment(user_id, kind, now, 1)
        if used > cap:
            self._increment(user_id, kind, now, -1)
            logger.warning(f"Daily {kind} limit reached for {user_id} ({cap}/day)")
            raise LimitExceededError(
                f"Daily {kind} limit reached",
                limit_type=kind,
                limit=cap,
            )

    def _increment(self, user_id: str, kind: str, now: datetime, amount: int) -> int:
        return self.cache.atomic_increment(
            self.key(user_id, now, kind), self.limits.counter_ttl_seconds, amount
        )
