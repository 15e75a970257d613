"""
Thread-safe in-memory implementations of the store contracts.

These back the test-suite and local experiments. Each store guards its
state with a single lock, so the uniqueness guarantees the engine relies
on (one active swipe per directed pair, one active match per pair,
atomic counters) hold under real threads.
"""

from __future__ import annotations

import copy
import fnmatch
import threading
from collections import Counter, defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple, TypeVar

from ..errors import AlreadyActedError, ConflictError, NotFoundError, ValidationError
from .profiles import UserProfile
from .records import MatchRecord, MatchStatus, PairKey, SwipeRecord
from .stores import Clock, utc_now

T = TypeVar("T")


class InMemoryProfileStore:
    """Profile store keyed by user id."""

    def __init__(self, profiles: Iterable[UserProfile] = ()):
        self._lock = threading.Lock()
        self._profiles: Dict[str, UserProfile] = {}
        self._stats: Dict[str, Counter] = defaultdict(Counter)
        for profile in profiles:
            self._profiles[profile.user_id] = profile

    def add(self, profile: UserProfile) -> None:
        with self._lock:
            self._profiles[profile.user_id] = profile

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            return self._profiles.get(user_id)

    def iter_candidates(self) -> Iterable[UserProfile]:
        with self._lock:
            return list(self._profiles.values())

    def update_rating(self, user_id: str, rating: float) -> None:
        with self._lock:
            profile = self._require(user_id)
            self._profiles[user_id] = replace(profile, rating=rating)

    def increment_stats(self, user_id: str, deltas: Mapping[str, int]) -> None:
        with self._lock:
            self._require(user_id)
            self._stats[user_id].update(deltas)

    def get_stats(self, user_id: str) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats.get(user_id, {}))

    def add_to_block_list(self, user_id: str, blocked_id: str) -> None:
        with self._lock:
            profile = self._require(user_id)
            blocked = frozenset(profile.blocked_users | {blocked_id})
            self._profiles[user_id] = replace(profile, blocked_users=blocked)

    def _require(self, user_id: str) -> UserProfile:
        profile = self._profiles.get(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile


class InMemorySwipeStore:
    """Swipe log with a directed-pair uniqueness index on active records."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, SwipeRecord] = {}
        self._order: Dict[str, int] = {}
        self._active: Dict[Tuple[str, str], str] = {}

    def insert(self, record: SwipeRecord) -> SwipeRecord:
        key = (record.from_id, record.to_id)
        with self._lock:
            if key in self._active:
                raise AlreadyActedError(
                    f"{record.from_id} already swiped on {record.to_id}",
                    details={"swipe_id": self._active[key]},
                )
            self._records[record.swipe_id] = record
            self._order[record.swipe_id] = len(self._order)
            if record.active:
                self._active[key] = record.swipe_id
            return record

    def get(self, swipe_id: str) -> Optional[SwipeRecord]:
        with self._lock:
            return self._records.get(swipe_id)

    def find_active(self, from_id: str, to_id: str) -> Optional[SwipeRecord]:
        with self._lock:
            swipe_id = self._active.get((from_id, to_id))
            return self._records[swipe_id] if swipe_id else None

    def latest_active(self, from_id: str) -> Optional[SwipeRecord]:
        with self._lock:
            mine = [
                self._records[swipe_id]
                for (swiper, _), swipe_id in self._active.items()
                if swiper == from_id
            ]
            if not mine:
                return None
            return max(mine, key=lambda r: (r.timestamp, self._order[r.swipe_id]))

    def link_match(
        self, swipe_id: str, match_id: str, expected: Optional[str] = None
    ) -> SwipeRecord:
        with self._lock:
            record = self._require(swipe_id)
            if record.match_id == expected:
                record = replace(record, match_id=match_id)
                self._records[swipe_id] = record
            return record

    def deactivate(self, swipe_id: str) -> SwipeRecord:
        with self._lock:
            record = self._require(swipe_id)
            if not record.active:
                raise ValidationError(f"Swipe {swipe_id} is no longer active")
            record = replace(record, active=False)
            self._records[swipe_id] = record
            self._active.pop((record.from_id, record.to_id), None)
            return record

    def active_targets(self, from_id: str) -> Set[str]:
        with self._lock:
            return {target for (swiper, target) in self._active if swiper == from_id}

    def incoming_likes(self, to_id: str) -> List[SwipeRecord]:
        with self._lock:
            records = [
                self._records[swipe_id]
                for (_, target), swipe_id in self._active.items()
                if target == to_id
            ]
        return sorted(
            (r for r in records if r.is_positive),
            key=lambda r: r.timestamp,
            reverse=True,
        )

    def _require(self, swipe_id: str) -> SwipeRecord:
        record = self._records.get(swipe_id)
        if record is None:
            raise NotFoundError(f"Swipe {swipe_id} not found")
        return record


class InMemoryMatchStore:
    """Match table with a uniqueness constraint on active pairs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, MatchRecord] = {}
        self._active_pairs: Dict[PairKey, str] = {}

    def create(self, record: MatchRecord) -> MatchRecord:
        with self._lock:
            existing = self._active_pairs.get(record.pair_key)
            if existing is not None:
                raise ConflictError(
                    f"Pair {record.pair_key} already has an active match",
                    details={"match_id": existing},
                )
            self._records[record.match_id] = copy.deepcopy(record)
            if record.is_active:
                self._active_pairs[record.pair_key] = record.match_id
            return copy.deepcopy(record)

    def get(self, match_id: str) -> Optional[MatchRecord]:
        with self._lock:
            record = self._records.get(match_id)
            return copy.deepcopy(record) if record else None

    def find_active(self, pair_key: PairKey) -> Optional[MatchRecord]:
        with self._lock:
            match_id = self._active_pairs.get(pair_key)
            return copy.deepcopy(self._records[match_id]) if match_id else None

    def update(self, match_id: str, mutate: Callable[[MatchRecord], T]) -> T:
        with self._lock:
            current = self._records.get(match_id)
            if current is None:
                raise NotFoundError(f"Match {match_id} not found")
            working = copy.deepcopy(current)
            result = mutate(working)
            self._records[match_id] = working
            if not working.is_active and self._active_pairs.get(working.pair_key) == match_id:
                del self._active_pairs[working.pair_key]
            return result

    def for_user(self, user_id: str, status: Optional[MatchStatus] = None) -> List[MatchRecord]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._records.values()
                if record.has_participant(user_id) and (status is None or record.status is status)
            ]

    def active(self) -> List[MatchRecord]:
        with self._lock:
            return [copy.deepcopy(self._records[mid]) for mid in self._active_pairs.values()]


class InMemoryCacheStore:
    """String key/value cache with per-key expiry driven by an injectable clock."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[str, datetime]] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + timedelta(seconds=ttl_seconds))

    def delete(self, pattern: str) -> int:
        with self._lock:
            if any(ch in pattern for ch in "*?["):
                keys = [k for k in self._data if fnmatch.fnmatchcase(k, pattern)]
            else:
                keys = [pattern] if pattern in self._data else []
            for key in keys:
                del self._data[key]
            return len(keys)

    def atomic_increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int:
        with self._lock:
            current = self._live(key)
            if current is None:
                value = amount
                expires_at = self._clock() + timedelta(seconds=ttl_seconds)
            else:
                value = int(current) + amount
                expires_at = self._data[key][1]
            self._data[key] = (str(value), expires_at)
            return value

    def keys(self) -> List[str]:
        with self._lock:
            return [k for k in list(self._data) if self._live(k) is not None]

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value


class InMemoryConversationStore:
    """Records purge requests; the conversation service itself lives elsewhere."""

    def __init__(self) -> None:
        self.purged: List[Tuple[str, bool]] = []

    def purge(self, match_id: str, hard: bool) -> None:
        self.purged.append((match_id, hard))


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, Any]] = []

    def notify(self, user_id: str, notification: Any) -> None:
        self.sent.append((user_id, notification))

    def for_user(self, user_id: str) -> List[Any]:
        return [n for uid, n in self.sent if uid == user_id]


class RecordingRealtime:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((user_id, event, payload))


class RecordingMetrics:
    def __init__(self) -> None:
        self.counts: Counter = Counter()
        self.timings: List[Tuple[str, float]] = []
        self.histograms: List[Tuple[str, float]] = []
        self.tags: List[Tuple[str, Dict[str, str]]] = []

    def count(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None) -> None:
        self.counts[name] += value
        if tags:
            self.tags.append((name, dict(tags)))

    def timing(self, name: str, millis: float, tags: Optional[Dict[str, str]] = None) -> None:
        self.timings.append((name, millis))

    def histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self.histograms.append((name, value))
