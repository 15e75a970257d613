"""
Contracts for the collaborators the matching engine talks to.

The engine never reaches for a global connection; every store and
delivery channel is passed in explicitly. :mod:`swipematch.data.memory`
ships thread-safe in-memory implementations of all of them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Set,
    TypeVar,
)

from .profiles import UserProfile
from .records import MatchRecord, MatchStatus, PairKey, SwipeRecord

if TYPE_CHECKING:  # pragma: no cover
    from ..serving.outbox import Notification

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProfileStore(Protocol):
    def get_profile(self, user_id: str) -> Optional[UserProfile]: ...

    def iter_candidates(self) -> Iterable[UserProfile]: ...

    def update_rating(self, user_id: str, rating: float) -> None: ...

    def increment_stats(self, user_id: str, deltas: Mapping[str, int]) -> None: ...

    def get_stats(self, user_id: str) -> Dict[str, int]: ...

    def add_to_block_list(self, user_id: str, blocked_id: str) -> None: ...


class SwipeStore(Protocol):
    def insert(self, record: SwipeRecord) -> SwipeRecord:
        """Persist ``record``; raises ``AlreadyActedError`` if the directed pair already has an active swipe."""
        ...

    def get(self, swipe_id: str) -> Optional[SwipeRecord]: ...

    def find_active(self, from_id: str, to_id: str) -> Optional[SwipeRecord]: ...

    def latest_active(self, from_id: str) -> Optional[SwipeRecord]: ...

    def link_match(
        self, swipe_id: str, match_id: str, expected: Optional[str] = None
    ) -> SwipeRecord:
        """Set ``match_id`` only if the current link equals ``expected``."""
        ...

    def deactivate(self, swipe_id: str) -> SwipeRecord:
        """Flip ``active`` off; raises ``ValidationError`` if it is already inactive."""
        ...

    def active_targets(self, from_id: str) -> Set[str]: ...

    def incoming_likes(self, to_id: str) -> List[SwipeRecord]: ...


class MatchStore(Protocol):
    def create(self, record: MatchRecord) -> MatchRecord:
        """Persist ``record``; raises ``ConflictError`` if the pair already has an active match."""
        ...

    def get(self, match_id: str) -> Optional[MatchRecord]: ...

    def find_active(self, pair_key: PairKey) -> Optional[MatchRecord]: ...

    def update(self, match_id: str, mutate: Callable[[MatchRecord], T]) -> T:
        """Apply ``mutate`` atomically; changes are discarded if it raises."""
        ...

    def for_user(
        self, user_id: str, status: Optional[MatchStatus] = None
    ) -> List[MatchRecord]: ...

    def active(self) -> List[MatchRecord]: ...


class CacheStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def delete(self, pattern: str) -> int:
        """Delete a key, or every key matching a glob pattern."""
        ...

    def atomic_increment(self, key: str, ttl_seconds: int, amount: int = 1) -> int: ...


class ConversationStore(Protocol):
    def purge(self, match_id: str, hard: bool) -> None: ...


class NotificationDispatch(Protocol):
    def notify(self, user_id: str, notification: "Notification") -> None: ...


class RealtimePush(Protocol):
    def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> None: ...


class MetricsSink(Protocol):
    def count(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None) -> None: ...

    def timing(self, name: str, millis: float, tags: Optional[Dict[str, str]] = None) -> None: ...

    def histogram(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None: ...
