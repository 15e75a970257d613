"""
Swipe and match records owned by the matching engine.

Swipe records are immutable: the stores replace them with
:func:`dataclasses.replace` when ``active`` flips off or ``match_id`` is
linked. Match records are mutable and only changed through
``MatchStore.update``, which applies a mutation atomically.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


class SwipeAction(str, enum.Enum):
    LIKE = "like"
    NOPE = "nope"
    SUPERLIKE = "superlike"

    @property
    def is_positive(self) -> bool:
        return self is not SwipeAction.NOPE


class MatchStatus(str, enum.Enum):
    ACTIVE = "active"
    UNMATCHED = "unmatched"
    BLOCKED = "blocked"
    DELETED = "deleted"


class MatchType(str, enum.Enum):
    REGULAR = "regular"
    SUPERLIKE_MATCH = "superlike_match"


def new_id() -> str:
    return uuid.uuid4().hex


PairKey = Tuple[str, str]


def pair_key(user_a: str, user_b: str) -> PairKey:
    """Canonical key for an unordered pair of users."""
    first, second = sorted((user_a, user_b))
    return first, second


@dataclass(frozen=True)
class SwipeContext:
    """Client-supplied context captured with a swipe.

    The field set is closed; bump ``version`` when adding fields.
    """

    version: int = 1
    source: str = "recommendations"
    photo_index: Optional[int] = None
    view_duration_ms: Optional[int] = None
    photos_viewed: Optional[int] = None
    bio_viewed: Optional[bool] = None
    platform: Optional[str] = None
    app_version: Optional[str] = None
    recommendation_score: Optional[float] = None
    superlike_message: Optional[str] = None

    @property
    def was_recommended(self) -> bool:
        return self.source == "recommendations"


@dataclass(frozen=True)
class DailyCounters:
    """Per user per UTC day quota usage."""

    swipes: int = 0
    likes: int = 0
    superlikes: int = 0
    undos: int = 0


@dataclass(frozen=True)
class CompatibilitySnapshot:
    score: float = 0.0
    common_interests: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SwipeRecord:
    from_id: str
    to_id: str
    action: SwipeAction
    timestamp: datetime
    swipe_id: str = field(default_factory=new_id)
    context: SwipeContext = field(default_factory=SwipeContext)
    compatibility: CompatibilitySnapshot = field(default_factory=CompatibilitySnapshot)
    distance_km: Optional[float] = None
    counter_snapshot: DailyCounters = field(default_factory=DailyCounters)
    match_id: Optional[str] = None
    undoable: bool = True
    active: bool = True

    @property
    def is_positive(self) -> bool:
        return self.action.is_positive


@dataclass
class QualitySnapshot:
    compatibility: float = 0.0
    common_interests: Tuple[str, ...] = ()
    distance_km: Optional[float] = None
    match_type: MatchType = MatchType.REGULAR
    was_recommended: bool = False


@dataclass
class InteractionCounters:
    """Conversation activity on a match; unread counts are keyed by user id."""

    message_count: int = 0
    first_message_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    last_message_by: Optional[str] = None
    unread: Dict[str, int] = field(default_factory=dict)
    media_shared: int = 0
    video_calls: int = 0
    date_planned: bool = False


@dataclass
class MatchRecord:
    users: Tuple[str, str]
    initiated_by: str
    matched_at: datetime
    match_id: str = field(default_factory=new_id)
    status: MatchStatus = MatchStatus.ACTIVE
    status_changed_by: Optional[str] = None
    status_changed_at: Optional[datetime] = None
    status_reason: Optional[str] = None
    quality: QualitySnapshot = field(default_factory=QualitySnapshot)
    interaction: InteractionCounters = field(default_factory=InteractionCounters)
    engagement_score: int = 0
    is_stale: bool = False
    stale_since: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.users = tuple(sorted(self.users))  # type: ignore[assignment]
        if len(self.users) != 2 or self.users[0] == self.users[1]:
            raise ValueError("A match needs two distinct users")
        for user_id in self.users:
            self.interaction.unread.setdefault(user_id, 0)

    @property
    def pair_key(self) -> PairKey:
        return pair_key(*self.users)

    @property
    def is_active(self) -> bool:
        return self.status is MatchStatus.ACTIVE

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.users

    def other_user(self, user_id: str) -> str:
        if user_id not in self.users:
            raise ValueError(f"{user_id} is not part of match {self.match_id}")
        return self.users[1] if self.users[0] == user_id else self.users[0]

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["quality"]["match_type"] = self.quality.match_type.value
        data["pair_key"] = list(self.pair_key)
        return data
