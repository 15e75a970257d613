"""
Profile types consumed by the matching engine.

Profiles are owned by user management; the engine only reads them, apart
from the rating, lifetime stats and block list which it writes back
through :class:`~swipematch.data.stores.ProfileStore`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import FrozenSet, Optional, Tuple

SECONDS_PER_YEAR = 31_557_600  # 365.25 days

DEFAULT_RATING = 1500.0
DEFAULT_MAX_DISTANCE_KM = 50.0
MIN_AGE = 18
MAX_AGE = 100


class SubscriptionTier(str, enum.Enum):
    FREE = "free"
    PLUS = "plus"
    GOLD = "gold"
    PLATINUM = "platinum"

    @property
    def is_paid(self) -> bool:
        return self is not SubscriptionTier.FREE


@dataclass(frozen=True)
class GeoPoint:
    """A WGS84 point. Stored lon-first, matching GeoJSON ordering."""

    lon: float
    lat: float

    def __post_init__(self) -> None:
        if not -180.0 <= self.lon <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lon}")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")


@dataclass(frozen=True)
class Lifestyle:
    drinking: Optional[str] = None
    smoking: Optional[str] = None
    workout: Optional[str] = None


@dataclass(frozen=True)
class Preferences:
    """Discovery preferences set by the user."""

    gender_preference: Tuple[str, ...] = ()
    show_me: bool = True
    max_distance_km: float = DEFAULT_MAX_DISTANCE_KM
    age_min: int = MIN_AGE
    age_max: int = MAX_AGE
    height_range: Optional[Tuple[int, int]] = None
    languages: Tuple[str, ...] = ()

    def accepts_gender(self, gender: Optional[str]) -> bool:
        # An empty preference list means everyone.
        if not self.gender_preference:
            return True
        return gender in self.gender_preference


@dataclass(frozen=True)
class UserProfile:
    """Read-only view of a user as seen by the matching engine."""

    user_id: str
    gender: Optional[str] = None
    birth_date: Optional[date] = None
    location: Optional[GeoPoint] = None
    interests: FrozenSet[str] = field(default_factory=frozenset)
    lifestyle: Lifestyle = field(default_factory=Lifestyle)
    relationship_goal: Optional[str] = None
    rating: float = DEFAULT_RATING
    profile_completeness: float = 0.0
    activity_score: float = 0.0
    tier: SubscriptionTier = SubscriptionTier.FREE
    preferences: Preferences = field(default_factory=Preferences)
    height_cm: Optional[int] = None
    languages: FrozenSet[str] = field(default_factory=frozenset)
    photo_verified: bool = False
    boost_expires_at: Optional[datetime] = None
    blocked_users: FrozenSet[str] = field(default_factory=frozenset)
    display_name: Optional[str] = None

    def age_at(self, now: datetime) -> Optional[int]:
        return age_in_years(self.birth_date, now)

    def has_active_boost(self, now: datetime) -> bool:
        return self.boost_expires_at is not None and self.boost_expires_at > now


def age_in_years(birth_date: Optional[date], now: datetime) -> Optional[int]:
    """Whole years elapsed since ``birth_date``, using 365.25-day years."""
    if birth_date is None:
        return None
    born = datetime(birth_date.year, birth_date.month, birth_date.day, tzinfo=timezone.utc)
    elapsed = (now - born).total_seconds()
    return int(elapsed // SECONDS_PER_YEAR)
