from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from swipematch import MatchingEngine
from swipematch.data.profiles import GeoPoint, Lifestyle, Preferences, UserProfile

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

# Midtown Manhattan; one degree of latitude is roughly 111.2 km.
ORIGIN = GeoPoint(lon=-73.9857, lat=40.7484)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def north_of(point: GeoPoint, km: float) -> GeoPoint:
    return GeoPoint(lon=point.lon, lat=point.lat + km / 111.2)


def make_profile(user_id: str, **overrides) -> UserProfile:
    """Complete profile, 30 years old at NOW. Override any field via kwargs."""
    data = {
        "user_id": user_id,
        "display_name": user_id.title(),
        "gender": "female",
        "birth_date": date(1996, 1, 1),
        "location": ORIGIN,
        "interests": frozenset({"hiking", "coffee", "jazz"}),
        "lifestyle": Lifestyle(drinking="socially", smoking="never", workout="often"),
        "relationship_goal": "long_term",
        "profile_completeness": 0.9,
        "activity_score": 0.8,
        "preferences": Preferences(),
    }
    data.update(overrides)
    return UserProfile(**data)


def with_prefs(profile: UserProfile, **prefs) -> UserProfile:
    return replace(profile, preferences=replace(profile.preferences, **prefs))


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def people():
    return {
        "alice": make_profile("alice", gender="female", preferences=Preferences(gender_preference=("male",))),
        "bob": make_profile("bob", gender="male", preferences=Preferences(gender_preference=("female",))),
        "carol": make_profile("carol", gender="female", preferences=Preferences(gender_preference=("male",))),
        "dave": make_profile("dave", gender="male", preferences=Preferences(gender_preference=("female",))),
    }


@pytest.fixture
def engine(clock, people):
    return MatchingEngine.in_memory(people.values(), clock=clock)
