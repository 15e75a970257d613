"""
Candidate frame construction for the recommendation pipeline.
"""

from datetime import datetime
from typing import Iterable, Optional

import numpy as np
import pandas as pd

from .profiles import UserProfile

CANDIDATE_COLUMNS = [
    "user_id",
    "gender",
    "show_me",
    "lon",
    "lat",
    "age",
    "interests",
    "profile_completeness",
    "activity_score",
    "rating",
    "height_cm",
    "languages",
    "photo_verified",
    "boosted",
    "blocked_users",
    "preferences",
]


class CandidateLoader:
    """Turns profile records into the tabular form the recommender filters on."""

    def __init__(self):
        self._frame: Optional[pd.DataFrame] = None

    @property
    def frame(self) -> pd.DataFrame:
        if self._frame is None:
            raise ValueError("No candidates loaded. Call load() first.")
        return self._frame

    def load(self, profiles: Iterable[UserProfile], now: datetime) -> "CandidateLoader":
        """
        Build the candidate frame.

        Args:
            profiles: Candidate profiles (the requester may be included; the
                recommender excludes it)
            now: Reference time for ages and boost expiry

        Returns:
            Self for method chaining
        """
        rows = [self._row(profile, now) for profile in profiles]
        frame = pd.DataFrame(rows, columns=CANDIDATE_COLUMNS)
        self._frame = self._coerce(frame)
        return self

    def _row(self, profile: UserProfile, now: datetime) -> dict:
        location = profile.location
        age = profile.age_at(now)
        return {
            "user_id": profile.user_id,
            "gender": profile.gender,
            "show_me": profile.preferences.show_me,
            "lon": location.lon if location else np.nan,
            "lat": location.lat if location else np.nan,
            "age": float(age) if age is not None else np.nan,
            "interests": profile.interests,
            "profile_completeness": profile.profile_completeness,
            "activity_score": profile.activity_score,
            "rating": profile.rating,
            "height_cm": float(profile.height_cm) if profile.height_cm is not None else np.nan,
            "languages": profile.languages,
            "photo_verified": profile.photo_verified,
            "boosted": profile.has_active_boost(now),
            "blocked_users": profile.blocked_users,
            "preferences": profile.preferences,
        }

    def _coerce(self, frame: pd.DataFrame) -> pd.DataFrame:
        return frame.astype(
            {
                "user_id": "object",
                "show_me": "bool",
                "lon": "float64",
                "lat": "float64",
                "age": "float64",
                "profile_completeness": "float64",
                "activity_score": "float64",
                "rating": "float64",
                "height_cm": "float64",
                "photo_verified": "bool",
                "boosted": "bool",
            }
        )


def build_candidate_frame(profiles: Iterable[UserProfile], now: datetime) -> pd.DataFrame:
    return CandidateLoader().load(profiles, now).frame
