"""
Pairwise compatibility scoring.

The score is a weighted sum of five factors in [0, 1]. A factor that
cannot be computed (missing birth date or location) contributes nothing;
its weight is not redistributed onto the others.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional, Tuple

import numpy as np

from ..data.profiles import GeoPoint, UserProfile

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance in km, rounded to one decimal."""
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlon = math.radians(b.lon - a.lon)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return round(EARTH_RADIUS_KM * c, 1)


def haversine_km_array(
    origin: GeoPoint, lons: np.ndarray, lats: np.ndarray
) -> np.ndarray:
    """Vectorised :func:`haversine_km` from one origin to many points (unrounded)."""
    lat1 = np.radians(origin.lat)
    lat2 = np.radians(np.asarray(lats, dtype="float64"))
    dlat = lat2 - lat1
    dlon = np.radians(np.asarray(lons, dtype="float64") - origin.lon)
    h = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    h = np.clip(h, 0.0, 1.0)
    return EARTH_RADIUS_KM * 2.0 * np.arctan2(np.sqrt(h), np.sqrt(1.0 - h))


@dataclass
class CompatibilityConfig:
    """Factor weights and normalisation ranges."""

    interests_weight: float = 0.30
    age_weight: float = 0.20
    distance_weight: float = 0.20
    lifestyle_weight: float = 0.15
    goals_weight: float = 0.15
    age_span_years: float = 20.0
    distance_span_km: float = 100.0
    lifestyle_attribute_weights: Dict[str, float] = field(
        default_factory=lambda: {"drinking": 1.0, "smoking": 1.0, "workout": 0.5}
    )


@dataclass(frozen=True)
class CompatibilityResult:
    overall: float
    common_interests: Tuple[str, ...]
    factors: Dict[str, float]
    distance_km: Optional[float] = None


class CompatibilityScorer:
    """Pure, deterministic 0..1 similarity between two profiles."""

    def __init__(self, config: Optional[CompatibilityConfig] = None):
        self.config = config or CompatibilityConfig()

    def score(self, a: UserProfile, b: UserProfile, now: datetime) -> CompatibilityResult:
        """
        Score how well ``b`` fits ``a``.

        The interest factor is normalised by ``a``'s interest count, so the
        score is not symmetric when the two interest sets differ in size.

        Args:
            a: The swiper (or requester)
            b: The candidate
            now: Reference time for age computation

        Returns:
            CompatibilityResult with the clamped overall score, the shared
            interests and each factor value
        """
        cfg = self.config
        common = tuple(sorted(a.interests & b.interests))
        factors: Dict[str, float] = {
            "interests": len(common) / max(len(a.interests), 1),
            "age": 0.0,
            "distance": 0.0,
            "lifestyle": self._lifestyle(a, b),
            "goals": 0.0,
        }

        age_a, age_b = a.age_at(now), b.age_at(now)
        if age_a is not None and age_b is not None:
            factors["age"] = max(0.0, 1.0 - abs(age_a - age_b) / cfg.age_span_years)

        distance_km = None
        if a.location is not None and b.location is not None:
            distance_km = haversine_km(a.location, b.location)
            factors["distance"] = max(0.0, 1.0 - distance_km / cfg.distance_span_km)

        if a.relationship_goal and a.relationship_goal == b.relationship_goal:
            factors["goals"] = 1.0

        overall = (
            factors["interests"] * cfg.interests_weight
            + factors["age"] * cfg.age_weight
            + factors["distance"] * cfg.distance_weight
            + factors["lifestyle"] * cfg.lifestyle_weight
            + factors["goals"] * cfg.goals_weight
        )
        return CompatibilityResult(
            overall=min(1.0, max(0.0, overall)),
            common_interests=common,
            factors=factors,
            distance_km=distance_km,
        )

    def _lifestyle(self, a: UserProfile, b: UserProfile) -> float:
        compared = 0
        matched = 0.0
        for attr, weight in self.config.lifestyle_attribute_weights.items():
            left = getattr(a.lifestyle, attr, None)
            right = getattr(b.lifestyle, attr, None)
            if left is None or right is None:
                continue
            compared += 1
            if left == right:
                matched += weight
        return matched / compared if compared else 0.0
