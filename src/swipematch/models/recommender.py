"""
Candidate recommendation for the swipematch library.

Candidates run through a fixed sequence of stages on a pandas frame:
eligibility filters, geo bound (nearest first), age window, scoring,
boost, top-N over-fetch, premium filters and the final cut. The order
matters: the premium filters run after the over-fetch, so a paid user
with strict filters can receive fewer than ``limit`` results.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import numpy as np
import pandas as pd

from ..data.loader import build_candidate_frame
from ..data.profiles import UserProfile
from ..data.stores import Clock, ProfileStore, SwipeStore, utc_now
from ..errors import LimitExceededError, NotFoundError, ValidationError
from ..serving.cache import RecommendationCache
from .compatibility import haversine_km_array

logger = logging.getLogger(__name__)


@dataclass
class RecommendationConfig:
    """Scoring points, boost and top-picks settings."""

    distance_points: float = 30.0
    interest_points: float = 25.0
    completeness_points: float = 15.0
    activity_points: float = 15.0
    rating_points: float = 15.0
    rating_span: float = 1000.0
    boost_multiplier: float = 2.0
    overfetch_multiplier: int = 2
    default_limit: int = 10

    top_picks_min_rating: float = 1700.0
    top_picks_min_completeness: float = 0.8
    top_picks_require_verified: bool = True
    top_picks_pool_size: int = 100
    # None means unlimited, 0 means the tier has no access.
    top_picks_tier_limits: Dict[str, Optional[int]] = field(
        default_factory=lambda: {"free": 0, "plus": 0, "gold": 10, "platinum": None}
    )


@dataclass(frozen=True)
class Recommendation:
    user_id: str
    score: float
    rank: int
    distance_km: Optional[float] = None
    age: Optional[int] = None
    boosted: bool = False
    common_interests: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["common_interests"] = list(self.common_interests)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recommendation":
        return cls(**{**data, "common_interests": tuple(data.get("common_interests", ()))})


class RecommendationEngine:
    """Rank candidates for a requester and cache the ranked list."""

    def __init__(
        self,
        profiles: ProfileStore,
        swipes: SwipeStore,
        cache: Optional[RecommendationCache] = None,
        config: Optional[RecommendationConfig] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.profiles = profiles
        self.swipes = swipes
        self.cache = cache
        self.config = config or RecommendationConfig()
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def recommend(
        self, user_id: str, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> List[Recommendation]:
        """
        Return up to ``limit`` candidates, most relevant first.

        Args:
            user_id: The requester
            limit: Maximum number of results (defaults to ``default_limit``)
            now: Reference time, defaults to the engine clock

        Returns:
            List of Recommendation ordered by score
        """
        limit = self.config.default_limit if limit is None else limit
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})

        requester = self._require(user_id)
        if self.cache is not None:
            cached = self.cache.get_recommendations(user_id, limit)
            if cached is not None:
                return [Recommendation.from_dict(item) for item in cached]

        now = now or self._clock()
        ranked = self.rank(requester, limit, now)
        results = self._to_recommendations(ranked)

        if self.cache is not None:
            self.cache.put_recommendations(user_id, limit, [r.to_dict() for r in results])
        logger.debug(f"Recommended {len(results)} candidates for {user_id}")
        return results

    def top_picks(
        self, user_id: str, limit: Optional[int] = None, now: Optional[datetime] = None
    ) -> List[Recommendation]:
        """Highly rated, complete, verified candidates; gated by subscription tier."""
        requester = self._require(user_id)
        allowance = self.config.top_picks_tier_limits.get(requester.tier.value, 0)
        if allowance == 0:
            raise LimitExceededError(
                "Top picks require a Gold or Platinum subscription",
                limit_type="top_picks",
                limit=0,
            )

        wanted = self.config.default_limit if limit is None else limit
        if wanted < 1:
            raise ValidationError("limit must be at least 1", details={"limit": wanted})
        if allowance is not None:
            wanted = min(wanted, allowance)

        if self.cache is not None:
            cached = self.cache.get_top_picks(user_id, wanted)
            if cached is not None:
                return [Recommendation.from_dict(item) for item in cached]

        now = now or self._clock()
        cfg = self.config
        pool = self.rank(requester, max(cfg.top_picks_pool_size, wanted), now)
        mask = (pool["rating"] > cfg.top_picks_min_rating) & (
            pool["profile_completeness"] > cfg.top_picks_min_completeness
        )
        if cfg.top_picks_require_verified:
            mask &= pool["photo_verified"]
        results = self._to_recommendations(pool[mask].head(wanted))

        if self.cache is not None:
            self.cache.put_top_picks(user_id, wanted, [r.to_dict() for r in results])
        return results

    def rank(self, requester: UserProfile, limit: int, now: datetime) -> pd.DataFrame:
        """Run every pipeline stage and return the final ranked frame."""
        excluded = self.swipes.active_targets(requester.user_id)
        frame = build_candidate_frame(self.profiles.iter_candidates(), now)

        df = self._eligible(frame, requester, excluded)
        df = self._within_distance(df, requester)
        df = self._within_age(df, requester)
        if df.empty:
            return df.assign(score=pd.Series(dtype="float64"), common_interests=pd.Series(dtype="object"))

        df = self._score(df, requester)
        df = df.sort_values("score", ascending=False, kind="mergesort")
        df = df.head(limit * self.config.overfetch_multiplier)
        if requester.tier.is_paid:
            df = self._premium_filters(df, requester)
        return df.head(limit)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def _eligible(
        self, df: pd.DataFrame, requester: UserProfile, excluded: Set[str]
    ) -> pd.DataFrame:
        if df.empty:
            return df
        hidden = excluded | set(requester.blocked_users) | {requester.user_id}
        blocks_requester = np.array(
            [requester.user_id in blocked for blocked in df["blocked_users"]], dtype=bool
        )
        mask = ~df["user_id"].isin(hidden).to_numpy() & ~blocks_requester
        mask &= df["show_me"].to_numpy()
        wanted = np.array([requester.preferences.accepts_gender(g) for g in df["gender"]], dtype=bool)
        # Mutual: the candidate must also want to see the requester's gender.
        wants_requester = np.array(
            [prefs.accepts_gender(requester.gender) for prefs in df["preferences"]], dtype=bool
        )
        mask &= wanted & wants_requester
        return df[mask]

    def _within_distance(self, df: pd.DataFrame, requester: UserProfile) -> pd.DataFrame:
        if requester.location is None:
            return df.assign(distance_km=np.nan)
        df = df.dropna(subset=["lon", "lat"])
        if df.empty:
            return df.assign(distance_km=pd.Series(dtype="float64"))
        distance_km = haversine_km_array(
            requester.location, df["lon"].to_numpy(), df["lat"].to_numpy()
        )
        df = df.assign(distance_km=distance_km)
        max_m = requester.preferences.max_distance_km * 1000.0
        df = df[df["distance_km"] * 1000.0 <= max_m]
        return df.sort_values("distance_km", kind="mergesort")

    def _within_age(self, df: pd.DataFrame, requester: UserProfile) -> pd.DataFrame:
        prefs = requester.preferences
        df = df.dropna(subset=["age"])
        return df[(df["age"] >= prefs.age_min) & (df["age"] <= prefs.age_max)]

    def _score(self, df: pd.DataFrame, requester: UserProfile) -> pd.DataFrame:
        cfg = self.config
        max_km = requester.preferences.max_distance_km

        if requester.location is None:
            proximity = np.zeros(len(df))
        elif max_km > 0:
            proximity = 1.0 - df["distance_km"].to_numpy() / max_km
        else:
            proximity = np.ones(len(df))

        mine = requester.interests
        common = [tuple(sorted(mine & theirs)) for theirs in df["interests"]]
        interest_ratio = np.array(
            [
                len(shared) / len(theirs) if theirs else 0.0
                for shared, theirs in zip(common, df["interests"])
            ],
            dtype="float64",
        )
        rating_gap = np.minimum(1.0, np.abs(df["rating"].to_numpy() - requester.rating) / cfg.rating_span)

        score = (
            cfg.distance_points * proximity
            + cfg.interest_points * interest_ratio
            + cfg.completeness_points * df["profile_completeness"].to_numpy()
            + cfg.activity_points * df["activity_score"].to_numpy()
            + cfg.rating_points * (1.0 - rating_gap)
        )
        score = np.where(df["boosted"].to_numpy(), score * cfg.boost_multiplier, score)
        return df.assign(score=score, common_interests=common)

    def _premium_filters(self, df: pd.DataFrame, requester: UserProfile) -> pd.DataFrame:
        prefs = requester.preferences
        if prefs.height_range is not None:
            low, high = prefs.height_range
            df = df.dropna(subset=["height_cm"])
            df = df[(df["height_cm"] >= low) & (df["height_cm"] <= high)]
        if prefs.languages:
            wanted = set(prefs.languages)
            speaks = np.array([bool(wanted & langs) for langs in df["languages"]], dtype=bool)
            df = df[speaks]
        return df

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require(self, user_id: str) -> UserProfile:
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile

    def _to_recommendations(self, df: pd.DataFrame) -> List[Recommendation]:
        results = []
        for rank, row in enumerate(df.itertuples(index=False), start=1):
            distance = None if pd.isna(row.distance_km) else round(float(row.distance_km), 1)
            results.append(
                Recommendation(
                    user_id=row.user_id,
                    score=round(float(row.score), 4),
                    rank=rank,
                    distance_km=distance,
                    age=int(row.age),
                    boosted=bool(row.boosted),
                    common_interests=tuple(row.common_interests),
                )
            )
        return results
