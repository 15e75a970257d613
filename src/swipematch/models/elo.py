"""
ELO-based desirability rating for the swipematch library.

Ratings move after every swipe: the swiper is scored as a player whose
"result" is how positive the action was, the target as the opponent.
The two updates are deliberately not zero-sum. With a like (0.7) between
equal ratings the swiper gains 6 and the target loses 6, but for a nope
(0.3) the swiper loses 6 while the target gains 6, so a rejected user's
rating rises.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, Sequence, Tuple

from ..data.profiles import UserProfile
from ..data.records import SwipeAction
from ..data.stores import ProfileStore
from ..errors import NotFoundError, TransientStoreError

logger = logging.getLogger(__name__)

LEAGUE_LABELS: Tuple[str, ...] = ("Bronze", "Silver", "Gold", "Platinum", "Diamond")
LEAGUE_THRESHOLDS: Tuple[float, ...] = (1200.0, 1500.0, 1800.0, 2200.0)


@dataclass
class EloConfig:
    """Configuration for the ELO rating system."""

    k_factor: float = 32.0
    expectation_scale: float = 400.0
    action_scores: Dict[str, float] = field(
        default_factory=lambda: {"superlike": 1.0, "like": 0.7, "nope": 0.3}
    )
    default_action_score: float = 0.5
    max_write_attempts: int = 3
    retry_backoff_seconds: float = 0.05


@dataclass(frozen=True)
class RatingChange:
    """Before/after ratings for one swipe."""

    swiper_id: str
    target_id: str
    swiper_before: float
    target_before: float
    swiper_after: int
    target_after: int
    expected: float
    actual: float
    matched: bool = False
    swiper_persisted: bool = True
    target_persisted: bool = True

    @property
    def swiper_delta(self) -> float:
        return self.swiper_after - self.swiper_before

    @property
    def target_delta(self) -> float:
        return self.target_after - self.target_before

    @property
    def swiper_league(self) -> str:
        return league_for_rating(self.swiper_after)

    @property
    def target_league(self) -> str:
        return league_for_rating(self.target_after)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def expected_score(swiper_rating: float, target_rating: float, scale: float = 400.0) -> float:
    """Probability-like expectation that the swiper "wins" against the target."""
    return 1.0 / (1.0 + 10.0 ** ((target_rating - swiper_rating) / scale))


def league_for_rating(
    rating: float,
    *,
    thresholds: Sequence[float] = LEAGUE_THRESHOLDS,
    league_labels: Sequence[str] = LEAGUE_LABELS,
) -> str:
    """Map a rating onto its league label using fixed rating boundaries."""
    if len(league_labels) != len(thresholds) + 1:
        raise ValueError("league_labels must have exactly one more entry than thresholds")
    for threshold, label in zip(thresholds, league_labels):
        if rating < threshold:
            return label
    return league_labels[-1]


class RatingUpdater:
    """
    Apply ELO updates to the profile store after each swipe.

    Both new ratings are computed from one pre-update snapshot and written
    independently. A write that fails with :class:`TransientStoreError` is
    retried on its own; before each retry the stored rating is re-read and
    the retry skipped when it already holds the computed value, so a write
    that landed despite reporting failure is never applied twice. Persistent
    failure is logged and reported on the result, never raised.
    """

    def __init__(
        self,
        profiles: ProfileStore,
        config: Optional[EloConfig] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.profiles = profiles
        self.config = config or EloConfig()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def actual_score(self, action: SwipeAction | str) -> float:
        key = action.value if isinstance(action, SwipeAction) else str(action)
        return self.config.action_scores.get(key, self.config.default_action_score)

    def compute(
        self,
        swiper_id: str,
        target_id: str,
        swiper_rating: float,
        target_rating: float,
        action: SwipeAction | str,
        *,
        matched: bool = False,
    ) -> RatingChange:
        """Pure rating arithmetic; nothing is persisted."""
        k = self.config.k_factor
        expected = expected_score(swiper_rating, target_rating, self.config.expectation_scale)
        actual = self.actual_score(action)
        return RatingChange(
            swiper_id=swiper_id,
            target_id=target_id,
            swiper_before=swiper_rating,
            target_before=target_rating,
            swiper_after=round_half_up(swiper_rating + k * (actual - expected)),
            target_after=round_half_up(target_rating + k * ((1.0 - actual) - (1.0 - expected))),
            expected=expected,
            actual=actual,
            matched=matched,
        )

    def update(
        self,
        swiper_id: str,
        target_id: str,
        action: SwipeAction | str,
        *,
        matched: bool = False,
    ) -> RatingChange:
        """
        Read both ratings, compute the update and persist it.

        Args:
            swiper_id: User who swiped
            target_id: User who was swiped on
            action: The swipe action
            matched: Whether the swipe produced a match (carried for
                future weighting; does not change the arithmetic)

        Returns:
            RatingChange describing the applied update
        """
        swiper = self._read(swiper_id)
        target = self._read(target_id)
        if swiper is None or target is None:
            missing = swiper_id if swiper is None else target_id
            raise NotFoundError(f"User {missing} not found")

        change = self.compute(
            swiper_id, target_id, swiper.rating, target.rating, action, matched=matched
        )
        swiper_ok = self._write(swiper_id, change.swiper_after)
        target_ok = self._write(target_id, change.target_after)

        logger.debug(
            f"Rating update {swiper_id}->{target_id} ({action}): "
            f"{change.swiper_before:.0f}->{change.swiper_after}, "
            f"{change.target_before:.0f}->{change.target_after}"
        )
        if swiper_ok and target_ok:
            return change
        return replace(change, swiper_persisted=swiper_ok, target_persisted=target_ok)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _read(self, user_id: str) -> Optional[UserProfile]:
        attempts = max(1, self.config.max_write_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return self.profiles.get_profile(user_id)
            except TransientStoreError:
                if attempt == attempts:
                    raise
                logger.warning(f"Rating read for {user_id} failed (attempt {attempt}), retrying")
                self._sleep(self.config.retry_backoff_seconds * attempt)
        return None

    def _write(self, user_id: str, rating: int) -> bool:
        attempts = max(1, self.config.max_write_attempts)
        for attempt in range(1, attempts + 1):
            try:
                if attempt > 1:
                    current = self.profiles.get_profile(user_id)
                    if current is not None and current.rating == rating:
                        return True
                self.profiles.update_rating(user_id, rating)
                return True
            except TransientStoreError as exc:
                if attempt == attempts:
                    logger.error(
                        f"Giving up on rating write for {user_id} after {attempts} attempts: {exc}"
                    )
                    return False
                logger.warning(f"Rating write for {user_id} failed (attempt {attempt}), retrying")
                self._sleep(self.config.retry_backoff_seconds * attempt)
        return False
