"""Match engagement scoring and interaction bookkeeping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

import pandas as pd

from ..data.records import InteractionCounters, MatchRecord
from ..data.stores import Clock, MatchStore, utc_now
from ..errors import ForbiddenError, ValidationError

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400.0

# (threshold, points): first band whose threshold is exceeded wins.
Bands = Tuple[Tuple[float, int], ...]


@dataclass
class EngagementConfig:
    """Score bands for the 0..100 engagement score."""

    message_bands: Bands = ((100, 30), (50, 20), (10, 10))
    # Recency bands use "days since last message is below threshold".
    recency_bands: Bands = ((1, 20), (3, 15), (7, 10), (14, 5))
    media_bands: Bands = ((20, 20), (10, 15), (5, 10), (0, 5))
    video_call_bands: Bands = ((5, 15), (2, 10), (0, 5))
    date_planned_points: int = 15
    max_score: int = 100
    stale_no_message_days: int = 7
    stale_inactive_days: int = 30
    active_conversation_days: int = 7
    high_engagement_threshold: int = 70


@dataclass
class EngagementSummary:
    """Per-user engagement diagnostics across their matches."""

    total_matches: int
    average_engagement_score: float
    high_engagement_matches: int
    active_conversations: int
    average_message_count: float


def _band_above(value: float, bands: Bands) -> int:
    for threshold, points in bands:
        if value > threshold:
            return points
    return 0


def _band_below(value: float, bands: Bands) -> int:
    for threshold, points in bands:
        if value < threshold:
            return points
    return 0


class EngagementScorer:
    """Compute the engagement score of a match from its interaction counters.

    The score is a pure function of the counters and ``now``; recomputing
    it never changes the result.
    """

    def __init__(self, config: Optional[EngagementConfig] = None) -> None:
        self.config = config or EngagementConfig()
        self.summary_: Optional[EngagementSummary] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def score(self, counters: InteractionCounters, now: datetime) -> int:
        cfg = self.config
        total = _band_above(counters.message_count, cfg.message_bands)

        if counters.last_message_at is not None:
            days = (now - counters.last_message_at).total_seconds() / _SECONDS_PER_DAY
            total += _band_below(days, cfg.recency_bands)

        total += _band_above(counters.media_shared, cfg.media_bands)
        total += _band_above(counters.video_calls, cfg.video_call_bands)
        if counters.date_planned:
            total += cfg.date_planned_points

        return min(cfg.max_score, total)

    def is_stale(self, match: MatchRecord, now: datetime) -> bool:
        """Active match with no first message after a week, or silent for a month."""
        if not match.is_active:
            return False
        interaction = match.interaction
        if interaction.first_message_at is None:
            return now - match.matched_at > timedelta(days=self.config.stale_no_message_days)
        last = interaction.last_message_at or interaction.first_message_at
        return now - last > timedelta(days=self.config.stale_inactive_days)

    def summarize(
        self, matches: Iterable[MatchRecord], user_id: str, now: datetime
    ) -> EngagementSummary:
        """Aggregate engagement across ``user_id``'s matches."""
        cfg = self.config
        rows = [
            {
                "engagement_score": m.engagement_score,
                "message_count": m.interaction.message_count,
                "last_message_at": m.interaction.last_message_at,
            }
            for m in matches
            if m.has_participant(user_id)
        ]
        if not rows:
            self.summary_ = EngagementSummary(0, 0.0, 0, 0, 0.0)
            return self.summary_

        df = pd.DataFrame(rows)
        cutoff = now - timedelta(days=cfg.active_conversation_days)
        last = pd.to_datetime(df["last_message_at"], utc=True)
        active = int((last > pd.Timestamp(cutoff)).sum())

        self.summary_ = EngagementSummary(
            total_matches=int(len(df)),
            average_engagement_score=float(df["engagement_score"].mean()),
            high_engagement_matches=int((df["engagement_score"] > cfg.high_engagement_threshold).sum()),
            active_conversations=active,
            average_message_count=float(df["message_count"].mean()),
        )
        return self.summary_


class EngagementStateMachine:
    """Apply conversation activity to active matches and keep their scores current."""

    def __init__(
        self,
        matches: MatchStore,
        scorer: Optional[EngagementScorer] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.matches = matches
        self.scorer = scorer or EngagementScorer()
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Interaction events
    # ------------------------------------------------------------------
    def record_message(self, match_id: str, sender_id: str) -> MatchRecord:
        now = self._clock()

        def apply(match: MatchRecord) -> None:
            counters = match.interaction
            counters.message_count += 1
            if counters.first_message_at is None:
                counters.first_message_at = now
            counters.last_message_at = now
            counters.last_message_by = sender_id
            recipient = match.other_user(sender_id)
            counters.unread[recipient] = counters.unread.get(recipient, 0) + 1
            match.is_stale = False
            match.stale_since = None

        return self._mutate(match_id, sender_id, apply, now)

    def record_media(self, match_id: str, user_id: str, count: int = 1) -> MatchRecord:
        if count < 1:
            raise ValidationError("Media count must be positive")

        def apply(match: MatchRecord) -> None:
            match.interaction.media_shared += count

        return self._mutate(match_id, user_id, apply, self._clock())

    def record_video_call(self, match_id: str, user_id: str) -> MatchRecord:
        def apply(match: MatchRecord) -> None:
            match.interaction.video_calls += 1

        return self._mutate(match_id, user_id, apply, self._clock())

    def plan_date(self, match_id: str, user_id: str) -> MatchRecord:
        def apply(match: MatchRecord) -> None:
            match.interaction.date_planned = True

        return self._mutate(match_id, user_id, apply, self._clock())

    def mark_read(self, match_id: str, user_id: str) -> MatchRecord:
        def apply(match: MatchRecord) -> None:
            match.interaction.unread[user_id] = 0

        return self._mutate(match_id, user_id, apply, self._clock())

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def refresh(self, match_id: str) -> MatchRecord:
        """Recompute the stored score from the current counters."""
        now = self._clock()

        def apply(match: MatchRecord) -> MatchRecord:
            match.engagement_score = self.scorer.score(match.interaction, now)
            return match

        return self.matches.update(match_id, apply)

    def sweep_stale(self, now: Optional[datetime] = None) -> List[str]:
        """Re-score active matches and flag stale ones. Status is left untouched.

        Returns:
            Ids of matches newly flagged stale
        """
        now = now or self._clock()
        flagged: List[str] = []
        for match in self.matches.active():

            def apply(record: MatchRecord) -> bool:
                if not record.is_active:
                    return False
                record.engagement_score = self.scorer.score(record.interaction, now)
                if record.is_stale or not self.scorer.is_stale(record, now):
                    return False
                record.is_stale = True
                record.stale_since = now
                return True

            if self.matches.update(match.match_id, apply):
                flagged.append(match.match_id)

        if flagged:
            logger.info(f"Flagged {len(flagged)} stale matches")
        return flagged

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _mutate(
        self,
        match_id: str,
        user_id: str,
        apply: Callable[[MatchRecord], None],
        now: datetime,
    ) -> MatchRecord:
        def guarded(match: MatchRecord) -> MatchRecord:
            if not match.has_participant(user_id):
                raise ForbiddenError(f"{user_id} is not part of match {match_id}")
            if not match.is_active:
                raise ValidationError(f"Match {match_id} is {match.status.value}")
            apply(match)
            match.engagement_score = self.scorer.score(match.interaction, now)
            return match

        return self.matches.update(match_id, guarded)
