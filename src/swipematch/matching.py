"""
Swipe recording and mutual-match detection.

:class:`SwipeMatchProtocol` owns every state change on swipes and matches:
recording a swipe, creating the match when two positive swipes meet,
undo, unmatch and block. Each operation commits its state first and
returns the follow-up side effects (notifications, realtime events,
metrics, cache invalidation, conversation purges) as an outbox for the
caller to dispatch.

Two users liking each other at the same moment both reach match
creation; the match store's active-pair constraint lets exactly one of
them create the record. The other receives ``ConflictError``, loads the
winner's match, links its swipe to it and emits no match effects.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .data.profiles import SubscriptionTier, UserProfile
from .data.records import (
    CompatibilitySnapshot,
    MatchRecord,
    MatchStatus,
    MatchType,
    QualitySnapshot,
    SwipeAction,
    SwipeContext,
    SwipeRecord,
    pair_key,
)
from .data.stores import Clock, MatchStore, ProfileStore, SwipeStore, utc_now
from .errors import (
    AlreadyActedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from .limits import DailyLimits
from .models.compatibility import CompatibilityResult, CompatibilityScorer
from .models.elo import RatingChange, RatingUpdater
from .serving.outbox import (
    EVENT_MATCH_NEW,
    EVENT_MATCH_REMOVED,
    CacheInvalidation,
    ConversationPurge,
    Effect,
    Notification,
    NotificationData,
    NotificationType,
    NotifyUser,
    Priority,
    RealtimeEvent,
    count,
    histogram,
    timing,
)

logger = logging.getLogger(__name__)

_ACTION_STAT = {
    SwipeAction.LIKE: "likes",
    SwipeAction.NOPE: "passes",
    SwipeAction.SUPERLIKE: "superlikes",
}


@dataclass
class SwipeConfig:
    """Swipe protocol settings."""

    # None disables the time window on undo.
    undo_window_seconds: Optional[float] = None
    likes_visible_tiers: Tuple[str, ...] = (
        SubscriptionTier.GOLD.value,
        SubscriptionTier.PLATINUM.value,
    )


@dataclass
class SwipeOutcome:
    swipe: SwipeRecord
    match: Optional[MatchRecord] = None
    match_created: bool = False
    rating: Optional[RatingChange] = None
    remaining: Dict[str, Optional[int]] = field(default_factory=dict)
    effects: List[Effect] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.match is not None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "swipe": {
                "id": self.swipe.swipe_id,
                "action": self.swipe.action.value,
                "undoable": self.swipe.undoable,
            },
            "is_match": self.is_match,
            "remaining": dict(self.remaining),
        }
        if self.match is not None:
            payload["match"] = {
                "id": self.match.match_id,
                "users": list(self.match.users),
                "match_type": self.match.quality.match_type.value,
            }
        if self.rating is not None:
            payload["rating"] = {
                "rating": self.rating.swiper_after,
                "delta": self.rating.swiper_delta,
                "league": self.rating.swiper_league,
                "target_delta": self.rating.target_delta,
                "target_league": self.rating.target_league,
            }
        return payload


@dataclass
class UndoOutcome:
    swipe: SwipeRecord
    removed_match: Optional[MatchRecord] = None
    effects: List[Effect] = field(default_factory=list)


@dataclass
class MatchChange:
    match: MatchRecord
    effects: List[Effect] = field(default_factory=list)


@dataclass(frozen=True)
class IncomingLike:
    user_id: str
    liked_at: datetime
    is_superlike: bool
    message: Optional[str] = None
    compatibility: float = 0.0
    distance_km: Optional[float] = None


@dataclass
class LikesReceived:
    count: int
    blurred: bool
    likes: List[IncomingLike] = field(default_factory=list)


@dataclass(frozen=True)
class MatchView:
    """A match as seen by one participant."""

    match_id: str
    other_user_id: str
    matched_at: datetime
    status: MatchStatus
    match_type: MatchType
    unread_count: int
    engagement_score: int
    is_stale: bool


class SwipeMatchProtocol:
    """Record swipes, enforce quotas and create mutual matches."""

    def __init__(
        self,
        profiles: ProfileStore,
        swipes: SwipeStore,
        matches: MatchStore,
        limits: DailyLimits,
        scorer: Optional[CompatibilityScorer] = None,
        ratings: Optional[RatingUpdater] = None,
        config: Optional[SwipeConfig] = None,
        *,
        clock: Optional[Clock] = None,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.profiles = profiles
        self.swipes = swipes
        self.matches = matches
        self.limits = limits
        self.scorer = scorer or CompatibilityScorer()
        self.ratings = ratings or RatingUpdater(profiles)
        self.config = config or SwipeConfig()
        self._clock = clock or utc_now
        self._timer = timer

    # ------------------------------------------------------------------
    # Swipes
    # ------------------------------------------------------------------
    def process_swipe(
        self,
        from_id: str,
        to_id: str,
        action: Union[SwipeAction, str],
        context: Union[SwipeContext, Mapping[str, Any], None] = None,
    ) -> SwipeOutcome:
        """
        Record a swipe and detect a mutual match.

        Args:
            from_id: The swiper
            to_id: The user being swiped on
            action: ``like``, ``nope`` or ``superlike``
            context: Client context; a mapping is validated into a SwipeContext

        Returns:
            SwipeOutcome with the stored swipe, the match (if any) and the
            outbox of effects to dispatch

        Raises:
            ValidationError: Self-swipe, unknown action or malformed context
            NotFoundError: Either user does not exist
            AlreadyActedError: An active swipe on the target already exists
            LimitExceededError: The daily quota for the action is spent
        """
        started = self._timer()
        action = self._parse_action(action)
        context = self._parse_context(context)
        if from_id == to_id:
            raise ValidationError("Cannot swipe on yourself")

        swiper = self._require_user(from_id)
        target = self._require_user(to_id)
        existing = self.swipes.find_active(from_id, to_id)
        if existing is not None:
            raise AlreadyActedError(
                f"{from_id} already swiped on {to_id}",
                details={"swipe_id": existing.swipe_id},
            )

        now = self._clock()
        snapshot = self.limits.counters(from_id, now)
        self.limits.reserve_swipe(swiper, action, now)
        try:
            compat = self.scorer.score(swiper, target, now)
            record = self.swipes.insert(
                SwipeRecord(
                    from_id=from_id,
                    to_id=to_id,
                    action=action,
                    timestamp=now,
                    context=context,
                    compatibility=CompatibilitySnapshot(compat.overall, compat.common_interests),
                    distance_km=compat.distance_km,
                    counter_snapshot=snapshot,
                )
            )
        except Exception:
            self.limits.release_swipe(swiper, action, now)
            raise
        self.limits.record_swipe(from_id, now)

        match: Optional[MatchRecord] = None
        created = False
        if action.is_positive:
            match, created = self._detect_match(record, compat, now)
            if match is not None:
                record = self.swipes.get(record.swipe_id) or record

        rating = self._update_rating(from_id, to_id, action, matched=match is not None)

        self._increment_stats(from_id, {"swipes": 1, _ACTION_STAT[action]: 1})
        if created:
            for user_id in match.users:
                self._increment_stats(user_id, {"matches": 1})

        effects: List[Effect] = []
        if action is SwipeAction.SUPERLIKE:
            effects.append(self._superlike_notification(swiper, target, context))
        if created:
            effects.extend(self._match_effects(match, {from_id: swiper, to_id: target}))
        effects.append(CacheInvalidation(from_id))
        effects.append(CacheInvalidation(to_id))
        effects.append(count(f"swipe.{action.value}"))
        effects.append(timing("swipe.duration", (self._timer() - started) * 1000.0))

        return SwipeOutcome(
            swipe=record,
            match=match,
            match_created=created,
            rating=rating,
            remaining=self.limits.remaining(swiper, now),
            effects=effects,
        )

    def undo_swipe(self, user_id: str, swipe_id: Optional[str] = None) -> UndoOutcome:
        """
        Withdraw a swipe, by default the user's most recent active one.

        The rating change applied by the original swipe is kept. If the
        swipe had produced a match, that match is deleted and the other
        participant is told.
        """
        profile = self._require_user(user_id)
        now = self._clock()

        if swipe_id is None:
            swipe = self.swipes.latest_active(user_id)
            if swipe is None:
                raise NotFoundError("No swipe to undo")
        else:
            swipe = self.swipes.get(swipe_id)
            if swipe is None:
                raise NotFoundError(f"Swipe {swipe_id} not found")
            if swipe.from_id != user_id:
                raise ForbiddenError("Cannot undo another user's swipe")

        if not swipe.active:
            raise ValidationError("Swipe has already been undone")
        if not swipe.undoable:
            raise ValidationError("Swipe cannot be undone")
        window = self.config.undo_window_seconds
        if window is not None and now - swipe.timestamp > timedelta(seconds=window):
            raise ValidationError("Undo window has expired", details={"window_seconds": window})

        self.limits.reserve_undo(profile, now)
        try:
            swipe = self.swipes.deactivate(swipe.swipe_id)
        except Exception:
            self.limits.release_undo(profile, now)
            raise

        effects: List[Effect] = [
            CacheInvalidation(user_id),
            CacheInvalidation(swipe.to_id),
            count("swipe.undo"),
        ]
        removed = None
        if swipe.match_id is not None:
            removed = self._delete_match(swipe.match_id, user_id, now)
            if removed is not None:
                other = removed.other_user(user_id)
                effects.extend(self._removal_effects(removed, other, "undo"))
                logger.info(f"Match {removed.match_id} deleted by undo from {user_id}")

        return UndoOutcome(swipe=swipe, removed_match=removed, effects=effects)

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------
    def unmatch(self, match_id: str, user_id: str, reason: Optional[str] = None) -> MatchChange:
        now = self._clock()
        match = self.matches.update(
            match_id, self._transition(user_id, MatchStatus.UNMATCHED, now, reason)
        )
        other = match.other_user(user_id)
        effects: List[Effect] = [ConversationPurge(match_id, hard=False)]
        effects.extend(self._removal_effects(match, other, reason))
        effects.append(count("match.unmatch", reason=reason or "unspecified"))
        effects.append(CacheInvalidation(user_id))
        effects.append(CacheInvalidation(other))
        logger.info(f"Match {match_id} unmatched by {user_id}")
        return MatchChange(match=match, effects=effects)

    def block(self, match_id: str, user_id: str, reason: Optional[str] = None) -> MatchChange:
        now = self._clock()
        match = self.matches.update(
            match_id, self._transition(user_id, MatchStatus.BLOCKED, now, reason)
        )
        other = match.other_user(user_id)
        self.profiles.add_to_block_list(user_id, other)
        effects: List[Effect] = [
            ConversationPurge(match_id, hard=True),
            count("match.block"),
            CacheInvalidation(user_id),
            CacheInvalidation(other),
        ]
        logger.info(f"Match {match_id} blocked by {user_id}")
        return MatchChange(match=match, effects=effects)

    def get_match(self, match_id: str, user_id: str) -> MatchView:
        match = self.matches.get(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        if not match.has_participant(user_id):
            raise ForbiddenError(f"{user_id} is not part of match {match_id}")
        return self._view(match, user_id)

    def list_matches(
        self, user_id: str, status: Optional[MatchStatus] = MatchStatus.ACTIVE
    ) -> List[MatchView]:
        self._require_user(user_id)
        found = self.matches.for_user(user_id, status)
        found.sort(key=lambda m: m.matched_at, reverse=True)
        return [self._view(m, user_id) for m in found]

    def who_liked_me(self, user_id: str) -> LikesReceived:
        """Pending positive swipes on ``user_id``; list visible to premium tiers only."""
        profile = self._require_user(user_id)
        acted = self.swipes.active_targets(user_id)
        pending = [
            r for r in self.swipes.incoming_likes(user_id)
            if r.from_id not in acted and self._live_match(r) is None
        ]
        if profile.tier.value not in self.config.likes_visible_tiers:
            return LikesReceived(count=len(pending), blurred=True)

        likes = [
            IncomingLike(
                user_id=r.from_id,
                liked_at=r.timestamp,
                is_superlike=r.action is SwipeAction.SUPERLIKE,
                message=r.context.superlike_message,
                compatibility=r.compatibility.score,
                distance_km=r.distance_km,
            )
            for r in pending
        ]
        return LikesReceived(count=len(likes), blurred=False, likes=likes)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _detect_match(
        self, record: SwipeRecord, compat: CompatibilityResult, now: datetime
    ) -> Tuple[Optional[MatchRecord], bool]:
        reverse = self.swipes.find_active(record.to_id, record.from_id)
        if reverse is None or not reverse.is_positive:
            return None, False
        linked = self._live_match(reverse)
        if linked is not None:
            # A concurrent swipe already created the match and linked both sides.
            self.swipes.link_match(record.swipe_id, linked.match_id)
            return linked, False

        superliked = SwipeAction.SUPERLIKE in (record.action, reverse.action)
        candidate = MatchRecord(
            users=(record.from_id, record.to_id),
            initiated_by=record.from_id,
            matched_at=now,
            quality=QualitySnapshot(
                compatibility=compat.overall,
                common_interests=compat.common_interests,
                distance_km=compat.distance_km,
                match_type=MatchType.SUPERLIKE_MATCH if superliked else MatchType.REGULAR,
                was_recommended=record.context.was_recommended,
            ),
        )
        try:
            match = self.matches.create(candidate)
            created = True
            logger.info(f"Match {match.match_id} created for {match.pair_key}")
        except ConflictError:
            match = self.matches.find_active(pair_key(record.from_id, record.to_id))
            if match is None:
                logger.warning(
                    f"Match for {candidate.pair_key} vanished after a creation conflict"
                )
                return None, False
            created = False
            logger.debug(f"Joined existing match {match.match_id} for {match.pair_key}")

        # A link left behind by a match that was since deleted is replaced.
        self.swipes.link_match(record.swipe_id, match.match_id)
        self.swipes.link_match(reverse.swipe_id, match.match_id, expected=reverse.match_id)
        return match, created

    def _live_match(self, swipe: SwipeRecord) -> Optional[MatchRecord]:
        if swipe.match_id is None:
            return None
        match = self.matches.get(swipe.match_id)
        return match if match is not None and match.is_active else None

    def _update_rating(
        self, from_id: str, to_id: str, action: SwipeAction, *, matched: bool
    ) -> Optional[RatingChange]:
        try:
            return self.ratings.update(from_id, to_id, action, matched=matched)
        except (NotFoundError, TransientStoreError) as exc:
            logger.error(f"Skipping rating update for {from_id}->{to_id}: {exc}")
            return None

    def _increment_stats(self, user_id: str, deltas: Dict[str, int]) -> None:
        try:
            self.profiles.increment_stats(user_id, deltas)
        except TransientStoreError as exc:
            logger.error(f"Dropped stats update {deltas} for {user_id}: {exc}")

    def _delete_match(self, match_id: str, user_id: str, now: datetime) -> Optional[MatchRecord]:
        def apply(match: MatchRecord) -> Optional[MatchRecord]:
            if not match.is_active:
                return None
            match.status = MatchStatus.DELETED
            match.status_changed_by = user_id
            match.status_changed_at = now
            match.status_reason = "undo"
            return match

        return self.matches.update(match_id, apply)

    def _transition(
        self, user_id: str, status: MatchStatus, now: datetime, reason: Optional[str]
    ) -> Callable[[MatchRecord], MatchRecord]:
        def apply(match: MatchRecord) -> MatchRecord:
            if not match.has_participant(user_id):
                raise ForbiddenError(f"{user_id} is not part of match {match.match_id}")
            if not match.is_active:
                raise ValidationError(f"Match {match.match_id} is {match.status.value}")
            match.status = status
            match.status_changed_by = user_id
            match.status_changed_at = now
            match.status_reason = reason
            return match

        return apply

    def _match_effects(
        self, match: MatchRecord, people: Mapping[str, UserProfile]
    ) -> List[Effect]:
        effects: List[Effect] = []
        match_type = match.quality.match_type.value
        for user_id in match.users:
            other = match.other_user(user_id)
            other_profile = people.get(other)
            name = other_profile.display_name if other_profile and other_profile.display_name else "someone"
            effects.append(
                NotifyUser(
                    user_id,
                    Notification(
                        type=NotificationType.NEW_MATCH,
                        title="It's a Match! 🎉",
                        body=f"You and {name} liked each other!",
                        data=NotificationData(
                            match_id=match.match_id, user_id=other, match_type=match_type
                        ),
                        priority=Priority.HIGH,
                    ),
                )
            )
            effects.append(
                RealtimeEvent(
                    user_id,
                    EVENT_MATCH_NEW,
                    {
                        "match_id": match.match_id,
                        "user_id": other,
                        "match_type": match_type,
                        "matched_at": match.matched_at.isoformat(),
                    },
                )
            )
        effects.append(count("match.created", match_type=match_type))
        effects.append(histogram("match.compatibility", match.quality.compatibility))
        return effects

    def _superlike_notification(
        self, swiper: UserProfile, target: UserProfile, context: SwipeContext
    ) -> NotifyUser:
        return NotifyUser(
            target.user_id,
            Notification(
                type=NotificationType.SUPER_LIKE,
                title="Someone Super Liked You! ⭐",
                body=context.superlike_message or "You have a new Super Like",
                data=NotificationData(user_id=swiper.user_id, message=context.superlike_message),
            ),
        )

    def _removal_effects(
        self, match: MatchRecord, notify_id: str, reason: Optional[str]
    ) -> List[Effect]:
        return [
            NotifyUser(
                notify_id,
                Notification(
                    type=NotificationType.SYSTEM,
                    title="Match Removed",
                    body="One of your matches is no longer available",
                    data=NotificationData(match_id=match.match_id, reason=reason),
                ),
            ),
            RealtimeEvent(notify_id, EVENT_MATCH_REMOVED, {"match_id": match.match_id}),
        ]

    def _view(self, match: MatchRecord, user_id: str) -> MatchView:
        return MatchView(
            match_id=match.match_id,
            other_user_id=match.other_user(user_id),
            matched_at=match.matched_at,
            status=match.status,
            match_type=match.quality.match_type,
            unread_count=match.interaction.unread.get(user_id, 0),
            engagement_score=match.engagement_score,
            is_stale=match.is_stale,
        )

    def _require_user(self, user_id: str) -> UserProfile:
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile

    @staticmethod
    def _parse_action(action: Union[SwipeAction, str]) -> SwipeAction:
        try:
            return SwipeAction(action)
        except ValueError as exc:
            raise ValidationError(f"Unknown swipe action: {action!r}") from exc

    @staticmethod
    def _parse_context(context: Union[SwipeContext, Mapping[str, Any], None]) -> SwipeContext:
        if context is None:
            return SwipeContext()
        if isinstance(context, SwipeContext):
            return context
        try:
            return SwipeContext(**dict(context))
        except TypeError as exc:
            raise ValidationError(f"Malformed swipe context: {exc}") from exc
