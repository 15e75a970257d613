import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .config import MatchingConfig
from .data.memory import (
    InMemoryCacheStore,
    InMemoryConversationStore,
    InMemoryMatchStore,
    InMemoryProfileStore,
    InMemorySwipeStore,
    RecordingMetrics,
    RecordingNotifier,
    RecordingRealtime,
)
from .data.profiles import UserProfile
from .data.records import MatchRecord, MatchStatus, SwipeAction, SwipeContext
from .data.stores import (
    CacheStore,
    Clock,
    ConversationStore,
    MatchStore,
    MetricsSink,
    NotificationDispatch,
    ProfileStore,
    RealtimePush,
    SwipeStore,
    utc_now,
)
from .errors import NotFoundError
from .limits import DailyLimits
from .matching import (
    LikesReceived,
    MatchChange,
    MatchView,
    SwipeMatchProtocol,
    SwipeOutcome,
    UndoOutcome,
)
from .models.compatibility import CompatibilityResult, CompatibilityScorer
from .models.elo import RatingUpdater, league_for_rating
from .models.engagement import EngagementScorer, EngagementStateMachine, EngagementSummary
from .models.recommender import Recommendation, RecommendationEngine
from .serving.cache import RecommendationCache
from .serving.outbox import DispatchReport, Effect, EffectDispatcher

logger = logging.getLogger(__name__)


class MatchingEngine:
    """High level API for performing matching tasks.

    Every collaborator is passed in; nothing is looked up globally. Core
    operations commit their state through the components and then hand the
    resulting effects to the dispatcher.
    """

    def __init__(
        self,
        *,
        profiles: ProfileStore,
        swipes: SwipeStore,
        matches: MatchStore,
        cache_store: CacheStore,
        notifier: Optional[NotificationDispatch] = None,
        realtime: Optional[RealtimePush] = None,
        metrics: Optional[MetricsSink] = None,
        conversations: Optional[ConversationStore] = None,
        config: Optional[MatchingConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or MatchingConfig()
        self.clock = clock or utc_now
        self.profiles = profiles
        self.swipes = swipes
        self.matches = matches
        self.cache_store = cache_store
        self.notifier = notifier
        self.realtime = realtime
        self.metrics = metrics
        self.conversations = conversations

        self.cache = RecommendationCache(cache_store, self.config.cache)
        self.limits = DailyLimits(cache_store, self.config.limits, clock=self.clock)
        self.scorer = CompatibilityScorer(self.config.compatibility)
        self.ratings = RatingUpdater(profiles, self.config.elo)
        self.recommender = RecommendationEngine(
            profiles, swipes, self.cache, self.config.recommendations, clock=self.clock
        )
        self.protocol = SwipeMatchProtocol(
            profiles,
            swipes,
            matches,
            self.limits,
            scorer=self.scorer,
            ratings=self.ratings,
            config=self.config.swipes,
            clock=self.clock,
        )
        self.engagement = EngagementStateMachine(
            matches, EngagementScorer(self.config.engagement), clock=self.clock
        )
        self.dispatcher = EffectDispatcher(
            notifier=notifier,
            realtime=realtime,
            metrics=metrics,
            cache=self.cache,
            conversations=conversations,
        )
        self.last_dispatch_: Optional[DispatchReport] = None

    @classmethod
    def in_memory(
        cls,
        profiles: Iterable[UserProfile] = (),
        *,
        config: Optional[MatchingConfig] = None,
        clock: Optional[Clock] = None,
    ) -> "MatchingEngine":
        """Engine wired to the bundled in-memory stores and recording channels."""
        return cls(
            profiles=InMemoryProfileStore(profiles),
            swipes=InMemorySwipeStore(),
            matches=InMemoryMatchStore(),
            cache_store=InMemoryCacheStore(clock=clock),
            notifier=RecordingNotifier(),
            realtime=RecordingRealtime(),
            metrics=RecordingMetrics(),
            conversations=InMemoryConversationStore(),
            config=config,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def recommend(self, user_id: str, limit: Optional[int] = None) -> List[Recommendation]:
        return self.recommender.recommend(user_id, limit)

    def top_picks(self, user_id: str, limit: Optional[int] = None) -> List[Recommendation]:
        return self.recommender.top_picks(user_id, limit)

    def compatibility(self, user_id: str, other_id: str) -> CompatibilityResult:
        return self.scorer.score(self._require(user_id), self._require(other_id), self.clock())

    def who_liked_me(self, user_id: str) -> LikesReceived:
        return self.protocol.who_liked_me(user_id)

    # ------------------------------------------------------------------
    # Swipes and matches
    # ------------------------------------------------------------------
    def swipe(
        self,
        from_id: str,
        to_id: str,
        action: Union[SwipeAction, str],
        context: Union[SwipeContext, dict, None] = None,
    ) -> SwipeOutcome:
        outcome = self.protocol.process_swipe(from_id, to_id, action, context)
        self._dispatch(outcome.effects)
        return outcome

    def undo(self, user_id: str, swipe_id: Optional[str] = None) -> UndoOutcome:
        outcome = self.protocol.undo_swipe(user_id, swipe_id)
        self._dispatch(outcome.effects)
        return outcome

    def unmatch(self, match_id: str, user_id: str, reason: Optional[str] = None) -> MatchChange:
        change = self.protocol.unmatch(match_id, user_id, reason)
        self._dispatch(change.effects)
        return change

    def block(self, match_id: str, user_id: str, reason: Optional[str] = None) -> MatchChange:
        change = self.protocol.block(match_id, user_id, reason)
        self._dispatch(change.effects)
        return change

    def get_match(self, match_id: str, user_id: str) -> MatchView:
        return self.protocol.get_match(match_id, user_id)

    def list_matches(
        self, user_id: str, status: Optional[MatchStatus] = MatchStatus.ACTIVE
    ) -> List[MatchView]:
        return self.protocol.list_matches(user_id, status)

    # ------------------------------------------------------------------
    # Engagement
    # ------------------------------------------------------------------
    def record_message(self, match_id: str, sender_id: str) -> MatchRecord:
        return self.engagement.record_message(match_id, sender_id)

    def record_media(self, match_id: str, user_id: str, count: int = 1) -> MatchRecord:
        return self.engagement.record_media(match_id, user_id, count)

    def record_video_call(self, match_id: str, user_id: str) -> MatchRecord:
        return self.engagement.record_video_call(match_id, user_id)

    def plan_date(self, match_id: str, user_id: str) -> MatchRecord:
        return self.engagement.plan_date(match_id, user_id)

    def mark_read(self, match_id: str, user_id: str) -> MatchRecord:
        return self.engagement.mark_read(match_id, user_id)

    def refresh_engagement(self, match_id: str) -> MatchRecord:
        return self.engagement.refresh(match_id)

    def sweep_stale(self, now: Optional[datetime] = None) -> List[str]:
        return self.engagement.sweep_stale(now)

    def engagement_summary(self, user_id: str) -> EngagementSummary:
        self._require(user_id)
        return self.engagement.scorer.summarize(
            self.matches.for_user(user_id, MatchStatus.ACTIVE), user_id, self.clock()
        )

    # ------------------------------------------------------------------
    # Account views
    # ------------------------------------------------------------------
    def remaining_quota(self, user_id: str) -> Dict[str, Optional[int]]:
        return self.limits.remaining(self._require(user_id))

    def user_stats(self, user_id: str) -> Dict[str, Union[int, float, str]]:
        profile = self._require(user_id)
        stats: Dict[str, Union[int, float, str]] = {
            "swipes": 0,
            "likes": 0,
            "passes": 0,
            "superlikes": 0,
            "matches": 0,
        }
        stats.update(self.profiles.get_stats(user_id))
        stats["rating"] = profile.rating
        stats["league"] = league_for_rating(profile.rating)
        return stats

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _dispatch(self, effects: Sequence[Effect]) -> DispatchReport:
        report = self.dispatcher.dispatch(effects)
        self.last_dispatch_ = report
        return report

    def _require(self, user_id: str) -> UserProfile:
        profile = self.profiles.get_profile(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile
