"""
Side effects produced by matching operations.

Core operations never call delivery channels directly. They return a list
of effect records which :class:`EffectDispatcher` executes after the core
state change has been committed. Effects are best-effort: a failing
effect is logged and skipped, and never undoes the state change that
produced it.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from ..data.stores import ConversationStore, MetricsSink, NotificationDispatch, RealtimePush
from .cache import RecommendationCache

logger = logging.getLogger(__name__)

EVENT_MATCH_NEW = "match:new"
EVENT_MATCH_REMOVED = "match:removed"


class NotificationType(str, enum.Enum):
    NEW_MATCH = "new_match"
    SUPER_LIKE = "super_like"
    SYSTEM = "system"


class Priority(str, enum.Enum):
    NORMAL = "normal"
    HIGH = "high"


@dataclass(frozen=True)
class NotificationData:
    """Structured payload attached to a notification. Closed and versioned."""

    version: int = 1
    match_id: Optional[str] = None
    user_id: Optional[str] = None
    match_type: Optional[str] = None
    reason: Optional[str] = None
    message: Optional[str] = None


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    title: str
    body: str
    data: NotificationData = field(default_factory=NotificationData)
    priority: Priority = Priority.NORMAL


@dataclass(frozen=True)
class NotifyUser:
    user_id: str
    notification: Notification


@dataclass(frozen=True)
class RealtimeEvent:
    user_id: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricEvent:
    kind: str  # "count", "timing" or "histogram"
    name: str
    value: float = 1
    tags: Optional[Dict[str, str]] = None


@dataclass(frozen=True)
class CacheInvalidation:
    user_id: str


@dataclass(frozen=True)
class ConversationPurge:
    match_id: str
    hard: bool = False


Effect = Union[NotifyUser, RealtimeEvent, MetricEvent, CacheInvalidation, ConversationPurge]


def count(name: str, value: int = 1, **tags: str) -> MetricEvent:
    return MetricEvent("count", name, value, tags or None)


def timing(name: str, millis: float, **tags: str) -> MetricEvent:
    return MetricEvent("timing", name, millis, tags or None)


def histogram(name: str, value: float, **tags: str) -> MetricEvent:
    return MetricEvent("histogram", name, value, tags or None)


@dataclass
class DispatchReport:
    delivered: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class EffectDispatcher:
    """Execute outbox effects against the injected delivery channels."""

    def __init__(
        self,
        *,
        notifier: Optional[NotificationDispatch] = None,
        realtime: Optional[RealtimePush] = None,
        metrics: Optional[MetricsSink] = None,
        cache: Optional[RecommendationCache] = None,
        conversations: Optional[ConversationStore] = None,
    ):
        self.notifier = notifier
        self.realtime = realtime
        self.metrics = metrics
        self.cache = cache
        self.conversations = conversations

    def dispatch(self, effects: Sequence[Effect]) -> DispatchReport:
        report = DispatchReport()
        for effect in effects:
            try:
                self._execute(effect)
            except Exception as exc:
                logger.exception(f"Effect {type(effect).__name__} failed")
                report.failed += 1
                report.errors.append(f"{type(effect).__name__}: {exc}")
            else:
                report.delivered += 1
        if report.failed:
            logger.warning(f"{report.failed}/{len(effects)} effects failed to dispatch")
        return report

    def _execute(self, effect: Effect) -> None:
        if isinstance(effect, NotifyUser):
            if self.notifier is not None:
                self.notifier.notify(effect.user_id, effect.notification)
        elif isinstance(effect, RealtimeEvent):
            if self.realtime is not None:
                self.realtime.emit_to_user(effect.user_id, effect.event, effect.payload)
        elif isinstance(effect, MetricEvent):
            if self.metrics is not None:
                self._emit_metric(effect)
        elif isinstance(effect, CacheInvalidation):
            if self.cache is not None:
                self.cache.invalidate(effect.user_id)
        elif isinstance(effect, ConversationPurge):
            if self.conversations is not None:
                self.conversations.purge(effect.match_id, effect.hard)
        else:
            raise TypeError(f"Unknown effect type: {type(effect).__name__}")

    def _emit_metric(self, effect: MetricEvent) -> None:
        if effect.kind == "count":
            self.metrics.count(effect.name, int(effect.value), effect.tags)
        elif effect.kind == "timing":
            self.metrics.timing(effect.name, float(effect.value), effect.tags)
        elif effect.kind == "histogram":
            self.metrics.histogram(effect.name, float(effect.value), effect.tags)
        else:
            raise ValueError(f"Unknown metric kind: {effect.kind}")


def notification_payload(notification: Notification) -> Dict[str, Any]:
    data = asdict(notification)
    data["type"] = notification.type.value
    data["priority"] = notification.priority.value
    return data
