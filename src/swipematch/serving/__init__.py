"""Serving layer: recommendation caching and side-effect dispatch."""

from .cache import RecommendationCache
from .outbox import EffectDispatcher

__all__ = [
    "RecommendationCache",
    "EffectDispatcher",
]
