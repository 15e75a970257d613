"""Swipematch: matching decision engine for swipe-based dating apps."""

from .config import MatchingConfig, load_config, setup_logging, validate_config
from .data.profiles import GeoPoint, Lifestyle, Preferences, SubscriptionTier, UserProfile
from .data.records import MatchStatus, MatchType, SwipeAction, SwipeContext
from .engine import MatchingEngine
from .errors import (
    AlreadyActedError,
    ConflictError,
    ForbiddenError,
    LimitExceededError,
    MatchingError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from .matching import SwipeMatchProtocol
from .models.compatibility import CompatibilityScorer
from .models.elo import EloConfig, RatingUpdater, league_for_rating
from .models.engagement import EngagementConfig, EngagementScorer, EngagementStateMachine
from .models.recommender import RecommendationEngine
from .serving import EffectDispatcher, RecommendationCache

__all__ = [
    'MatchingEngine',
    'MatchingConfig',
    'load_config',
    'setup_logging',
    'validate_config',
    'GeoPoint',
    'Lifestyle',
    'Preferences',
    'SubscriptionTier',
    'UserProfile',
    'MatchStatus',
    'MatchType',
    'SwipeAction',
    'SwipeContext',
    'CompatibilityScorer',
    'RatingUpdater',
    'EloConfig',
    'league_for_rating',
    'RecommendationEngine',
    'RecommendationCache',
    'SwipeMatchProtocol',
    'EngagementScorer',
    'EngagementConfig',
    'EngagementStateMachine',
    'EffectDispatcher',
    'MatchingError',
    'ValidationError',
    'AlreadyActedError',
    'LimitExceededError',
    'NotFoundError',
    'ForbiddenError',
    'ConflictError',
    'TransientStoreError',
]
