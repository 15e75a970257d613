"""
Configuration loading and validation.

All tunables live in small dataclasses next to the code that uses them.
:class:`MatchingConfig` gathers them, and can be built from a YAML file
with one section per component::

    elo:
      k_factor: 24
    limits:
      quotas:
        free: {likes: 50, superlikes: 1, undos: 1}
    cache:
      recommendations_ttl_seconds: 900
"""

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List

import yaml

from .data.profiles import SubscriptionTier
from .limits import TierLimits, TierQuota
from .matching import SwipeConfig
from .models.compatibility import CompatibilityConfig
from .models.elo import EloConfig
from .models.engagement import EngagementConfig
from .models.recommender import RecommendationConfig
from .serving.cache import CacheConfig

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class MatchingConfig:
    compatibility: CompatibilityConfig = field(default_factory=CompatibilityConfig)
    elo: EloConfig = field(default_factory=EloConfig)
    engagement: EngagementConfig = field(default_factory=EngagementConfig)
    recommendations: RecommendationConfig = field(default_factory=RecommendationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    limits: TierLimits = field(default_factory=TierLimits)
    swipes: SwipeConfig = field(default_factory=SwipeConfig)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "MatchingConfig":
        """Build a config from a parsed YAML mapping. Unknown keys raise ValueError."""
        issues = validate_config(config)
        if issues:
            raise ValueError("Invalid configuration: " + "; ".join(issues))

        sections: Dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            values = dict(config.get(name) or {})
            if name == "engagement":
                values = {
                    key: _as_bands(value) if key.endswith("_bands") else value
                    for key, value in values.items()
                }
            elif name == "limits" and "quotas" in values:
                quotas = TierLimits().quotas
                for tier, caps in values["quotas"].items():
                    quotas[tier] = TierQuota(**(caps or {}))
                values["quotas"] = quotas
            elif name == "swipes" and "likes_visible_tiers" in values:
                values["likes_visible_tiers"] = tuple(values["likes_visible_tiers"])
            sections[name] = section_cls(**values)
        return cls(**sections)


_SECTIONS = {
    "compatibility": CompatibilityConfig,
    "elo": EloConfig,
    "engagement": EngagementConfig,
    "recommendations": RecommendationConfig,
    "cache": CacheConfig,
    "limits": TierLimits,
    "swipes": SwipeConfig,
}


def _as_bands(value: Any) -> tuple:
    return tuple((float(threshold), int(points)) for threshold, points in value)


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logging with the library's format."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)


def load_config(filepath: str) -> MatchingConfig:
    """
    Load configuration from a YAML file.

    Args:
        filepath: Path to the YAML configuration file

    Returns:
        MatchingConfig with file values layered over the defaults

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If the file is empty or fails validation
        yaml.YAMLError: If YAML is invalid
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {filepath}")

    logger.info(f"Loading configuration from {filepath}")
    with open(path, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ValueError(f"Configuration file is empty: {filepath}")
    if not isinstance(raw, dict):
        raise ValueError(f"Configuration root must be a mapping: {filepath}")

    return MatchingConfig.from_dict(raw)


def validate_config(config: Dict[str, Any]) -> List[str]:
    """
    Validate a configuration mapping and return a list of problems.

    Args:
        config: Configuration dictionary

    Returns:
        List of error messages (empty if valid)
    """
    issues: List[str] = []

    for section, values in config.items():
        section_cls = _SECTIONS.get(section)
        if section_cls is None:
            issues.append(f"Unknown section: {section}")
            continue
        if values is None:
            continue
        if not isinstance(values, dict):
            issues.append(f"Section {section} must be a mapping")
            continue
        known = {f.name for f in fields(section_cls)}
        for key in values:
            if key not in known:
                issues.append(f"Unknown key: {section}.{key}")

    compat = config.get("compatibility") or {}
    if isinstance(compat, dict):
        weights = [
            compat.get(name, getattr(CompatibilityConfig, name))
            for name in (
                "interests_weight",
                "age_weight",
                "distance_weight",
                "lifestyle_weight",
                "goals_weight",
            )
        ]
        if abs(sum(weights) - 1.0) > 0.01:
            issues.append(f"Compatibility weights sum to {sum(weights):.2f}, expected 1.0")

    recs = config.get("recommendations") or {}
    if isinstance(recs, dict):
        points = [
            recs.get(name, getattr(RecommendationConfig, name))
            for name in (
                "distance_points",
                "interest_points",
                "completeness_points",
                "activity_points",
                "rating_points",
            )
        ]
        if abs(sum(points) - 100.0) > 0.01:
            issues.append(f"Recommendation points sum to {sum(points):.1f}, expected 100")
        if recs.get("overfetch_multiplier", 2) < 1:
            issues.append("recommendations.overfetch_multiplier must be at least 1")

    cache = config.get("cache") or {}
    if isinstance(cache, dict):
        for key, value in cache.items():
            if key.endswith("_ttl_seconds") and (not isinstance(value, int) or value <= 0):
                issues.append(f"cache.{key} must be a positive integer")

    limits = config.get("limits") or {}
    if isinstance(limits, dict):
        tiers = {t.value for t in SubscriptionTier}
        for tier, caps in (limits.get("quotas") or {}).items():
            if tier not in tiers:
                issues.append(f"Unknown tier in limits.quotas: {tier}")
                continue
            for kind, cap in (caps or {}).items():
                if kind not in {f.name for f in fields(TierQuota)}:
                    issues.append(f"Unknown quota: limits.quotas.{tier}.{kind}")
                elif cap is not None and (not isinstance(cap, int) or cap < 0):
                    issues.append(f"limits.quotas.{tier}.{kind} must be null or a non-negative integer")

    for issue in issues:
        logger.warning(issue)
    return issues
