"""Feed configuration loading.

Thresholds are treated as data, not code. Every value has a default that
matches the production tuning, so an empty or partial YAML file is valid.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigLoadError


@dataclass(frozen=True)
class DecisionThresholds:
    """Age thresholds for ideas and proposals awaiting a decision.

    Attributes:
        high_days: Age at which a pending decision becomes HIGH urgency.
        med_days: Age at which a pending decision becomes MEDIUM urgency.
        now_days: Age at which a proposal is moved into the NOW band.
    """

    high_days: int = 7
    med_days: int = 3
    now_days: int = 3


@dataclass(frozen=True)
class ResearchThresholds:
    """Staleness thresholds for research and rating changes.

    Attributes:
        thesis_high_days: Days since thesis update for HIGH urgency.
        thesis_med_days: Days since thesis update for MEDIUM urgency.
        rating_recent_days: Rating changes at most this old are MEDIUM.
    """

    thesis_high_days: int = 180
    thesis_med_days: int = 90
    rating_recent_days: int = 7


@dataclass(frozen=True)
class DeliverableThresholds:
    """Due-date windows for project deliverables.

    Attributes:
        urgent_days: Due within this many days is MEDIUM urgency.
        due_soon_days: Due within this many days lands in the SOON band.
    """

    urgent_days: int = 3
    due_soon_days: int = 7


@dataclass(frozen=True)
class FollowupSettings:
    """Follow-up rule settings.

    Attributes:
        high_ev_threshold: Minimum absolute expected return for high_ev_no_idea.
        suppression_hours: Fixed suppression window for a follow-up type.
    """

    high_ev_threshold: float = 0.15
    suppression_hours: float = 24.0


@dataclass(frozen=True)
class FeedSettings:
    """Feed composition settings.

    Attributes:
        highlight_count: Number of highlighted items per band summary.
        cache_ttl_seconds: TTL for the read-through source cache.
        source_timeout_seconds: Per-request timeout for HTTP sources.
    """

    highlight_count: int = 3
    cache_ttl_seconds: float = 60.0
    source_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class FeedConfig:
    """Complete feed configuration."""

    decision: DecisionThresholds = field(default_factory=DecisionThresholds)
    research: ResearchThresholds = field(default_factory=ResearchThresholds)
    deliverable: DeliverableThresholds = field(default_factory=DeliverableThresholds)
    followup: FollowupSettings = field(default_factory=FollowupSettings)
    feed: FeedSettings = field(default_factory=FeedSettings)


DEFAULT_CONFIG = FeedConfig()

_SECTIONS: dict[str, type] = {
    "decision": DecisionThresholds,
    "research": ResearchThresholds,
    "deliverable": DeliverableThresholds,
    "followup": FollowupSettings,
    "feed": FeedSettings,
}


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigLoadError(f"File not found: {path}")
    with path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as err:
            raise ConfigLoadError(f"Invalid YAML in {path}: {err}") from err
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Expected a mapping at top level of {path}")
    return data


def _build_section(name: str, cls: type, data: Any) -> Any:
    """Build one config section, coercing values to the default's type."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Section '{name}' must be a mapping")

    known = {f.name: f for f in fields(cls)}
    defaults = cls()
    values: dict[str, Any] = {}
    for key, raw in data.items():
        if key not in known:
            raise ConfigLoadError(f"Unknown key '{name}.{key}'")
        expected = type(getattr(defaults, key))
        try:
            value = expected(raw)
        except (TypeError, ValueError) as err:
            raise ConfigLoadError(f"Invalid value for '{name}.{key}': {raw!r}") from err
        if value < 0:
            raise ConfigLoadError(f"'{name}.{key}' must not be negative")
        values[key] = value
    return cls(**values)


def config_from_dict(data: dict[str, Any]) -> FeedConfig:
    """Build a FeedConfig from a parsed mapping.

    Raises:
        ConfigLoadError: If a section or key is unknown or a value is invalid.
    """
    for section in data:
        if section not in _SECTIONS:
            raise ConfigLoadError(f"Unknown config section '{section}'")

    return FeedConfig(
        **{
            name: _build_section(name, cls, data.get(name))
            for name, cls in _SECTIONS.items()
        }
    )


def load_config(path: Path) -> FeedConfig:
    """Load feed configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Parsed FeedConfig; absent keys keep their defaults.

    Raises:
        ConfigLoadError: If the file is missing or contains invalid values.
    """
    return config_from_dict(_load_yaml(path))
