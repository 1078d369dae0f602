"""Feed build trace data classes for explainability.

A FeedTrace captures what happened to every record during one feed build:
which records were skipped, which legs merged, which duplicates were
dropped, what was suppressed, which follow-ups fired and which band rule
placed each surviving item.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DropReason(Enum):
    """Why an item did not reach the feed."""

    SNOOZED = "snoozed"
    FOLLOWUP_SUPPRESSED = "followup_suppressed"
    FILTERED = "filtered"
    NOT_URGENT = "not_urgent"


@dataclass
class SkippedRecord:
    """A raw record the normalizer rejected."""

    source: str
    reason: str
    record_id: str | None = None


@dataclass
class MergedPair:
    """A synthetic pair item and the legs it absorbed."""

    item_id: str
    leg_ids: list[str] = field(default_factory=lambda: [])


@dataclass
class DedupEntry:
    """An item dropped in favor of a higher-precedence source."""

    item_id: str
    kept_item_id: str
    shared_key: str


@dataclass
class DroppedItem:
    """An item removed after merge (filter, suppression or urgent-only)."""

    item_id: str
    reason: DropReason


@dataclass
class FiredFollowup:
    """A follow-up rule that fired for an entity."""

    entity_id: str
    followup_type: str
    suppressed: bool = False


@dataclass
class BandAssignment:
    """The band rule that placed an item."""

    item_id: str
    band: str
    rule: str


@dataclass
class BuildMetrics:
    """Build counters and timing."""

    total_duration_us: int = 0
    records_in: int = 0
    items_normalized: int = 0
    items_out: int = 0


@dataclass
class FeedTrace:
    """Complete trace of a single feed build."""

    trace_id: str
    timestamp: datetime
    skipped_records: list[SkippedRecord] = field(default_factory=lambda: [])
    merged_pairs: list[MergedPair] = field(default_factory=lambda: [])
    dedup_drops: list[DedupEntry] = field(default_factory=lambda: [])
    fired_followups: list[FiredFollowup] = field(default_factory=lambda: [])
    dropped_items: list[DroppedItem] = field(default_factory=lambda: [])
    band_assignments: list[BandAssignment] = field(default_factory=lambda: [])
    failed_sources: list[str] = field(default_factory=lambda: [])
    generation: int | None = None
    metrics: BuildMetrics | None = None

    @property
    def suppressed_item_ids(self) -> list[str]:
        """Items removed by snooze or follow-up suppression."""
        return [
            d.item_id
            for d in self.dropped_items
            if d.reason in (DropReason.SNOOZED, DropReason.FOLLOWUP_SUPPRESSED)
        ]

    def band_of(self, item_id: str) -> BandAssignment | None:
        """Band assignment recorded for an item, if it reached banding."""
        for assignment in self.band_assignments:
            if assignment.item_id == item_id:
                return assignment
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert trace to dictionary for JSON serialization."""
        result = _to_dict(self)
        if isinstance(result, dict):
            return dict(result)  # pyright: ignore[reportUnknownArgumentType]
        return {}


def _to_dict(obj: object) -> str | list[object] | dict[str, object] | object:
    """Recursively convert dataclasses to dicts."""
    if isinstance(obj, Enum):
        return str(obj.value)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, list | tuple):
        return [_to_dict(item) for item in obj]  # pyright: ignore[reportUnknownArgumentType,reportUnknownVariableType]
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        result: dict[str, object] = {}
        for f in dataclasses.fields(obj):
            value = getattr(obj, f.name)
            if value is not None:
                result[f.name] = _to_dict(value)
        return result
    return obj
