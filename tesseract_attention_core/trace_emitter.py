"""Trace emission for feed build explainability.

This module provides opt-in, sampled trace emission for debugging and
tuning thresholds. Traces are emitted AFTER a feed build completes.

Critical invariants:
- Zero semantic difference when tracing is off
- Never blocks the build
- Never emits by default
- Sampling rate controls overhead
"""

from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from .trace import (
    BandAssignment,
    BuildMetrics,
    DedupEntry,
    DroppedItem,
    DropReason,
    FeedTrace,
    FiredFollowup,
    MergedPair,
    SkippedRecord,
)

if TYPE_CHECKING:
    from .decision.bands import BandDecision
    from .decision.merge import MergeResult
    from .errors import RecordValidationError
    from .models import FollowupItem, SourceType


@dataclass
class TraceConfig:
    """Configuration for trace emission.

    Attributes:
        enabled: Master switch for tracing (default: False)
        sample_rate: Fraction of builds to trace (0.0-1.0, default: 1.0)
        include_metrics: Whether to include timing metrics (default: True)
    """

    enabled: bool = False
    sample_rate: float = 1.0
    include_metrics: bool = True

    def should_trace(self) -> bool:
        """Determine if this build should be traced."""
        if not self.enabled:
            return False
        if self.sample_rate >= 1.0:
            return True
        return secrets.randbelow(1000) < int(self.sample_rate * 1000)


class TraceEmitter(ABC):
    """Abstract interface for trace emission.

    Implementations can write to:
    - In-memory buffer (dev tools, tests)
    - A callback (log shipping, debug panels)
    - Null (disabled)
    """

    @abstractmethod
    def emit(self, trace: FeedTrace) -> None:
        """Emit a feed trace.

        Must be non-blocking.
        """


class NullEmitter(TraceEmitter):
    """No-op emitter for when tracing is disabled."""

    def emit(self, trace: FeedTrace) -> None:
        """Discard the trace."""


class BufferEmitter(TraceEmitter):
    """In-memory buffer for testing and dev tools.

    Stores traces in a bounded buffer (FIFO eviction).
    """

    def __init__(self, max_size: int = 100) -> None:
        self._buffer: list[FeedTrace] = []
        self._max_size = max_size

    def emit(self, trace: FeedTrace) -> None:
        """Add trace to buffer, evicting oldest if full."""
        if len(self._buffer) >= self._max_size:
            self._buffer.pop(0)
        self._buffer.append(trace)

    @property
    def traces(self) -> list[FeedTrace]:
        """Get all buffered traces."""
        return list(self._buffer)

    def clear(self) -> None:
        """Clear the buffer."""
        self._buffer.clear()

    def last(self, n: int = 1) -> list[FeedTrace]:
        """Get the last N traces."""
        return self._buffer[-n:]


class CallbackEmitter(TraceEmitter):
    """Emitter that calls a callback function.

    Useful for log shipping or custom handling.
    """

    def __init__(self, callback: Callable[[FeedTrace], None]) -> None:
        self._callback = callback

    def emit(self, trace: FeedTrace) -> None:
        """Call the callback with the trace."""
        self._callback(trace)


@dataclass
class FeedTraceBuilder:
    """Accumulates a FeedTrace while a feed is built.

    Usage:
        builder = FeedTraceBuilder(now)
        builder.record_skip(source, err)
        builder.record_merge(result)
        ...
        trace = builder.build(items_out=n)
    """

    timestamp: datetime
    config: TraceConfig = field(default_factory=TraceConfig)
    generation: int | None = None

    _start_time_ns: int = field(default_factory=time.perf_counter_ns)
    _records_in: int = 0
    _items_normalized: int = 0
    _skipped: list[SkippedRecord] = field(default_factory=lambda: [])
    _merged: list[MergedPair] = field(default_factory=lambda: [])
    _dedup: list[DedupEntry] = field(default_factory=lambda: [])
    _followups: list[FiredFollowup] = field(default_factory=lambda: [])
    _dropped: list[DroppedItem] = field(default_factory=lambda: [])
    _bands: list[BandAssignment] = field(default_factory=lambda: [])
    _failed_sources: list[str] = field(default_factory=lambda: [])

    def record_input(self, records_in: int, items_normalized: int) -> None:
        """Record normalization counts for one source."""
        self._records_in += records_in
        self._items_normalized += items_normalized

    def record_skip(self, source: SourceType, err: RecordValidationError) -> None:
        """Record a skipped raw record."""
        record_id = None if err.record_id is None else str(err.record_id)
        self._skipped.append(
            SkippedRecord(source=source.value, reason=str(err), record_id=record_id)
        )

    def record_merge(self, result: MergeResult) -> None:
        """Record merged pairs and dedup drops."""
        for item_id, leg_ids in sorted(result.merged_pairs.items()):
            self._merged.append(MergedPair(item_id=item_id, leg_ids=list(leg_ids)))
        for drop in result.dropped:
            self._dedup.append(
                DedupEntry(
                    item_id=drop.item_id,
                    kept_item_id=drop.kept_item_id,
                    shared_key=drop.shared_key,
                )
            )

    def record_followups(self, followups: Iterable[FollowupItem]) -> None:
        """Record fired follow-ups (suppressed ones included)."""
        for followup in followups:
            self._followups.append(
                FiredFollowup(
                    entity_id=followup.entity_id,
                    followup_type=followup.followup_type.value,
                    suppressed=followup.is_suppressed,
                )
            )

    def record_drop(self, item_id: str, reason: DropReason) -> None:
        """Record an item removed after merge."""
        self._dropped.append(DroppedItem(item_id=item_id, reason=reason))

    def record_band(self, decision: BandDecision) -> None:
        """Record the band rule that placed an item."""
        self._bands.append(
            BandAssignment(
                item_id=decision.item_id,
                band=decision.band.value,
                rule=decision.rule,
            )
        )

    def record_failed_sources(self, sources: Iterable[SourceType]) -> None:
        """Record sources that failed to load."""
        self._failed_sources.extend(s.value for s in sources)

    def build(self, items_out: int) -> FeedTrace:
        """Build the final trace."""
        metrics = None
        if self.config.include_metrics:
            metrics = BuildMetrics(
                total_duration_us=(time.perf_counter_ns() - self._start_time_ns)
                // 1000,
                records_in=self._records_in,
                items_normalized=self._items_normalized,
                items_out=items_out,
            )
        return FeedTrace(
            trace_id=str(uuid4()),
            timestamp=self.timestamp,
            skipped_records=self._skipped,
            merged_pairs=self._merged,
            dedup_drops=self._dedup,
            fired_followups=self._followups,
            dropped_items=self._dropped,
            band_assignments=self._bands,
            failed_sources=self._failed_sources,
            generation=self.generation,
            metrics=metrics,
        )
