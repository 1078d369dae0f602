"""Tests for trace emission."""

from datetime import datetime, timezone

import pytest

from tesseract_attention_core.errors import RecordValidationError
from tesseract_attention_core.models import SourceType
from tesseract_attention_core.trace import DropReason, FeedTrace
from tesseract_attention_core.trace_emitter import (
    BufferEmitter,
    CallbackEmitter,
    FeedTraceBuilder,
    NullEmitter,
    TraceConfig,
)

TS = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _trace(trace_id: str = "t") -> FeedTrace:
    return FeedTrace(trace_id=trace_id, timestamp=TS)


class TestTraceConfig:
    """Tests for trace configuration."""

    def test_disabled_by_default(self) -> None:
        """Tracing should be disabled by default."""
        config = TraceConfig()
        assert not config.enabled
        assert not config.should_trace()

    def test_enabled_always_traces(self) -> None:
        """When enabled with 1.0 sample rate, always trace."""
        config = TraceConfig(enabled=True, sample_rate=1.0)
        for _ in range(100):
            assert config.should_trace()

    def test_zero_rate_never_traces(self) -> None:
        """A zero sample rate never traces."""
        config = TraceConfig(enabled=True, sample_rate=0.0)
        assert not any(config.should_trace() for _ in range(200))

    def test_sampling(self) -> None:
        """Sampling should work approximately correctly."""
        config = TraceConfig(enabled=True, sample_rate=0.5)
        traces = sum(1 for _ in range(1000) if config.should_trace())
        # Should be roughly 50%, allow wide margin
        assert 300 < traces < 700


class TestEmitters:
    """Tests for emitter implementations."""

    def test_null_emitter(self) -> None:
        """NullEmitter accepts and discards traces."""
        NullEmitter().emit(_trace())

    def test_buffer_evicts_oldest(self) -> None:
        """BufferEmitter keeps the newest max_size traces."""
        emitter = BufferEmitter(max_size=2)
        for trace_id in ("a", "b", "c"):
            emitter.emit(_trace(trace_id))

        assert [t.trace_id for t in emitter.traces] == ["b", "c"]
        assert [t.trace_id for t in emitter.last()] == ["c"]

        emitter.clear()
        assert emitter.traces == []

    def test_callback_emitter(self) -> None:
        """CallbackEmitter forwards each trace."""
        received: list[FeedTrace] = []
        emitter = CallbackEmitter(received.append)

        emitter.emit(_trace("x"))

        assert [t.trace_id for t in received] == ["x"]

    def test_callback_errors_propagate(self) -> None:
        """A failing callback is not silently swallowed."""

        def boom(trace: FeedTrace) -> None:
            raise RuntimeError("sink down")

        with pytest.raises(RuntimeError):
            CallbackEmitter(boom).emit(_trace())


class TestFeedTraceBuilder:
    """Tests for trace accumulation."""

    def test_builds_complete_trace(self) -> None:
        """Recorded events appear in the built trace."""
        builder = FeedTraceBuilder(timestamp=TS, generation=2)
        builder.record_input(3, 2)
        builder.record_skip(
            SourceType.IDEA, RecordValidationError(7, "missing required field 'id'")
        )
        builder.record_drop("idea:1", DropReason.SNOOZED)
        builder.record_failed_sources([SourceType.PROPOSAL])

        trace = builder.build(items_out=1)

        assert trace.generation == 2
        assert trace.skipped_records[0].record_id == "7"
        assert trace.skipped_records[0].source == "idea"
        assert trace.suppressed_item_ids == ["idea:1"]
        assert trace.failed_sources == ["proposal"]
        assert trace.metrics is not None
        assert trace.metrics.records_in == 3
        assert trace.metrics.items_normalized == 2
        assert trace.metrics.items_out == 1
        assert trace.metrics.total_duration_us >= 0

    def test_metrics_can_be_excluded(self) -> None:
        """include_metrics=False omits metrics."""
        builder = FeedTraceBuilder(
            timestamp=TS, config=TraceConfig(enabled=True, include_metrics=False)
        )
        assert builder.build(items_out=0).metrics is None

    def test_each_build_has_unique_id(self) -> None:
        """Trace ids are unique per build."""
        a = FeedTraceBuilder(timestamp=TS).build(items_out=0)
        b = FeedTraceBuilder(timestamp=TS).build(items_out=0)
        assert a.trace_id != b.trace_id
