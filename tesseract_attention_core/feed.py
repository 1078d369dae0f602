"""Feed composition.

This module answers: "Given everything the sources returned, what should
the attention feed show right now?"

Pipeline (per build):
1. Normalize every source's raw records
2. Merge paired legs and drop cross-source duplicates
3. Evaluate follow-up rules per entity
4. Concatenate raw and follow-up items
5. Apply context filters (portfolio, entities, source types)
6. Remove snoozed items and suppressed follow-ups
7. Assign bands
8. Apply the urgent-only filter (band dependent, so after banding)
9. Partition, sort, summarize

Key properties:
- Synchronous and pure given its inputs: no I/O, no locks
- Identical inputs produce an identical view
- Pipeline stats come from the unfiltered normalized idea set
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from .config import DEFAULT_CONFIG, FeedConfig
from .decision.bands import (
    build_band_rules,
    classify_band,
    compute_band_summary,
    is_urgent,
    sort_band,
)
from .decision.followups import (
    evaluate_followups,
    followup_to_item,
    select_primary_insight,
)
from .decision.merge import merge_and_dedup_detailed
from .decision.normalizer import normalize, parse_timestamp
from .models import (
    BAND_ORDER,
    PIPELINE_STAGES,
    AttentionItem,
    Band,
    EntitySignals,
    FeedFilters,
    FeedView,
    FollowupItem,
    FollowupType,
    PipelineStats,
    SourceType,
)
from .trace import DropReason
from .trace_emitter import FeedTraceBuilder, TraceConfig, TraceEmitter

if TYPE_CHECKING:
    from .suppression import SuppressionState

_LOGGER = logging.getLogger(__name__)


class EntityContextResolver(Protocol):
    """Resolves which portfolios an entity belongs to."""

    def portfolios_for(self, entity_id: str) -> frozenset[str]:
        """Portfolio ids the entity is held or covered in."""
        ...


# --------------------------------------------------------------------------
# Pipeline stats
# --------------------------------------------------------------------------


def compute_pipeline_stats(ideas: Sequence[AttentionItem]) -> PipelineStats:
    """Count ideas by stage over the unfiltered idea set.

    Known stages are always present (zero if unseen), in pipeline order,
    followed by any other stage seen in alphabetical order.
    """
    counts = Counter(idea.stage for idea in ideas if idea.stage)
    by_stage = [(stage, counts.get(stage, 0)) for stage in PIPELINE_STAGES]
    by_stage.extend(
        (stage, counts[stage])
        for stage in sorted(counts)
        if stage not in PIPELINE_STAGES
    )
    pair_sizes = Counter(idea.pair_key for idea in ideas if idea.pair_key)
    return PipelineStats(
        by_stage=tuple(by_stage),
        total=len(ideas),
        pair_groups=sum(1 for size in pair_sizes.values() if size >= 2),
    )


# --------------------------------------------------------------------------
# Context filters
# --------------------------------------------------------------------------


def _in_portfolio(
    portfolio_id: str | None,
    entity_ids: Iterable[str],
    target: str,
    resolver: EntityContextResolver | None,
) -> bool:
    if portfolio_id is not None:
        return portfolio_id == target
    if resolver is None:
        return True
    known: set[str] = set()
    for entity_id in entity_ids:
        known |= resolver.portfolios_for(entity_id)
    return not known or target in known


def matches_context(
    item: AttentionItem,
    filters: FeedFilters,
    resolver: EntityContextResolver | None = None,
) -> bool:
    """Whether an item passes the portfolio and entity filters.

    Items without a portfolio are kept under a portfolio filter unless the
    resolver places their entity in other portfolios only.
    """
    if filters.portfolio_id is not None and not _in_portfolio(
        item.entity.portfolio_id,
        sorted(item.entity_ids),
        filters.portfolio_id,
        resolver,
    ):
        return False
    if filters.entity_ids is not None and not (item.entity_ids & filters.entity_ids):
        return False
    return True


def _signals_in_scope(
    signals: EntitySignals,
    filters: FeedFilters,
    resolver: EntityContextResolver | None,
) -> bool:
    if filters.portfolio_id is not None and not _in_portfolio(
        signals.portfolio_id, [signals.entity_id], filters.portfolio_id, resolver
    ):
        return False
    if filters.entity_ids is not None and signals.entity_id not in filters.entity_ids:
        return False
    return True


# --------------------------------------------------------------------------
# Build
# --------------------------------------------------------------------------


def build_feed(
    source_records: Mapping[SourceType, Sequence[Any]],
    followup_inputs: Sequence[EntitySignals],
    filters: FeedFilters | None,
    suppression: SuppressionState | None,
    *,
    now: datetime,
    config: FeedConfig = DEFAULT_CONFIG,
    resolver: EntityContextResolver | None = None,
    failed_sources: Iterable[SourceType] = (),
    trace_emitter: TraceEmitter | None = None,
    trace_config: TraceConfig | None = None,
    generation: int | None = None,
) -> FeedView:
    """Compose the banded attention feed.

    Args:
        source_records: Raw records per source.
        followup_inputs: Follow-up signals, one per entity.
        filters: Context filters (None means no filtering).
        suppression: Snooze and follow-up suppression state (None means none).
        now: Reference time for ages, due dates and suppression windows.
        config: Thresholds and feed settings.
        resolver: Optional entity to portfolio resolver.
        failed_sources: Sources that failed to load for this build.
        trace_emitter: Receives a FeedTrace when tracing is on.
        trace_config: Tracing switch (enabled by default when an emitter is
            given).
        generation: Build generation number, recorded in the trace.

    Returns:
        The composed FeedView.
    """
    now = parse_timestamp(now)
    filters = filters or FeedFilters()
    if trace_config is None:
        trace_config = TraceConfig(enabled=trace_emitter is not None)
    builder = (
        FeedTraceBuilder(timestamp=now, config=trace_config, generation=generation)
        if trace_emitter is not None and trace_config.should_trace()
        else None
    )

    # Normalize
    normalized: list[AttentionItem] = []
    for source_type in sorted(source_records, key=lambda s: s.value):
        records = list(source_records[source_type])
        items = normalize(
            records,
            source_type,
            now=now,
            config=config,
            on_skip=(
                (lambda err, s=source_type: builder.record_skip(s, err))
                if builder is not None
                else None
            ),
        )
        if builder is not None:
            builder.record_input(len(records), len(items))
        normalized.extend(items)

    pipeline_stats = compute_pipeline_stats(
        [i for i in normalized if i.source_type == SourceType.IDEA]
    )

    # Merge and dedup
    merge_result = merge_and_dedup_detailed(normalized)
    if builder is not None:
        builder.record_merge(merge_result)

    # Follow-ups
    def followup_suppressed(entity_id: str, followup_type: FollowupType) -> bool:
        return suppression is not None and suppression.followups.is_suppressed(
            entity_id, followup_type, now
        )

    followups = evaluate_followups(
        followup_inputs, is_suppressed=followup_suppressed, config=config
    )
    if builder is not None:
        builder.record_followups(followups)
    suppressed_followups = {
        followup_to_item(f, now=now).item_id for f in followups if f.is_suppressed
    }
    candidates = list(merge_result.items) + [
        followup_to_item(f, now=now) for f in followups
    ]

    # Context filters and suppression
    visible: list[AttentionItem] = []
    for item in sorted(candidates, key=lambda i: i.item_id):
        if not matches_context(item, filters, resolver) or (
            filters.source_types is not None
            and item.source_type not in filters.source_types
        ):
            if builder is not None:
                builder.record_drop(item.item_id, DropReason.FILTERED)
            continue
        if item.item_id in suppressed_followups:
            if builder is not None:
                builder.record_drop(item.item_id, DropReason.FOLLOWUP_SUPPRESSED)
            continue
        if suppression is not None and suppression.items.is_snoozed(item.item_id, now):
            if builder is not None:
                builder.record_drop(item.item_id, DropReason.SNOOZED)
            continue
        visible.append(item)

    # Bands
    rules = build_band_rules(config)
    banded: list[AttentionItem] = []
    for item in visible:
        decision = classify_band(item, rules)
        if builder is not None:
            builder.record_band(decision)
        banded.append(replace(item, band=decision.band))

    if filters.urgent_only:
        kept = []
        for item in banded:
            if is_urgent(item, config.deliverable.due_soon_days):
                kept.append(item)
            elif builder is not None:
                builder.record_drop(item.item_id, DropReason.NOT_URGENT)
        banded = kept

    # Partition, sort, summarize
    partitions: dict[Band, list[AttentionItem]] = {
        band: sort_band(i for i in banded if i.band == band) for band in BAND_ORDER
    }
    summaries = {
        band: compute_band_summary(
            band, partitions[band], highlight_count=config.feed.highlight_count
        )
        for band in BAND_ORDER
    }

    in_scope = [s for s in followup_inputs if _signals_in_scope(s, filters, resolver)]
    scoped_entities = {s.entity_id for s in in_scope}
    scoped_followups = tuple(f for f in followups if f.entity_id in scoped_entities)
    active_ideas = sum(s.active_idea_count or 0 for s in in_scope)

    failed = tuple(sorted(set(failed_sources), key=lambda s: s.value))
    view = FeedView(
        now=tuple(partitions[Band.NOW]),
        soon=tuple(partitions[Band.SOON]),
        aware=tuple(partitions[Band.AWARE]),
        summaries=summaries,
        total_count=len(banded),
        pipeline_stats=pipeline_stats,
        followups=scoped_followups,
        primary_insight=select_primary_insight(
            scoped_followups, active_idea_count=active_ideas
        ),
        failed_sources=failed,
    )

    _LOGGER.debug(
        "[feed] Built %d items (now=%d soon=%d aware=%d, %d follow-ups)",
        view.total_count,
        len(view.now),
        len(view.soon),
        len(view.aware),
        len(scoped_followups),
    )

    if builder is not None and trace_emitter is not None:
        builder.record_failed_sources(failed)
        trace_emitter.emit(builder.build(items_out=view.total_count))

    return view


def visible_followups(view: FeedView) -> list[FollowupItem]:
    """Follow-ups in a view that are not currently suppressed."""
    return [f for f in view.followups if not f.is_suppressed]
