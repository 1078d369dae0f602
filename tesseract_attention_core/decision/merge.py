"""Pair merging and cross-source deduplication.

Two passes over normalized items:

1. Pair merge: legs sharing a ``pair_key`` that hold both a buy side and a
   sell side collapse into one synthetic ``pair:<key>`` item.
2. Cross-source dedup: items from different sources that cover the same
   underlying id collapse to the item from the highest-precedence source.

Key invariants:
- Pure function: no I/O, no side effects
- Order-independent: output is sorted by item_id
- A lone leg, or a group without complementary sides, is never merged
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from ..models import PIPELINE_STAGES, AttentionItem, LegRole, SourceType

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence


# Highest precedence first.
SOURCE_PRECEDENCE: tuple[SourceType, ...] = (
    SourceType.IDEA,
    SourceType.PROPOSAL,
    SourceType.DELIVERABLE,
    SourceType.RATING_CHANGE,
    SourceType.STALE_RESEARCH,
    SourceType.FOLLOWUP,
)

PAIR_ID_PREFIX = "pair:"


@dataclass(frozen=True)
class DedupDrop:
    """An item removed by cross-source dedup.

    Attributes:
        item_id: The dropped item.
        kept_item_id: The higher-precedence item that covers it.
        shared_key: Underlying id both items reference.
    """

    item_id: str
    kept_item_id: str
    shared_key: str


@dataclass(frozen=True)
class MergeResult:
    """Detailed outcome of merge_and_dedup.

    Attributes:
        items: Surviving items, sorted by item_id.
        merged_pairs: Synthetic pair item id to its member leg ids.
        dropped: Items removed by dedup.
    """

    items: tuple[AttentionItem, ...]
    merged_pairs: dict[str, tuple[str, ...]] = field(default_factory=lambda: {})
    dropped: tuple[DedupDrop, ...] = ()


def precedence_rank(source_type: SourceType) -> int:
    """Rank of a source in the dedup precedence (0 is highest)."""
    try:
        return SOURCE_PRECEDENCE.index(source_type)
    except ValueError:
        return len(SOURCE_PRECEDENCE)


# --------------------------------------------------------------------------
# Pair merge
# --------------------------------------------------------------------------


def _leg_label(leg: AttentionItem) -> str:
    return leg.entity.asset_label or leg.entity.asset_id or leg.item_id


def _most_advanced_stage(legs: Sequence[AttentionItem]) -> str | None:
    stages = [leg.stage for leg in legs if leg.stage]
    if not stages:
        return None
    known = [s for s in stages if s in PIPELINE_STAGES]
    if known:
        return max(known, key=PIPELINE_STAGES.index)
    return sorted(stages)[0]


def _shared(values: Iterable[str | None]) -> str | None:
    distinct = set(values)
    if len(distinct) == 1:
        return distinct.pop()
    return None


def merge_pair(pair_key: str, legs: Sequence[AttentionItem]) -> AttentionItem | None:
    """Collapse the legs of one paired transaction into a synthetic item.

    Args:
        pair_key: The shared pairing key.
        legs: All items carrying that key.

    Returns:
        The merged item, or None if the group cannot be merged (fewer than
        two legs, or missing a buy side or a sell side).
    """
    if len(legs) < 2:
        return None

    ordered = sorted(legs, key=lambda leg: (leg.created_at, leg.item_id))
    buys = [leg for leg in ordered if leg.leg_role == LegRole.BUY]
    sells = [leg for leg in ordered if leg.leg_role == LegRole.SELL]
    if not buys or not sells:
        return None

    buy_label = ", ".join(_leg_label(leg) for leg in buys)
    sell_label = ", ".join(_leg_label(leg) for leg in sells)
    earliest = ordered[0]
    portfolio_id = _shared(leg.entity.portfolio_id for leg in ordered)

    entity = replace(
        earliest.entity,
        asset_id=None,
        asset_label=f"{buy_label} / {sell_label}",
        portfolio_id=portfolio_id,
        portfolio_name=(
            _shared(leg.entity.portfolio_name for leg in ordered)
            if portfolio_id
            else None
        ),
    )
    dedupe_keys: frozenset[str] = frozenset()
    for leg in ordered:
        dedupe_keys |= leg.dedupe_keys

    return AttentionItem(
        item_id=f"{PAIR_ID_PREFIX}{pair_key}",
        source_type=earliest.source_type,
        entity=entity,
        title=f"{buy_label} / {sell_label}",
        detail=f"Pair trade ({len(ordered)} legs)",
        urgency=max(leg.urgency for leg in ordered),
        created_at=earliest.created_at,
        updated_at=max(leg.updated_at for leg in ordered),
        age_days=max(leg.age_days for leg in ordered),
        requires_decision=any(leg.requires_decision for leg in ordered),
        blocking=any(leg.blocking for leg in ordered),
        stage=_most_advanced_stage(ordered),
        pair_key=pair_key,
        child_leg_ids=tuple(sorted(leg.item_id for leg in ordered)),
        leg_entity_ids=tuple(
            sorted({leg.entity.entity_id for leg in ordered if leg.entity.entity_id})
        ),
        dedupe_keys=dedupe_keys,
        cta_label="Review pair",
        cta_action="open_pair",
    )


def merge_pairs(
    items: Iterable[AttentionItem],
) -> tuple[list[AttentionItem], dict[str, tuple[str, ...]]]:
    """Run the pair merge pass.

    Returns:
        Tuple of (items after merging, merged pair id to leg ids).
    """
    groups: dict[str, list[AttentionItem]] = defaultdict(list)
    result: list[AttentionItem] = []
    for item in items:
        if item.pair_key:
            groups[item.pair_key].append(item)
        else:
            result.append(item)

    merged: dict[str, tuple[str, ...]] = {}
    for pair_key in sorted(groups):
        legs = groups[pair_key]
        pair = merge_pair(pair_key, legs)
        if pair is None:
            result.extend(legs)
            continue
        result.append(pair)
        merged[pair.item_id] = pair.child_leg_ids

    return result, merged


# --------------------------------------------------------------------------
# Dedup
# --------------------------------------------------------------------------


def dedup_cross_source(
    items: Iterable[AttentionItem],
) -> tuple[list[AttentionItem], list[DedupDrop]]:
    """Collapse items from different sources covering the same underlying id.

    Items are visited highest precedence first (ties by item_id). An item is
    dropped when any of its dedupe keys was already claimed by an item from a
    different source. Items from the same source never dedup each other.

    Returns:
        Tuple of (kept items, drop records).
    """
    ordered = sorted(
        items, key=lambda i: (precedence_rank(i.source_type), i.item_id)
    )
    claimed: dict[str, AttentionItem] = {}
    kept: list[AttentionItem] = []
    dropped: list[DedupDrop] = []

    for item in ordered:
        winner: tuple[str, AttentionItem] | None = None
        for key in sorted(item.dedupe_keys):
            owner = claimed.get(key)
            if owner is not None and owner.source_type != item.source_type:
                winner = (key, owner)
                break
        if winner is not None:
            dropped.append(
                DedupDrop(
                    item_id=item.item_id,
                    kept_item_id=winner[1].item_id,
                    shared_key=winner[0],
                )
            )
            continue
        for key in item.dedupe_keys:
            claimed.setdefault(key, item)
        kept.append(item)

    return kept, dropped


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------


def merge_and_dedup_detailed(items: Iterable[AttentionItem]) -> MergeResult:
    """Pair merge then dedup, keeping the bookkeeping for tracing."""
    merged_items, merged_pairs = merge_pairs(items)
    kept, dropped = dedup_cross_source(merged_items)
    return MergeResult(
        items=tuple(sorted(kept, key=lambda i: i.item_id)),
        merged_pairs=merged_pairs,
        dropped=tuple(sorted(dropped, key=lambda d: d.item_id)),
    )


def merge_and_dedup(items: Iterable[AttentionItem]) -> list[AttentionItem]:
    """Merge paired legs and drop cross-source duplicates.

    Args:
        items: Normalized items from all sources.

    Returns:
        Surviving items sorted by item_id.
    """
    return list(merge_and_dedup_detailed(items).items)
