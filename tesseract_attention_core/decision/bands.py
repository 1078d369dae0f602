"""Band assignment for attention items.

This module answers: "Which priority tier does this item belong in right
now?" It does NOT decide whether the item exists (normalization, dedup and
suppression do that).

Rule tables (first match wins, per source):
- idea: deciding -> NOW; urgency >= HIGH -> NOW; discussing/simulating -> SOON
- proposal: aged past the decision window -> NOW; urgency >= HIGH -> NOW;
  otherwise SOON
- deliverable: overdue -> NOW; blocking -> NOW; due within the window -> SOON
- rating-change: recent -> SOON
- stale-research: urgency >= MEDIUM -> SOON
- follow-up: decision_research_gap / rating_ev_mismatch -> NOW

Key properties:
- Pure, deterministic, never raises on missing data
- Unknown sources and unmatched items fall back to AWARE
- Band is recomputed on every build, never stored
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

from ..config import DEFAULT_CONFIG, FeedConfig
from ..models import (
    AttentionItem,
    Band,
    BandSummary,
    FollowupType,
    SourceType,
    Urgency,
)

FALLBACK_RULE = "fallback"

_SOON_STAGES = frozenset({"discussing", "simulating"})


# --------------------------------------------------------------------------
# Rule records
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class BandRule:
    """One entry of a source's band cascade.

    Attributes:
        name: Rule name (surfaced in traces).
        predicate: Pure test over the item.
        band: Band assigned when the predicate holds.
    """

    name: str
    predicate: Callable[[AttentionItem], bool]
    band: Band


@dataclass(frozen=True)
class BandDecision:
    """Outcome of band classification for one item.

    Attributes:
        item_id: The classified item.
        band: Assigned band.
        rule: Name of the matched rule (FALLBACK_RULE if none matched).
    """

    item_id: str
    band: Band
    rule: str


BandRules = Mapping[SourceType, Sequence[BandRule]]


def build_band_rules(
    config: FeedConfig = DEFAULT_CONFIG,
) -> dict[SourceType, tuple[BandRule, ...]]:
    """Build per-source band cascades from configuration."""
    decision = config.decision
    research = config.research
    deliverable = config.deliverable

    def urgent(item: AttentionItem) -> bool:
        return item.urgency >= Urgency.HIGH

    def due_within(item: AttentionItem, days: int) -> bool:
        return item.due_in_days is not None and item.due_in_days <= days

    return {
        SourceType.IDEA: (
            BandRule("deciding", lambda i: i.stage == "deciding", Band.NOW),
            BandRule("urgent", urgent, Band.NOW),
            BandRule("in_progress", lambda i: i.stage in _SOON_STAGES, Band.SOON),
        ),
        SourceType.PROPOSAL: (
            BandRule(
                "awaiting_decision",
                lambda i: i.age_days >= decision.now_days,
                Band.NOW,
            ),
            BandRule("urgent", urgent, Band.NOW),
            BandRule("pending", lambda i: True, Band.SOON),
        ),
        SourceType.DELIVERABLE: (
            BandRule("overdue", lambda i: i.overdue, Band.NOW),
            BandRule("blocking", lambda i: i.blocking, Band.NOW),
            BandRule(
                "due_soon",
                lambda i: due_within(i, deliverable.due_soon_days),
                Band.SOON,
            ),
        ),
        SourceType.RATING_CHANGE: (
            BandRule(
                "recent_change",
                lambda i: i.age_days <= research.rating_recent_days,
                Band.SOON,
            ),
        ),
        SourceType.STALE_RESEARCH: (
            BandRule("stale", lambda i: i.urgency >= Urgency.MEDIUM, Band.SOON),
        ),
        SourceType.FOLLOWUP: (
            BandRule(
                FollowupType.DECISION_RESEARCH_GAP.value,
                lambda i: i.followup_type == FollowupType.DECISION_RESEARCH_GAP,
                Band.NOW,
            ),
            BandRule(
                FollowupType.RATING_EV_MISMATCH.value,
                lambda i: i.followup_type == FollowupType.RATING_EV_MISMATCH,
                Band.NOW,
            ),
            BandRule(
                FollowupType.HIGH_EV_NO_IDEA.value,
                lambda i: i.followup_type == FollowupType.HIGH_EV_NO_IDEA,
                Band.AWARE,
            ),
        ),
    }


DEFAULT_BAND_RULES = build_band_rules()


# --------------------------------------------------------------------------
# Classification
# --------------------------------------------------------------------------


def classify_band(
    item: AttentionItem, rules: BandRules | None = None
) -> BandDecision:
    """Classify an item into a band, recording which rule matched.

    Args:
        item: The item to classify.
        rules: Per-source cascades (defaults to DEFAULT_BAND_RULES).

    Returns:
        BandDecision; AWARE with FALLBACK_RULE when nothing matches.
    """
    table = DEFAULT_BAND_RULES if rules is None else rules
    for rule in table.get(item.source_type, ()):
        if rule.predicate(item):
            return BandDecision(item_id=item.item_id, band=rule.band, rule=rule.name)
    return BandDecision(item_id=item.item_id, band=Band.AWARE, rule=FALLBACK_RULE)


def assign_band(item: AttentionItem, rules: BandRules | None = None) -> Band:
    """Return the band for an item."""
    return classify_band(item, rules).band


def is_urgent(item: AttentionItem, due_soon_days: int | None = None) -> bool:
    """Whether a banded item survives the urgent-only filter.

    NOW items always survive. SOON items survive when overdue, due within
    the deliverable window, or HIGH urgency and above.
    """
    if item.band == Band.NOW:
        return True
    if item.band != Band.SOON:
        return False
    window = (
        DEFAULT_CONFIG.deliverable.due_soon_days
        if due_soon_days is None
        else due_soon_days
    )
    if item.overdue:
        return True
    if item.due_in_days is not None and item.due_in_days <= window:
        return True
    return item.urgency >= Urgency.HIGH


def filter_urgent_only(
    items: Iterable[AttentionItem], due_soon_days: int | None = None
) -> list[AttentionItem]:
    """Keep NOW items and urgent SOON items. Items must already be banded."""
    return [item for item in items if is_urgent(item, due_soon_days)]


# --------------------------------------------------------------------------
# Ordering and summaries
# --------------------------------------------------------------------------


def band_sort_key(item: AttentionItem) -> tuple[int, int, float, str]:
    """Urgency descending, then age descending, then oldest first, then item_id.

    Age is the item's own age_days, which for stale research counts from the
    last thesis update rather than from the record's creation.
    """
    return (
        -item.urgency.rank,
        -item.age_days,
        item.created_at.timestamp(),
        item.item_id,
    )


def sort_band(items: Iterable[AttentionItem]) -> list[AttentionItem]:
    """Order the items of one band for display."""
    return sorted(items, key=band_sort_key)


def compute_band_summary(
    band: Band,
    items: Sequence[AttentionItem],
    *,
    highlight_count: int = DEFAULT_CONFIG.feed.highlight_count,
) -> BandSummary:
    """Summarize one band.

    Args:
        band: The band being summarized.
        items: The band's items, already in display order.
        highlight_count: How many leading item ids to highlight.

    Returns:
        BandSummary (empty summary for an empty band).
    """
    if not items:
        return BandSummary(band=band)

    counts = Counter(item.source_type.value for item in items)
    breakdown = tuple(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))
    due_dates = [item.due_at for item in items if item.due_at is not None]

    return BandSummary(
        band=band,
        count=len(items),
        highlighted_items=tuple(item.item_id for item in items[:highlight_count]),
        aggregate_urgency=sum(item.urgency.rank for item in items),
        peak_urgency=max(item.urgency for item in items),
        oldest_age_days=max(item.age_days for item in items),
        breakdown=breakdown,
        next_due_at=min(due_dates) if due_dates else None,
    )
