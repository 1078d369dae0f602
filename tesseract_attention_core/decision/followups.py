"""Follow-up rule evaluation.

This module answers: "Given what we know about an entity right now, which
derived follow-up alerts should be raised?"

Three fixed rules, evaluated per entity in priority order:

1. decision_research_gap: a decision was executed after the latest research
   update (or there is no research at all)
2. rating_ev_mismatch: upstream flagged the rating direction as
   inconsistent with expected value
3. high_ev_no_idea: expected return is large but no trade idea is active

Key properties:
- Pure, deterministic, no I/O
- Missing signals mean "unknown" and never fire a rule
- Suppression is read through an injected predicate, never written here
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime

from ..config import DEFAULT_CONFIG, FeedConfig
from ..models import (
    FOLLOWUP_PRIORITY,
    AttentionItem,
    EntityContext,
    EntitySignals,
    FollowupItem,
    FollowupType,
    PrimaryInsight,
    SourceType,
    Urgency,
)
from .normalizer import whole_days_between

_LOGGER = logging.getLogger(__name__)

SuppressionCheck = Callable[[str, FollowupType], bool]


# --------------------------------------------------------------------------
# Constants
# --------------------------------------------------------------------------

TONE_AMBER = "amber"
TONE_BLUE = "blue"
TONE_NEUTRAL = "neutral"

_INSIGHT_TONES: dict[FollowupType, str] = {
    FollowupType.DECISION_RESEARCH_GAP: TONE_AMBER,
    FollowupType.RATING_EV_MISMATCH: TONE_AMBER,
    FollowupType.HIGH_EV_NO_IDEA: TONE_BLUE,
}

_ITEM_URGENCY: dict[FollowupType, Urgency] = {
    FollowupType.DECISION_RESEARCH_GAP: Urgency.HIGH,
    FollowupType.RATING_EV_MISMATCH: Urgency.HIGH,
    FollowupType.HIGH_EV_NO_IDEA: Urgency.MEDIUM,
}

DEFAULT_MISMATCH_HEADLINE = "Rating and EV diverge"
DEFAULT_MISMATCH_DETAIL = (
    "Rating direction conflicts with probability-weighted expected value."
)


# --------------------------------------------------------------------------
# Rules
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class FollowupRule:
    """A follow-up rule: a pure builder over one entity's signals.

    Attributes:
        followup_type: Type produced when the rule fires.
        build: Returns the unsuppressed follow-up, or None if not met.
    """

    followup_type: FollowupType
    build: Callable[[EntitySignals, FeedConfig], FollowupItem | None]


def _decision_research_gap(
    signals: EntitySignals, config: FeedConfig
) -> FollowupItem | None:
    decision = signals.latest_decision
    if decision is None:
        return None
    research_at = signals.research_updated_at
    if research_at is not None and research_at >= decision.decided_at:
        return None

    action = decision.action.strip().lower() or "decision"
    where = f" in {decision.portfolio_name}" if decision.portfolio_name else ""
    return FollowupItem(
        followup_type=FollowupType.DECISION_RESEARCH_GAP,
        entity_id=signals.entity_id,
        headline=f"{action.capitalize()} executed, research may need updating",
        detail=(
            f"A {action} was executed{where}. "
            "Rating, targets, or thesis may be stale."
        ),
        cta_label="Update thesis",
        cta_action="update_thesis",
        occurred_at=decision.decided_at,
        entity_label=signals.entity_label,
        portfolio_id=signals.portfolio_id,
    )


def _rating_ev_mismatch(
    signals: EntitySignals, config: FeedConfig
) -> FollowupItem | None:
    if not signals.ev_inconsistent:
        return None
    return FollowupItem(
        followup_type=FollowupType.RATING_EV_MISMATCH,
        entity_id=signals.entity_id,
        headline=signals.ev_conflict_headline or DEFAULT_MISMATCH_HEADLINE,
        detail=signals.ev_conflict_detail or DEFAULT_MISMATCH_DETAIL,
        cta_label="Update rating",
        cta_action="update_rating",
        entity_label=signals.entity_label,
        portfolio_id=signals.portfolio_id,
    )


def ev_percent(expected_return: float) -> int:
    """Absolute expected return as a whole percent, rounded half up."""
    return math.floor(abs(expected_return) * 100 + 0.5)


def _high_ev_no_idea(
    signals: EntitySignals, config: FeedConfig
) -> FollowupItem | None:
    expected = signals.expected_return
    if expected is None or signals.active_idea_count is None:
        return None
    if abs(expected) < config.followup.high_ev_threshold:
        return None
    if signals.active_idea_count > 0:
        return None

    pct = ev_percent(expected)
    direction = "upside" if expected > 0 else "downside"
    return FollowupItem(
        followup_type=FollowupType.HIGH_EV_NO_IDEA,
        entity_id=signals.entity_id,
        headline=f"{pct}% expected {direction}, no active idea",
        detail=(
            f"Probability-weighted EV implies {pct}% {direction} but no trade "
            "idea is active. Consider creating one."
        ),
        cta_label="New idea",
        cta_action="create_idea",
        entity_label=signals.entity_label,
        portfolio_id=signals.portfolio_id,
    )


FOLLOWUP_RULES: tuple[FollowupRule, ...] = (
    FollowupRule(FollowupType.DECISION_RESEARCH_GAP, _decision_research_gap),
    FollowupRule(FollowupType.RATING_EV_MISMATCH, _rating_ev_mismatch),
    FollowupRule(FollowupType.HIGH_EV_NO_IDEA, _high_ev_no_idea),
)


# --------------------------------------------------------------------------
# Signal grouping
# --------------------------------------------------------------------------


def _first(values: Iterable[str | None]) -> str | None:
    return next((v for v in values if v), None)


def _merge_signals(group: Sequence[EntitySignals]) -> EntitySignals:
    """Fold several signal sets for one entity into one.

    Keeps the latest decision, the latest research update, the largest
    expected return magnitude and any inconsistency flag. Active idea counts
    add up, and stay unknown if any part is unknown.
    """
    decisions = [s.latest_decision for s in group if s.latest_decision is not None]
    research = [s.research_updated_at for s in group if s.research_updated_at]
    returns = [s.expected_return for s in group if s.expected_return is not None]
    counts = [s.active_idea_count for s in group]
    conflicts = [s for s in group if s.ev_inconsistent]
    portfolios = {s.portfolio_id for s in group}

    return EntitySignals(
        entity_id=group[0].entity_id,
        entity_label=_first(s.entity_label for s in group),
        portfolio_id=portfolios.pop() if len(portfolios) == 1 else None,
        latest_decision=(
            max(decisions, key=lambda d: d.decided_at) if decisions else None
        ),
        research_updated_at=max(research) if research else None,
        expected_return=max(returns, key=abs) if returns else None,
        active_idea_count=(
            None if any(c is None for c in counts) else sum(c or 0 for c in counts)
        ),
        ev_inconsistent=bool(conflicts),
        ev_conflict_headline=_first(s.ev_conflict_headline for s in conflicts),
        ev_conflict_detail=_first(s.ev_conflict_detail for s in conflicts),
    )


def combine_entity_signals(signals: Iterable[EntitySignals]) -> list[EntitySignals]:
    """Collapse signals to exactly one entry per entity, sorted by entity_id.

    Several entries for one entity (for example one per portfolio) are
    merged so that each rule fires at most once per entity. Within a group,
    entries are folded in portfolio_id order so the result does not depend
    on input order.
    """
    groups: dict[str, list[EntitySignals]] = {}
    for entry in signals:
        groups.setdefault(entry.entity_id, []).append(entry)

    combined: list[EntitySignals] = []
    for entity_id in sorted(groups):
        group = groups[entity_id]
        if len(group) == 1:
            combined.append(group[0])
            continue
        _LOGGER.debug(
            "[%s] Merging %d follow-up signal sets", entity_id, len(group)
        )
        group.sort(key=lambda s: (s.portfolio_id or "", s.entity_label or ""))
        combined.append(_merge_signals(group))
    return combined


# --------------------------------------------------------------------------
# Evaluation
# --------------------------------------------------------------------------


def evaluate_entity_followups(
    signals: EntitySignals,
    *,
    is_suppressed: SuppressionCheck | None = None,
    config: FeedConfig = DEFAULT_CONFIG,
) -> list[FollowupItem]:
    """Evaluate all rules for one entity.

    Args:
        signals: The entity's follow-up inputs.
        is_suppressed: Predicate over (entity_id, followup_type).
        config: Rule thresholds.

    Returns:
        Fired follow-ups in priority order, each flagged if suppressed.
    """
    fired: list[FollowupItem] = []
    for rule in FOLLOWUP_RULES:
        followup = rule.build(signals, config)
        if followup is None:
            continue
        if is_suppressed is not None and is_suppressed(
            signals.entity_id, rule.followup_type
        ):
            followup = replace(followup, is_suppressed=True)
        fired.append(followup)
    return fired


def evaluate_followups(
    signals: Iterable[EntitySignals],
    *,
    is_suppressed: SuppressionCheck | None = None,
    config: FeedConfig = DEFAULT_CONFIG,
) -> list[FollowupItem]:
    """Evaluate follow-up rules for every entity.

    Signals are first combined to one entry per entity, then visited in
    entity_id order so output is stable regardless of input order.

    Returns:
        All fired follow-ups (suppressed ones included and flagged).
    """
    followups: list[FollowupItem] = []
    for entity in combine_entity_signals(signals):
        followups.extend(
            evaluate_entity_followups(
                entity, is_suppressed=is_suppressed, config=config
            )
        )
    return followups


def select_primary_insight(
    followups: Sequence[FollowupItem],
    *,
    active_idea_count: int = 0,
) -> PrimaryInsight | None:
    """Pick the single most important signal for a summary strip.

    The highest-priority non-suppressed follow-up wins (ties by entity_id).
    Otherwise a neutral count of active ideas, or None when there are none.
    """
    visible = [f for f in followups if not f.is_suppressed]
    if visible:
        best = min(
            visible,
            key=lambda f: (FOLLOWUP_PRIORITY.index(f.followup_type), f.entity_id),
        )
        return PrimaryInsight(
            text=best.headline,
            tone=_INSIGHT_TONES[best.followup_type],
            followup_type=best.followup_type,
            entity_id=best.entity_id,
        )
    if active_idea_count > 0:
        plural = "s" if active_idea_count > 1 else ""
        return PrimaryInsight(
            text=f"{active_idea_count} active idea{plural} in progress",
            tone=TONE_NEUTRAL,
        )
    return None


def followup_item_id(entity_id: str, followup_type: FollowupType) -> str:
    """Attention item id for a follow-up."""
    return f"{SourceType.FOLLOWUP.value}:{entity_id}:{followup_type.value}"


def followup_to_item(followup: FollowupItem, *, now: datetime) -> AttentionItem:
    """Project a follow-up into the canonical item shape.

    Args:
        followup: The fired follow-up.
        now: Build time, used when the follow-up has no trigger timestamp.

    Returns:
        An AttentionItem with source follow-up.
    """
    created_at = followup.occurred_at or now
    return AttentionItem(
        item_id=followup_item_id(followup.entity_id, followup.followup_type),
        source_type=SourceType.FOLLOWUP,
        entity=EntityContext(
            asset_id=followup.entity_id,
            asset_label=followup.entity_label,
            portfolio_id=followup.portfolio_id,
        ),
        title=followup.headline,
        detail=followup.detail,
        urgency=_ITEM_URGENCY[followup.followup_type],
        created_at=created_at,
        updated_at=created_at,
        age_days=whole_days_between(created_at, now),
        followup_type=followup.followup_type,
        cta_label=followup.cta_label,
        cta_action=followup.cta_action,
    )
