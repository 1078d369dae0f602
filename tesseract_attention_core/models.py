"""Canonical data model for the attention feed.

Every raw source record is normalized into an AttentionItem. Items and
follow-ups are ephemeral: they are recomputed on every feed build and owned
exclusively by that build. Only suppression records outlive a build.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


# --------------------------------------------------------------------------
# Enums
# --------------------------------------------------------------------------


class SourceType(str, Enum):
    """Where an attention item came from."""

    IDEA = "idea"
    RATING_CHANGE = "rating-change"
    STALE_RESEARCH = "stale-research"
    DELIVERABLE = "deliverable"
    PROPOSAL = "proposal"
    FOLLOWUP = "follow-up"


class Urgency(Enum):
    """Urgency levels (ordered)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric rank, LOW=1 through CRITICAL=4."""
        return _URGENCY_ORDER.index(self) + 1

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Urgency):
            return NotImplemented
        return self.rank >= other.rank


_URGENCY_ORDER = [
    Urgency.LOW,
    Urgency.MEDIUM,
    Urgency.HIGH,
    Urgency.CRITICAL,
]


class Band(str, Enum):
    """Priority tier used for display ordering."""

    NOW = "now"
    SOON = "soon"
    AWARE = "aware"


BAND_ORDER: tuple[Band, ...] = (Band.NOW, Band.SOON, Band.AWARE)


# Trade idea pipeline stages, least to most advanced.
PIPELINE_STAGES: tuple[str, ...] = ("idea", "discussing", "simulating", "deciding")


class LegRole(str, Enum):
    """Side of a paired transaction."""

    BUY = "buy"
    SELL = "sell"


class FollowupType(str, Enum):
    """Derived follow-up alert types."""

    DECISION_RESEARCH_GAP = "decision_research_gap"
    RATING_EV_MISMATCH = "rating_ev_mismatch"
    HIGH_EV_NO_IDEA = "high_ev_no_idea"


# Fixed priority for list ordering and primary insight selection.
FOLLOWUP_PRIORITY: tuple[FollowupType, ...] = (
    FollowupType.DECISION_RESEARCH_GAP,
    FollowupType.RATING_EV_MISMATCH,
    FollowupType.HIGH_EV_NO_IDEA,
)


# --------------------------------------------------------------------------
# Items
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityContext:
    """Owning entities of an item.

    Attributes:
        asset_id: Asset the item is about, if any.
        asset_label: Display label (ticker) for the asset.
        portfolio_id: Portfolio the item is scoped to, if any.
        portfolio_name: Display name for the portfolio.
        project_id: Project the item belongs to, if any.
    """

    asset_id: str | None = None
    asset_label: str | None = None
    portfolio_id: str | None = None
    portfolio_name: str | None = None
    project_id: str | None = None

    @property
    def entity_id(self) -> str | None:
        """Primary owning entity (asset, then project, then portfolio)."""
        return self.asset_id or self.project_id or self.portfolio_id


@dataclass(frozen=True)
class AttentionItem:
    """Canonical attention item.

    Attributes:
        item_id: Unique within one feed build ("<source>:<record id>").
        source_type: Source the item was normalized from.
        entity: Owning entity context.
        title: Short display title.
        detail: Longer explanation.
        urgency: Source-specific urgency classification.
        created_at: When the underlying record was created.
        updated_at: When the underlying record was last updated.
        age_days: Whole days since created_at (never negative).
        due_at: Due date, for deliverables.
        overdue: Whether due_at has passed.
        due_in_days: Fractional days until due (None when no due date).
        requires_decision: Whether the item is waiting on a decision.
        blocking: Whether the item blocks other work.
        stage: Pipeline stage, for ideas.
        pair_key: Pairing key shared by legs of one transaction.
        leg_role: Buy or sell side of a paired leg.
        child_leg_ids: Member ids of a merged pair item.
        leg_entity_ids: Entities of the legs of a merged pair item.
        underlying_id: Id of the underlying object, for cross-source dedup.
        dedupe_keys: All underlying ids this item covers.
        followup_type: Follow-up type, for follow-up items.
        cta_label: Call-to-action label.
        cta_action: Call-to-action key for the caller to handle.
        band: Assigned band (derived per build, never persisted).
    """

    item_id: str
    source_type: SourceType
    entity: EntityContext
    title: str
    created_at: datetime
    updated_at: datetime
    detail: str = ""
    urgency: Urgency = Urgency.LOW
    age_days: int = 0
    due_at: datetime | None = None
    overdue: bool = False
    due_in_days: float | None = None
    requires_decision: bool = False
    blocking: bool = False
    stage: str | None = None
    pair_key: str | None = None
    leg_role: LegRole | None = None
    child_leg_ids: tuple[str, ...] = ()
    leg_entity_ids: tuple[str, ...] = ()
    underlying_id: str | None = None
    dedupe_keys: frozenset[str] = field(default_factory=lambda: frozenset())
    followup_type: FollowupType | None = None
    cta_label: str | None = None
    cta_action: str | None = None
    band: Band | None = None

    @property
    def is_merged(self) -> bool:
        """Whether this is a synthetic pair/rollup item."""
        return bool(self.child_leg_ids)

    @property
    def entity_ids(self) -> frozenset[str]:
        """Every entity this item is about (own plus merged legs)."""
        ids = set(self.leg_entity_ids)
        if self.entity.entity_id is not None:
            ids.add(self.entity.entity_id)
        return frozenset(ids)


@dataclass(frozen=True)
class FollowupItem:
    """A derived alert for one entity.

    Attributes:
        followup_type: Which rule fired.
        entity_id: Entity the rule was evaluated for.
        headline: Short headline for the row.
        detail: Longer description.
        cta_label: CTA label.
        cta_action: CTA action key.
        is_suppressed: Whether the type is suppressed for this entity right now.
        occurred_at: Timestamp of the signal that triggered the rule.
        entity_label: Display label for the entity.
        portfolio_id: Portfolio scope of the triggering signals.
    """

    followup_type: FollowupType
    entity_id: str
    headline: str
    detail: str
    cta_label: str
    cta_action: str
    is_suppressed: bool = False
    occurred_at: datetime | None = None
    entity_label: str | None = None
    portfolio_id: str | None = None


@dataclass(frozen=True)
class PrimaryInsight:
    """The single most important signal for a collapsed summary strip."""

    text: str
    tone: str  # amber, blue, neutral
    followup_type: FollowupType | None = None
    entity_id: str | None = None


# --------------------------------------------------------------------------
# Follow-up inputs
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class DecisionSignal:
    """Most recent decision action for an entity.

    Attributes:
        action: Action taken (e.g., "buy", "trim").
        decided_at: When the decision was executed.
        portfolio_name: Portfolio the decision applied to.
    """

    action: str
    decided_at: datetime
    portfolio_name: str | None = None


@dataclass(frozen=True)
class EntitySignals:
    """All follow-up inputs for one entity.

    Missing signals mean "unknown" (still loading or no data) and never
    cause a rule to fire.

    Attributes:
        entity_id: Entity identifier.
        entity_label: Display label.
        portfolio_id: Portfolio scope of the signals, if any.
        latest_decision: Most recent decision action.
        research_updated_at: Most recent research/thesis update.
        expected_return: Probability-weighted expected return (0.2 = 20%).
        active_idea_count: Number of currently active trade ideas.
        ev_inconsistent: Upstream rating/EV direction conflict flag.
        ev_conflict_headline: Upstream-supplied headline for the conflict.
        ev_conflict_detail: Upstream-supplied detail for the conflict.
    """

    entity_id: str
    entity_label: str | None = None
    portfolio_id: str | None = None
    latest_decision: DecisionSignal | None = None
    research_updated_at: datetime | None = None
    expected_return: float | None = None
    active_idea_count: int | None = None
    ev_inconsistent: bool = False
    ev_conflict_headline: str | None = None
    ev_conflict_detail: str | None = None


# --------------------------------------------------------------------------
# Feed output
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class FeedFilters:
    """Context filters applied to a feed build.

    Attributes:
        portfolio_id: Restrict to one portfolio (items without one are kept).
        entity_ids: Restrict to these entities.
        source_types: Restrict to these sources.
        urgent_only: Keep only NOW items and urgent SOON items.
    """

    portfolio_id: str | None = None
    entity_ids: frozenset[str] | None = None
    source_types: frozenset[SourceType] | None = None
    urgent_only: bool = False


@dataclass(frozen=True)
class BandSummary:
    """Reduction over the items in one band.

    Attributes:
        band: The band summarized.
        count: Number of items.
        highlighted_items: Ids of the first items in band order.
        aggregate_urgency: Sum of urgency ranks.
        peak_urgency: Highest urgency in the band.
        oldest_age_days: Largest age in the band.
        breakdown: (source type, count) pairs, most frequent first.
        next_due_at: Earliest due date in the band.
    """

    band: Band
    count: int = 0
    highlighted_items: tuple[str, ...] = ()
    aggregate_urgency: int = 0
    peak_urgency: Urgency | None = None
    oldest_age_days: int = 0
    breakdown: tuple[tuple[str, int], ...] = ()
    next_due_at: datetime | None = None


@dataclass(frozen=True)
class PipelineStats:
    """Idea counts by stage over the unfiltered idea set."""

    by_stage: tuple[tuple[str, int], ...] = ()
    total: int = 0
    pair_groups: int = 0

    def count(self, stage: str) -> int:
        """Count for a single stage (0 if unseen)."""
        return dict(self.by_stage).get(stage, 0)


@dataclass(frozen=True)
class FeedView:
    """Composed, banded view model for one build."""

    now: tuple[AttentionItem, ...] = ()
    soon: tuple[AttentionItem, ...] = ()
    aware: tuple[AttentionItem, ...] = ()
    summaries: dict[Band, BandSummary] = field(default_factory=lambda: {})
    total_count: int = 0
    pipeline_stats: PipelineStats = field(default_factory=PipelineStats)
    followups: tuple[FollowupItem, ...] = ()
    primary_insight: PrimaryInsight | None = None
    failed_sources: tuple[SourceType, ...] = ()

    @property
    def partial(self) -> bool:
        """Whether one or more sources failed to load."""
        return bool(self.failed_sources)

    def band(self, band: Band) -> tuple[AttentionItem, ...]:
        """Items for a band."""
        if band == Band.NOW:
            return self.now
        if band == Band.SOON:
            return self.soon
        return self.aware

    def item_ids(self) -> list[str]:
        """All item ids in band order."""
        return [item.item_id for b in BAND_ORDER for item in self.band(b)]


# --------------------------------------------------------------------------
# Action results
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class SnoozeResult:
    """Outcome of a snooze or follow-up suppression request.

    Attributes:
        applied: Whether the suppression was persisted.
        target: Item id or follow-up type that was targeted.
        suppressed_until: End of the window, when applied.
        error: Failure description, when not applied.
    """

    applied: bool
    target: str
    suppressed_until: datetime | None = None
    error: str | None = None


@dataclass(frozen=True)
class ActionResult:
    """Outcome of a delegated item action (e.g., mark done)."""

    ok: bool
    item_id: str
    error: str | None = None
