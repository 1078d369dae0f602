"""Tests for band assignment, urgent-only filtering and summaries."""

from __future__ import annotations

from dataclasses import replace

from tesseract_attention_core.config import DeliverableThresholds, FeedConfig
from tesseract_attention_core.decision.bands import (
    FALLBACK_RULE,
    assign_band,
    build_band_rules,
    classify_band,
    compute_band_summary,
    filter_urgent_only,
    sort_band,
)
from tesseract_attention_core.decision.followups import (
    evaluate_entity_followups,
    followup_to_item,
)
from tesseract_attention_core.decision.normalizer import normalize_record
from tesseract_attention_core.models import (
    AttentionItem,
    Band,
    EntityContext,
    EntitySignals,
    SourceType,
    Urgency,
)

from .conftest import NOW, days_ago, days_ahead, deliverable_record, idea_record, record


def _item(
    item_id: str,
    source_type: SourceType = SourceType.IDEA,
    *,
    urgency: Urgency = Urgency.LOW,
    age: float = 0,
    **fields: object,
) -> AttentionItem:
    created = days_ago(age)
    return AttentionItem(
        item_id=item_id,
        source_type=source_type,
        entity=EntityContext(asset_id="e1"),
        title=item_id,
        created_at=created,
        updated_at=created,
        urgency=urgency,
        age_days=int(age),
        **fields,  # type: ignore[arg-type]
    )


class TestIdeaBands:
    """Band rules for trade ideas."""

    def test_deciding_is_now(self) -> None:
        """Ideas awaiting a decision are NOW."""
        item = normalize_record(
            idea_record("i1", stage="deciding"), SourceType.IDEA, now=NOW
        )
        decision = classify_band(item)
        assert decision.band == Band.NOW
        assert decision.rule == "deciding"

    def test_high_urgency_is_now(self) -> None:
        """HIGH urgency ideas are NOW regardless of stage."""
        assert assign_band(_item("i1", urgency=Urgency.HIGH)) == Band.NOW

    def test_in_progress_is_soon(self) -> None:
        """Discussing and simulating ideas are SOON."""
        assert assign_band(_item("i1", stage="discussing")) == Band.SOON
        assert assign_band(_item("i2", stage="simulating")) == Band.SOON

    def test_new_idea_is_aware(self) -> None:
        """A fresh idea with no urgency is AWARE."""
        decision = classify_band(_item("i1", stage="idea"))
        assert decision.band == Band.AWARE
        assert decision.rule == FALLBACK_RULE


class TestOtherBands:
    """Band rules for the remaining sources."""

    def test_old_proposal_is_now(self) -> None:
        """Proposals pending past the decision window are NOW."""
        item = normalize_record(record("p1", age_days=3), SourceType.PROPOSAL, now=NOW)
        assert assign_band(item) == Band.NOW

    def test_fresh_proposal_is_soon(self) -> None:
        """A fresh proposal is SOON."""
        item = normalize_record(record("p1"), SourceType.PROPOSAL, now=NOW)
        assert assign_band(item) == Band.SOON

    def test_overdue_deliverable_is_now(self) -> None:
        """Overdue deliverables are NOW."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=-2), SourceType.DELIVERABLE, now=NOW
        )
        assert assign_band(item) == Band.NOW

    def test_blocking_deliverable_is_now(self) -> None:
        """Blocked deliverables are NOW."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=30, status="blocked"),
            SourceType.DELIVERABLE,
            now=NOW,
        )
        assert assign_band(item) == Band.NOW

    def test_deliverable_due_within_week_is_soon(self) -> None:
        """Deliverables due within the window are SOON, later ones AWARE."""
        soon = normalize_record(
            deliverable_record("d1", due_in_days=2), SourceType.DELIVERABLE, now=NOW
        )
        later = normalize_record(
            deliverable_record("d2", due_in_days=20), SourceType.DELIVERABLE, now=NOW
        )
        assert assign_band(soon) == Band.SOON
        assert assign_band(later) == Band.AWARE

    def test_due_soon_window_from_config(self) -> None:
        """The due-soon window is configurable."""
        rules = build_band_rules(
            FeedConfig(deliverable=DeliverableThresholds(due_soon_days=30))
        )
        item = normalize_record(
            deliverable_record("d1", due_in_days=20), SourceType.DELIVERABLE, now=NOW
        )
        assert assign_band(item, rules) == Band.SOON

    def test_rating_change_bands(self) -> None:
        """Recent rating changes are SOON, old ones AWARE."""
        assert assign_band(_item("r1", SourceType.RATING_CHANGE, age=1)) == Band.SOON
        assert assign_band(_item("r2", SourceType.RATING_CHANGE, age=10)) == Band.AWARE

    def test_stale_research_bands(self) -> None:
        """Stale research at MEDIUM or above is SOON."""
        stale = _item("s1", SourceType.STALE_RESEARCH, urgency=Urgency.MEDIUM)
        fresh = _item("s2", SourceType.STALE_RESEARCH)
        assert assign_band(stale) == Band.SOON
        assert assign_band(fresh) == Band.AWARE

    def test_followup_bands(self) -> None:
        """Gap and mismatch follow-ups are NOW, high EV is AWARE."""
        followups = evaluate_entity_followups(
            EntitySignals(
                entity_id="e1",
                ev_inconsistent=True,
                expected_return=0.3,
                active_idea_count=0,
            )
        )
        bands = [assign_band(followup_to_item(f, now=NOW)) for f in followups]
        assert bands == [Band.NOW, Band.AWARE]

    def test_unknown_source_falls_back(self) -> None:
        """An empty rule table yields AWARE without raising."""
        decision = classify_band(_item("x", urgency=Urgency.CRITICAL), rules={})
        assert decision.band == Band.AWARE
        assert decision.rule == FALLBACK_RULE

    def test_band_is_deterministic(self) -> None:
        """Same item, same band, every time."""
        item = _item("i1", stage="simulating", urgency=Urgency.MEDIUM)
        assert {assign_band(item) for _ in range(20)} == {Band.SOON}


class TestUrgentOnly:
    """The urgent-only filter over banded items."""

    def test_keeps_now_and_urgent_soon(self) -> None:
        """NOW always survives, SOON only when urgent."""
        now_item = _item("a", band=Band.NOW)
        soon_high = _item("b", urgency=Urgency.HIGH, band=Band.SOON)
        soon_due = _item("c", due_in_days=3.0, band=Band.SOON)
        soon_overdue = _item("d", overdue=True, band=Band.SOON)
        soon_plain = _item("e", urgency=Urgency.MEDIUM, band=Band.SOON)
        aware = _item("f", urgency=Urgency.CRITICAL, band=Band.AWARE)

        kept = filter_urgent_only(
            [now_item, soon_high, soon_due, soon_overdue, soon_plain, aware]
        )

        assert [i.item_id for i in kept] == ["a", "b", "c", "d"]


class TestOrderingAndSummary:
    """Band sort order and summaries."""

    def test_sort_urgency_then_age_then_id(self) -> None:
        """Urgency desc, then oldest first, then item_id."""
        items = [
            _item("c", urgency=Urgency.MEDIUM, age=1),
            _item("b", urgency=Urgency.HIGH, age=1),
            _item("a", urgency=Urgency.MEDIUM, age=5),
            _item("d", urgency=Urgency.MEDIUM, age=1),
        ]
        assert [i.item_id for i in sort_band(items)] == ["b", "a", "c", "d"]

    def test_stale_research_sorts_by_thesis_age(self) -> None:
        """Stale research orders by thesis age, not record creation."""
        older_thesis = normalize_record(
            record("s1", age_days=1, thesis_updated_at=days_ago(170).isoformat()),
            SourceType.STALE_RESEARCH,
            now=NOW,
        )
        newer_thesis = normalize_record(
            record("s2", age_days=5, thesis_updated_at=days_ago(100).isoformat()),
            SourceType.STALE_RESEARCH,
            now=NOW,
        )
        assert older_thesis.urgency == newer_thesis.urgency == Urgency.MEDIUM

        ordered = sort_band([newer_thesis, older_thesis])

        assert [i.age_days for i in ordered] == [170, 100]
        assert [i.item_id for i in ordered] == [
            "stale-research:s1",
            "stale-research:s2",
        ]

    def test_summary(self) -> None:
        """Summary reduces counts, urgency, age and due dates."""
        items = sort_band(
            [
                _item("a", urgency=Urgency.HIGH, age=4),
                _item(
                    "b",
                    SourceType.DELIVERABLE,
                    urgency=Urgency.MEDIUM,
                    age=2,
                    due_at=days_ahead(2),
                ),
                _item(
                    "c",
                    SourceType.DELIVERABLE,
                    age=1,
                    due_at=days_ahead(5),
                ),
            ]
        )

        summary = compute_band_summary(Band.SOON, items, highlight_count=2)

        assert summary.count == 3
        assert summary.highlighted_items == ("a", "b")
        assert summary.aggregate_urgency == 3 + 2 + 1
        assert summary.peak_urgency == Urgency.HIGH
        assert summary.oldest_age_days == 4
        assert summary.breakdown == (("deliverable", 2), ("idea", 1))
        assert summary.next_due_at == days_ahead(2)

    def test_empty_summary(self) -> None:
        """An empty band has a zero summary."""
        summary = compute_band_summary(Band.NOW, [])
        assert summary.count == 0
        assert summary.peak_urgency is None
        assert summary.next_due_at is None

    def test_band_is_derived_not_stored(self) -> None:
        """A stale band on the input never influences classification."""
        item = replace(_item("i1", stage="deciding"), band=Band.AWARE)
        assert assign_band(item) == Band.NOW
