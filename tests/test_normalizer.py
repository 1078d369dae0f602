"""Tests for raw record normalization."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

import pytest

from tesseract_attention_core.config import DecisionThresholds, FeedConfig
from tesseract_attention_core.decision.normalizer import (
    build_urgency_rules,
    leg_role_for,
    normalize,
    normalize_record,
    parse_timestamp,
    whole_days_between,
)
from tesseract_attention_core.errors import RecordValidationError
from tesseract_attention_core.models import LegRole, SourceType, Urgency

from .conftest import NOW, days_ago, deliverable_record, idea_record, record


class TestParsing:
    """Timestamp and day arithmetic helpers."""

    def test_naive_timestamp_is_utc(self) -> None:
        """Naive timestamps are interpreted as UTC."""
        parsed = parse_timestamp("2026-03-01T08:00:00")
        assert parsed == datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

    def test_zulu_suffix_parses(self) -> None:
        """A trailing Z is accepted as UTC."""
        parsed = parse_timestamp("2026-03-01T08:00:00Z")
        assert parsed.tzinfo is not None
        assert parsed.hour == 8

    def test_offset_is_converted_to_utc(self) -> None:
        """Offsets are normalized to UTC."""
        parsed = parse_timestamp("2026-03-01T10:00:00+02:00")
        assert parsed == datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

    def test_rejects_non_timestamp(self) -> None:
        """Non-string, non-datetime values raise ValueError."""
        with pytest.raises(ValueError):
            parse_timestamp(12345)

    def test_age_is_floored(self) -> None:
        """Partial days round down."""
        assert whole_days_between(days_ago(2.9), NOW) == 2

    def test_future_created_at_clamps_to_zero(self) -> None:
        """A created_at after now never yields a negative age."""
        assert whole_days_between(days_ago(-3), NOW) == 0

    def test_leg_roles(self) -> None:
        """buy/add are buy legs, sell/trim are sell legs."""
        assert leg_role_for("buy") == LegRole.BUY
        assert leg_role_for("Add") == LegRole.BUY
        assert leg_role_for("sell") == LegRole.SELL
        assert leg_role_for("trim") == LegRole.SELL
        assert leg_role_for("hold") is None
        assert leg_role_for(None) is None


class TestIdeaUrgency:
    """Urgency cascade for trade ideas."""

    def test_explicit_urgent_is_critical(self) -> None:
        """An explicit urgent flag wins over everything else."""
        item = normalize_record(
            idea_record("i1", urgency="urgent"), SourceType.IDEA, now=NOW
        )
        assert item.urgency == Urgency.CRITICAL

    def test_deciding_for_a_week_is_high(self) -> None:
        """Deciding ideas become HIGH after the decision window."""
        item = normalize_record(
            idea_record("i1", stage="deciding", age_days=7), SourceType.IDEA, now=NOW
        )
        assert item.urgency == Urgency.HIGH
        assert item.requires_decision is True

    def test_deciding_for_three_days_is_medium(self) -> None:
        """Deciding ideas become MEDIUM after the shorter window."""
        item = normalize_record(
            idea_record("i1", stage="deciding", age_days=3), SourceType.IDEA, now=NOW
        )
        assert item.urgency == Urgency.MEDIUM

    def test_explicit_high_applies_outside_deciding(self) -> None:
        """Explicit high urgency maps to HIGH."""
        item = normalize_record(
            idea_record("i1", stage="discussing", urgency="high"),
            SourceType.IDEA,
            now=NOW,
        )
        assert item.urgency == Urgency.HIGH

    def test_default_is_low(self) -> None:
        """A fresh idea with no flags is LOW."""
        item = normalize_record(idea_record("i1"), SourceType.IDEA, now=NOW)
        assert item.urgency == Urgency.LOW
        assert item.requires_decision is False

    def test_thresholds_come_from_config(self) -> None:
        """Custom decision thresholds change the cascade."""
        config = FeedConfig(decision=DecisionThresholds(high_days=2, med_days=1))
        rules = build_urgency_rules(config)
        item = normalize_record(
            idea_record("i1", stage="deciding", age_days=2),
            SourceType.IDEA,
            now=NOW,
            rules=rules,
        )
        assert item.urgency == Urgency.HIGH

    def test_pair_fields(self) -> None:
        """Pair id, legacy pair id and action are carried onto the item."""
        item = normalize_record(
            idea_record("i1", action="trim", pair_trade_id="p9"),
            SourceType.IDEA,
            now=NOW,
        )
        assert item.pair_key == "p9"
        assert item.leg_role == LegRole.SELL
        assert item.item_id == "idea:i1"
        assert item.dedupe_keys == frozenset({"i1"})


class TestOtherSources:
    """Urgency cascades for the remaining sources."""

    def test_proposal_ages_into_high(self) -> None:
        """Proposals pending a week are HIGH and always need a decision."""
        item = normalize_record(
            record("p1", age_days=8, trade_idea_id="i1"),
            SourceType.PROPOSAL,
            now=NOW,
        )
        assert item.urgency == Urgency.HIGH
        assert item.requires_decision is True
        assert item.underlying_id == "i1"

    def test_proposal_medium_window(self) -> None:
        """Proposals pending three days are MEDIUM."""
        item = normalize_record(record("p1", age_days=3), SourceType.PROPOSAL, now=NOW)
        assert item.urgency == Urgency.MEDIUM

    def test_overdue_deliverable_is_high(self) -> None:
        """Overdue deliverables are HIGH."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=-1), SourceType.DELIVERABLE, now=NOW
        )
        assert item.overdue is True
        assert item.urgency == Urgency.HIGH

    def test_deliverable_due_soon_is_medium(self) -> None:
        """Deliverables due within three days are MEDIUM."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=2), SourceType.DELIVERABLE, now=NOW
        )
        assert item.overdue is False
        assert item.due_in_days == pytest.approx(2.0)
        assert item.urgency == Urgency.MEDIUM

    def test_urgent_project_priority(self) -> None:
        """An urgent project makes its deliverable HIGH."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=20, project_priority="urgent"),
            SourceType.DELIVERABLE,
            now=NOW,
        )
        assert item.urgency == Urgency.HIGH

    def test_high_project_priority(self) -> None:
        """A high-priority project makes its deliverable MEDIUM."""
        item = normalize_record(
            deliverable_record("d1", due_in_days=20, project_priority="high"),
            SourceType.DELIVERABLE,
            now=NOW,
        )
        assert item.urgency == Urgency.MEDIUM

    def test_blocked_deliverable_is_blocking(self) -> None:
        """Blocked status marks the item blocking."""
        item = normalize_record(
            deliverable_record("d1", status="blocked"), SourceType.DELIVERABLE, now=NOW
        )
        assert item.blocking is True
        assert item.entity.project_id == "proj-1"

    def test_recent_rating_change_is_medium(self) -> None:
        """Rating changes within a week are MEDIUM, older ones LOW."""
        recent = normalize_record(
            record("r1", age_days=2), SourceType.RATING_CHANGE, now=NOW
        )
        old = normalize_record(
            record("r2", age_days=30), SourceType.RATING_CHANGE, now=NOW
        )
        assert recent.urgency == Urgency.MEDIUM
        assert old.urgency == Urgency.LOW

    def test_stale_research_measured_from_thesis_update(self) -> None:
        """Staleness is measured from the thesis update, not record creation."""
        item = normalize_record(
            record(
                "s1",
                age_days=1,
                thesis_updated_at=days_ago(200).isoformat(),
            ),
            SourceType.STALE_RESEARCH,
            now=NOW,
        )
        assert item.age_days == 200
        assert item.urgency == Urgency.HIGH

    def test_stale_research_medium(self) -> None:
        """Ninety days without an update is MEDIUM."""
        item = normalize_record(
            record("s1", thesis_updated_at=days_ago(95).isoformat()),
            SourceType.STALE_RESEARCH,
            now=NOW,
        )
        assert item.urgency == Urgency.MEDIUM


class TestMalformedRecords:
    """Bad records are skipped individually."""

    def test_missing_field_raises_for_single_record(self) -> None:
        """normalize_record raises RecordValidationError."""
        bad = record("x1")
        del bad["created_at"]
        with pytest.raises(RecordValidationError) as exc_info:
            normalize_record(bad, SourceType.IDEA, now=NOW)
        assert exc_info.value.record_id == "x1"

    def test_unparsable_timestamp_raises(self) -> None:
        """An unparsable timestamp is a validation error."""
        bad = record("x1", created_at="not-a-date")
        with pytest.raises(RecordValidationError):
            normalize_record(bad, SourceType.IDEA, now=NOW)

    def test_batch_skips_bad_records(self, caplog: pytest.LogCaptureFixture) -> None:
        """The batch keeps good records and logs a warning per bad one."""
        bad_missing = record("x1")
        del bad_missing["entity_id"]
        records = [
            idea_record("i1"),
            bad_missing,
            "not a mapping",
            record("x2", updated_at=42),
            idea_record("i2"),
        ]
        skipped: list[RecordValidationError] = []

        with caplog.at_level(logging.WARNING):
            items = normalize(records, SourceType.IDEA, now=NOW, on_skip=skipped.append)

        assert [i.item_id for i in items] == ["idea:i1", "idea:i2"]
        assert len(skipped) == 3
        assert sum("Skipping record" in r.message for r in caplog.records) == 3

    def test_follow_up_has_no_raw_format(self) -> None:
        """Follow-ups are derived and cannot be normalized from raw records."""
        items = normalize([record("f1")], SourceType.FOLLOWUP, now=NOW)
        assert items == []
