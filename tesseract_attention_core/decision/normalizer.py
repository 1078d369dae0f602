"""Raw source record normalization.

This module answers: "What does this raw record look like as an
AttentionItem, and how urgent is it?"

Each source supplies plain mappings. Every record must carry ``id``,
``entity_id``, ``created_at`` and ``updated_at``; the rest of the payload is
source specific:

- idea: ``stage``, ``action``, ``asset_symbol``, ``portfolio_id``,
  ``portfolio_name``, ``pair_id`` (or legacy ``pair_trade_id``), ``urgency``
- proposal: ``trade_idea_id``, ``asset_symbol``, ``portfolio_id``,
  ``portfolio_name``
- deliverable: ``due_date``, ``status``, ``project_id``, ``project_priority``
- rating-change: ``asset_symbol``, ``previous_rating``, ``new_rating``
- stale-research: ``asset_symbol``, ``thesis_updated_at``

Key properties:
- Pure, deterministic given ``now``
- Urgency cascades are ordered (predicate, urgency) rule records
- Malformed records are skipped individually, never abort the batch
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from ..config import DEFAULT_CONFIG, FeedConfig
from ..errors import RecordValidationError
from ..models import AttentionItem, EntityContext, LegRole, SourceType, Urgency

_LOGGER = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("id", "entity_id", "created_at", "updated_at")

_SECONDS_PER_DAY = 86400.0

BUY_ACTIONS = frozenset({"buy", "add"})
SELL_ACTIONS = frozenset({"sell", "trim"})


# --------------------------------------------------------------------------
# Urgency rules
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class UrgencyRule:
    """One step of a source's urgency cascade.

    Attributes:
        name: Rule name (for tracing and tests).
        predicate: Pure test over a partially built item and its record.
        urgency: Urgency assigned when the predicate holds.
    """

    name: str
    predicate: Callable[[AttentionItem, Mapping[str, Any]], bool]
    urgency: Urgency


def _explicit(record: Mapping[str, Any]) -> str:
    value = record.get("urgency")
    return value.lower() if isinstance(value, str) else ""


def build_urgency_rules(
    config: FeedConfig = DEFAULT_CONFIG,
) -> dict[SourceType, tuple[UrgencyRule, ...]]:
    """Build the per-source urgency cascades from configuration.

    The first matching rule wins; a source with no match is LOW.
    """
    decision = config.decision
    research = config.research
    deliverable = config.deliverable

    def deciding(item: AttentionItem) -> bool:
        return item.stage == "deciding"

    return {
        SourceType.IDEA: (
            UrgencyRule(
                "explicit_urgent",
                lambda i, r: _explicit(r) == "urgent",
                Urgency.CRITICAL,
            ),
            UrgencyRule(
                "deciding_overdue",
                lambda i, r: deciding(i) and i.age_days >= decision.high_days,
                Urgency.HIGH,
            ),
            UrgencyRule(
                "deciding_aging",
                lambda i, r: deciding(i) and i.age_days >= decision.med_days,
                Urgency.MEDIUM,
            ),
            UrgencyRule(
                "explicit_high", lambda i, r: _explicit(r) == "high", Urgency.HIGH
            ),
            UrgencyRule(
                "explicit_medium",
                lambda i, r: _explicit(r) == "medium",
                Urgency.MEDIUM,
            ),
        ),
        SourceType.PROPOSAL: (
            UrgencyRule(
                "pending_overdue",
                lambda i, r: i.age_days >= decision.high_days,
                Urgency.HIGH,
            ),
            UrgencyRule(
                "pending_aging",
                lambda i, r: i.age_days >= decision.med_days,
                Urgency.MEDIUM,
            ),
        ),
        SourceType.DELIVERABLE: (
            UrgencyRule("overdue", lambda i, r: i.overdue, Urgency.HIGH),
            UrgencyRule(
                "project_urgent",
                lambda i, r: r.get("project_priority") == "urgent",
                Urgency.HIGH,
            ),
            UrgencyRule(
                "due_imminent",
                lambda i, r: i.due_in_days is not None
                and i.due_in_days <= deliverable.urgent_days,
                Urgency.MEDIUM,
            ),
            UrgencyRule(
                "project_high",
                lambda i, r: r.get("project_priority") == "high",
                Urgency.MEDIUM,
            ),
        ),
        SourceType.RATING_CHANGE: (
            UrgencyRule(
                "recent_change",
                lambda i, r: i.age_days <= research.rating_recent_days,
                Urgency.MEDIUM,
            ),
        ),
        SourceType.STALE_RESEARCH: (
            UrgencyRule(
                "thesis_very_stale",
                lambda i, r: i.age_days >= research.thesis_high_days,
                Urgency.HIGH,
            ),
            UrgencyRule(
                "thesis_stale",
                lambda i, r: i.age_days >= research.thesis_med_days,
                Urgency.MEDIUM,
            ),
        ),
    }


def classify_urgency(
    item: AttentionItem,
    record: Mapping[str, Any],
    rules: Iterable[UrgencyRule],
) -> Urgency:
    """Return the urgency of the first matching rule (LOW if none match)."""
    for rule in rules:
        if rule.predicate(item, record):
            return rule.urgency
    return Urgency.LOW


# --------------------------------------------------------------------------
# Field parsing
# --------------------------------------------------------------------------


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Naive values are treated as UTC.

    Raises:
        ValueError: If the value is not a datetime or parsable string.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"expected timestamp, got {type(value).__name__}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Floor of elapsed days from start to end, clamped at zero."""
    elapsed = (end - start).total_seconds() / _SECONDS_PER_DAY
    return max(0, math.floor(elapsed))


def leg_role_for(action: Any) -> LegRole | None:
    """Map a trade action to its pair leg side."""
    if not isinstance(action, str):
        return None
    normalized = action.lower()
    if normalized in BUY_ACTIONS:
        return LegRole.BUY
    if normalized in SELL_ACTIONS:
        return LegRole.SELL
    return None


def _optional_str(record: Mapping[str, Any], key: str) -> str | None:
    value = record.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _validate(record: Any) -> str:
    """Check required fields and return the record id."""
    if not isinstance(record, Mapping):
        raise RecordValidationError(None, "record is not a mapping")
    record_id = record.get("id")
    for key in _REQUIRED_FIELDS:
        if record.get(key) in (None, ""):
            raise RecordValidationError(record_id, f"missing required field '{key}'")
    if not isinstance(record_id, (str, int)) or isinstance(record_id, bool):
        raise RecordValidationError(record_id, "field 'id' must be a string or int")
    return str(record_id)


# --------------------------------------------------------------------------
# Per-source builders
# --------------------------------------------------------------------------


def _base_item(
    source_type: SourceType,
    record: Mapping[str, Any],
    record_id: str,
    entity: EntityContext,
    now: datetime,
    age_from: datetime | None = None,
) -> AttentionItem:
    created_at = parse_timestamp(record["created_at"])
    updated_at = parse_timestamp(record["updated_at"])
    return AttentionItem(
        item_id=f"{source_type.value}:{record_id}",
        source_type=source_type,
        entity=entity,
        title=str(record.get("title") or ""),
        detail=str(record.get("detail") or ""),
        created_at=created_at,
        updated_at=updated_at,
        age_days=whole_days_between(age_from or created_at, now),
    )


def _asset_entity(record: Mapping[str, Any]) -> EntityContext:
    return EntityContext(
        asset_id=str(record["entity_id"]),
        asset_label=_optional_str(record, "asset_symbol"),
        portfolio_id=_optional_str(record, "portfolio_id"),
        portfolio_name=_optional_str(record, "portfolio_name"),
    )


def _keys(*ids: str | None) -> frozenset[str]:
    return frozenset(i for i in ids if i)


def _build_idea(
    record: Mapping[str, Any], record_id: str, now: datetime
) -> AttentionItem:
    entity = _asset_entity(record)
    item = _base_item(SourceType.IDEA, record, record_id, entity, now)
    stage = _optional_str(record, "stage")
    action = _optional_str(record, "action")
    pair_key = _optional_str(record, "pair_id") or _optional_str(
        record, "pair_trade_id"
    )
    title = item.title
    if not title:
        parts = [p for p in (action and action.upper(), entity.asset_label) if p]
        title = " ".join(parts) or "Trade idea"
    return replace(
        item,
        title=title,
        stage=stage,
        requires_decision=stage == "deciding",
        pair_key=pair_key,
        leg_role=leg_role_for(action),
        underlying_id=record_id,
        dedupe_keys=_keys(record_id),
        cta_label="Review idea",
        cta_action="open_idea",
    )


def _build_proposal(
    record: Mapping[str, Any], record_id: str, now: datetime
) -> AttentionItem:
    entity = _asset_entity(record)
    item = _base_item(SourceType.PROPOSAL, record, record_id, entity, now)
    underlying = _optional_str(record, "trade_idea_id")
    return replace(
        item,
        title=item.title or f"Proposal pending: {entity.asset_label or record_id}",
        requires_decision=True,
        underlying_id=underlying,
        dedupe_keys=_keys(underlying),
        cta_label="Review proposal",
        cta_action="open_proposal",
    )


def _build_deliverable(
    record: Mapping[str, Any], record_id: str, now: datetime
) -> AttentionItem:
    entity = EntityContext(
        asset_id=_optional_str(record, "asset_id"),
        portfolio_id=_optional_str(record, "portfolio_id"),
        portfolio_name=_optional_str(record, "portfolio_name"),
        project_id=_optional_str(record, "project_id") or str(record["entity_id"]),
    )
    item = _base_item(SourceType.DELIVERABLE, record, record_id, entity, now)
    due_at = None
    due_in_days = None
    raw_due = record.get("due_date")
    if raw_due not in (None, ""):
        due_at = parse_timestamp(raw_due)
        due_in_days = (due_at - now).total_seconds() / _SECONDS_PER_DAY
    underlying = _optional_str(record, "underlying_id")
    return replace(
        item,
        title=item.title or "Deliverable",
        due_at=due_at,
        due_in_days=due_in_days,
        overdue=due_at is not None and due_at < now,
        blocking=record.get("status") == "blocked",
        underlying_id=underlying,
        dedupe_keys=_keys(underlying),
        cta_label="Open project",
        cta_action="open_project",
    )


def _build_rating_change(
    record: Mapping[str, Any], record_id: str, now: datetime
) -> AttentionItem:
    entity = _asset_entity(record)
    item = _base_item(SourceType.RATING_CHANGE, record, record_id, entity, now)
    previous = _optional_str(record, "previous_rating")
    new = _optional_str(record, "new_rating")
    title = item.title
    if not title:
        label = entity.asset_label or entity.asset_id
        title = f"{label} rating changed"
        if previous and new:
            title = f"{label} rating {previous} to {new}"
    underlying = _optional_str(record, "underlying_id")
    return replace(
        item,
        title=title,
        underlying_id=underlying,
        dedupe_keys=_keys(underlying),
        cta_label="View rating",
        cta_action="open_rating",
    )


def _build_stale_research(
    record: Mapping[str, Any], record_id: str, now: datetime
) -> AttentionItem:
    entity = _asset_entity(record)
    thesis_at = record.get("thesis_updated_at") or record["updated_at"]
    item = _base_item(
        SourceType.STALE_RESEARCH,
        record,
        record_id,
        entity,
        now,
        age_from=parse_timestamp(thesis_at),
    )
    label = entity.asset_label or entity.asset_id
    underlying = _optional_str(record, "underlying_id")
    return replace(
        item,
        title=item.title or f"{label} thesis not updated in {item.age_days}d",
        underlying_id=underlying,
        dedupe_keys=_keys(underlying),
        cta_label="Update thesis",
        cta_action="update_thesis",
    )


_BUILDERS: dict[
    SourceType, Callable[[Mapping[str, Any], str, datetime], AttentionItem]
] = {
    SourceType.IDEA: _build_idea,
    SourceType.PROPOSAL: _build_proposal,
    SourceType.DELIVERABLE: _build_deliverable,
    SourceType.RATING_CHANGE: _build_rating_change,
    SourceType.STALE_RESEARCH: _build_stale_research,
}


# --------------------------------------------------------------------------
# Public API
# --------------------------------------------------------------------------


def normalize_record(
    record: Any,
    source_type: SourceType,
    *,
    now: datetime,
    rules: Mapping[SourceType, tuple[UrgencyRule, ...]] | None = None,
) -> AttentionItem:
    """Normalize a single raw record.

    Args:
        record: Raw record mapping.
        source_type: Source the record came from.
        now: Reference time for age and due computations.
        rules: Urgency cascades (defaults to the built-in tuning).

    Returns:
        The canonical item with urgency assigned.

    Raises:
        RecordValidationError: If the record is malformed.
    """
    builder = _BUILDERS.get(source_type)
    if builder is None:
        raise RecordValidationError(
            None, f"source '{source_type.value}' has no raw record format"
        )
    record_id = _validate(record)
    try:
        item = builder(record, record_id, parse_timestamp(now))
    except (KeyError, TypeError, ValueError) as err:
        raise RecordValidationError(record_id, str(err)) from err

    cascade = (rules if rules is not None else build_urgency_rules()).get(
        source_type, ()
    )
    return replace(item, urgency=classify_urgency(item, record, cascade))


def normalize(
    records: Iterable[Any],
    source_type: SourceType,
    *,
    now: datetime,
    config: FeedConfig = DEFAULT_CONFIG,
    on_skip: Callable[[RecordValidationError], None] | None = None,
) -> list[AttentionItem]:
    """Normalize a batch of raw records from one source.

    Malformed records are logged and skipped; the rest of the batch is
    still returned.

    Args:
        records: Raw record mappings.
        source_type: Source the records came from.
        now: Reference time for age and due computations.
        config: Thresholds for the urgency cascades.
        on_skip: Optional callback for each skipped record.

    Returns:
        Normalized items in input order.
    """
    rules = build_urgency_rules(config)
    items: list[AttentionItem] = []
    for record in records:
        try:
            items.append(normalize_record(record, source_type, now=now, rules=rules))
        except RecordValidationError as err:
            _LOGGER.warning(
                "[%s] Skipping record %s: %s",
                source_type.value,
                err.record_id,
                err,
            )
            if on_skip is not None:
                on_skip(err)
    return items
