"""Pytest configuration and fixtures for tesseract_attention_core tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tesseract_attention_core.suppression import SuppressionState

# Fixed reference time for every build in the suite.
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def days_ago(days: float) -> datetime:
    """Timestamp ``days`` before NOW."""
    return NOW - timedelta(days=days)


def days_ahead(days: float) -> datetime:
    """Timestamp ``days`` after NOW."""
    return NOW + timedelta(days=days)


def idea_record(
    record_id: str,
    *,
    entity_id: str = "asset-1",
    symbol: str = "AAPL",
    stage: str = "idea",
    action: str = "buy",
    age_days: float = 0,
    **extra: Any,
) -> dict[str, Any]:
    """Build a raw trade idea record."""
    created = days_ago(age_days)
    record = {
        "id": record_id,
        "entity_id": entity_id,
        "asset_symbol": symbol,
        "stage": stage,
        "action": action,
        "created_at": created.isoformat(),
        "updated_at": created.isoformat(),
    }
    record.update(extra)
    return record


def deliverable_record(
    record_id: str,
    *,
    project_id: str = "proj-1",
    due_in_days: float | None = None,
    age_days: float = 1,
    **extra: Any,
) -> dict[str, Any]:
    """Build a raw project deliverable record."""
    created = days_ago(age_days)
    record: dict[str, Any] = {
        "id": record_id,
        "entity_id": project_id,
        "project_id": project_id,
        "title": f"Deliverable {record_id}",
        "status": "in_progress",
        "created_at": created.isoformat(),
        "updated_at": created.isoformat(),
    }
    if due_in_days is not None:
        record["due_date"] = days_ahead(due_in_days).isoformat()
    record.update(extra)
    return record


def record(
    record_id: str,
    *,
    entity_id: str = "asset-1",
    age_days: float = 0,
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal raw record for any source."""
    created = days_ago(age_days)
    base = {
        "id": record_id,
        "entity_id": entity_id,
        "created_at": created.isoformat(),
        "updated_at": created.isoformat(),
    }
    base.update(extra)
    return base


@pytest.fixture
def now() -> datetime:
    """Fixed reference time."""
    return NOW


@pytest.fixture
def suppression() -> SuppressionState:
    """Empty in-memory suppression state for one owner."""
    return SuppressionState.in_memory("user-1", clock=lambda: NOW)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response
