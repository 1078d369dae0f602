"""Time-boxed suppression of items and follow-ups.

Two distinct scopes share one record shape but never one key space:

- Item snooze: arbitrary duration, per owner and view, usually session-local
- Follow-up suppression: fixed window per (entity, follow-up type), usually
  backed by durable storage

Key properties:
- Lazy expiry: a record with suppressed_until <= now is inert
- Last-write-wins per key, writes are serialized by the backend
- A failed write is reported, never assumed to have succeeded
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

from .config import DEFAULT_CONFIG
from .errors import SuppressionWriteError
from .models import FollowupType, SnoozeResult

_LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# --------------------------------------------------------------------------
# Keys and records
# --------------------------------------------------------------------------


class SuppressionKind(str, Enum):
    """Which suppression scope a key belongs to."""

    ITEM = "item"
    FOLLOWUP = "followup"


@dataclass(frozen=True)
class ScopeKey:
    """Identity of one suppression record.

    Attributes:
        kind: Item snooze or follow-up suppression.
        owner_id: User who owns the suppression.
        entity_id: Entity scope (follow-ups only).
        target: Item id or follow-up type value.
        view_scope: Optional view (e.g., viewing another user's dashboard).
    """

    kind: SuppressionKind
    owner_id: str
    entity_id: str | None
    target: str
    view_scope: str | None = None


@dataclass(frozen=True)
class SuppressionRecord:
    """A persisted suppression window."""

    key: ScopeKey
    suppressed_until: datetime

    def is_active(self, now: datetime) -> bool:
        """Whether the window is still open at ``now``."""
        return self.suppressed_until > now


class SuppressionBackend(Protocol):
    """Storage for suppression records.

    Implementations must make ``upsert`` atomic per key so concurrent
    writers converge to one record. Write failures raise
    SuppressionWriteError.
    """

    def get(self, key: ScopeKey) -> SuppressionRecord | None:
        """Return the record for ``key``, if any."""
        ...

    def upsert(self, key: ScopeKey, until: datetime) -> SuppressionRecord:
        """Create or replace the record for ``key``."""
        ...


class InMemorySuppressionBackend:
    """Lock-protected in-process backend (last write wins)."""

    def __init__(self) -> None:
        self._records: dict[ScopeKey, SuppressionRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: ScopeKey) -> SuppressionRecord | None:
        """Return the record for ``key``, if any."""
        with self._lock:
            return self._records.get(key)

    def upsert(self, key: ScopeKey, until: datetime) -> SuppressionRecord:
        """Create or replace the record for ``key``."""
        record = SuppressionRecord(key=key, suppressed_until=until)
        with self._lock:
            self._records[key] = record
        return record

    def prune(self, now: datetime) -> int:
        """Physically drop expired records. Returns how many were removed."""
        with self._lock:
            expired = [k for k, r in self._records.items() if not r.is_active(now)]
            for key in expired:
                del self._records[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# --------------------------------------------------------------------------
# Store
# --------------------------------------------------------------------------


class SuppressionStore:
    """Reads and writes suppression windows through a backend."""

    def __init__(
        self,
        backend: SuppressionBackend | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend: SuppressionBackend = backend or InMemorySuppressionBackend()
        self._clock = clock

    @property
    def backend(self) -> SuppressionBackend:
        """The underlying backend."""
        return self._backend

    def is_suppressed(self, key: ScopeKey, now: datetime | None = None) -> bool:
        """Whether ``key`` has an open suppression window at ``now``."""
        record = self._backend.get(key)
        if record is None:
            return False
        return record.is_active(now or self._clock())

    def snooze(
        self,
        key: ScopeKey,
        duration_hours: float,
        now: datetime | None = None,
    ) -> SnoozeResult:
        """Open a suppression window of ``duration_hours`` starting at ``now``.

        Returns:
            SnoozeResult; ``applied`` is False if the duration is invalid or
            the backend failed to persist the record.
        """
        if duration_hours <= 0:
            return SnoozeResult(
                applied=False,
                target=key.target,
                error="duration must be positive",
            )

        start = now or self._clock()
        until = start + timedelta(hours=duration_hours)
        try:
            record = self._backend.upsert(key, until)
        except SuppressionWriteError as err:
            _LOGGER.error(
                "[%s] Failed to suppress %s: %s", key.kind.value, key.target, err
            )
            return SnoozeResult(applied=False, target=key.target, error=str(err))

        _LOGGER.debug(
            "[%s] Suppressed %s until %s",
            key.kind.value,
            key.target,
            record.suppressed_until.isoformat(),
        )
        return SnoozeResult(
            applied=True,
            target=key.target,
            suppressed_until=record.suppressed_until,
        )


class ItemSnoozeStore:
    """Per-item snooze with caller-chosen durations."""

    def __init__(
        self,
        owner_id: str,
        store: SuppressionStore | None = None,
        view_scope: str | None = None,
    ) -> None:
        self.owner_id = owner_id
        self.view_scope = view_scope
        self._store = store or SuppressionStore()

    def key(self, item_id: str) -> ScopeKey:
        """Scope key for an item."""
        return ScopeKey(
            kind=SuppressionKind.ITEM,
            owner_id=self.owner_id,
            entity_id=None,
            target=item_id,
            view_scope=self.view_scope,
        )

    def is_snoozed(self, item_id: str, now: datetime | None = None) -> bool:
        """Whether the item is currently snoozed."""
        return self._store.is_suppressed(self.key(item_id), now)

    def snooze(
        self, item_id: str, hours: float, now: datetime | None = None
    ) -> SnoozeResult:
        """Snooze an item for ``hours``."""
        return self._store.snooze(self.key(item_id), hours, now)


class FollowupSuppressionStore:
    """Fixed-window suppression per (entity, follow-up type)."""

    def __init__(
        self,
        owner_id: str,
        store: SuppressionStore | None = None,
        view_scope: str | None = None,
        window_hours: float = DEFAULT_CONFIG.followup.suppression_hours,
    ) -> None:
        self.owner_id = owner_id
        self.view_scope = view_scope
        self.window_hours = window_hours
        self._store = store or SuppressionStore()

    def key(self, entity_id: str, followup_type: FollowupType) -> ScopeKey:
        """Scope key for a follow-up type on an entity."""
        return ScopeKey(
            kind=SuppressionKind.FOLLOWUP,
            owner_id=self.owner_id,
            entity_id=entity_id,
            target=followup_type.value,
            view_scope=self.view_scope,
        )

    def is_suppressed(
        self,
        entity_id: str,
        followup_type: FollowupType,
        now: datetime | None = None,
    ) -> bool:
        """Whether the follow-up type is suppressed for the entity."""
        return self._store.is_suppressed(self.key(entity_id, followup_type), now)

    def suppress(
        self,
        entity_id: str,
        followup_type: FollowupType,
        now: datetime | None = None,
    ) -> SnoozeResult:
        """Suppress the follow-up type for the fixed window."""
        return self._store.snooze(
            self.key(entity_id, followup_type), self.window_hours, now
        )


@dataclass
class SuppressionState:
    """Both suppression scopes for one owner, as the feed composer reads them."""

    items: ItemSnoozeStore
    followups: FollowupSuppressionStore

    @classmethod
    def in_memory(
        cls,
        owner_id: str,
        view_scope: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> SuppressionState:
        """Build a state with separate in-memory backends for each scope."""
        return cls(
            items=ItemSnoozeStore(
                owner_id, SuppressionStore(clock=clock), view_scope
            ),
            followups=FollowupSuppressionStore(
                owner_id, SuppressionStore(clock=clock), view_scope
            ),
        )
