"""Attention feed service.

Wires source adapters, the feed composer and the suppression stores into
the operations a dashboard calls: refresh, snooze, suppress a follow-up and
mark an item done.

Every refresh rebuilds the feed from scratch. Each refresh is tagged with a
generation number; a refresh superseded by a newer one before it finishes
returns None and never overwrites the newer view.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

import aiohttp

from .config import DEFAULT_CONFIG, FeedConfig
from .errors import AttentionFeedError
from .feed import EntityContextResolver, build_feed
from .models import (
    ActionResult,
    EntitySignals,
    FeedFilters,
    FeedView,
    FollowupType,
    SnoozeResult,
)
from .sources import ReadThroughCache, SourceAdapter, fetch_all_sources
from .suppression import SuppressionState, utcnow
from .trace_emitter import TraceConfig, TraceEmitter

_LOGGER = logging.getLogger(__name__)

MarkDoneHandler = Callable[[str], Awaitable[None]]


class AttentionFeedService:
    """Stateful front for one owner's attention feed.

    Without an explicit cache, sources are read through a cache whose TTL is
    ``config.feed.cache_ttl_seconds`` (zero disables it).
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        suppression: SuppressionState,
        *,
        config: FeedConfig = DEFAULT_CONFIG,
        cache: ReadThroughCache | None = None,
        resolver: EntityContextResolver | None = None,
        mark_done_handler: MarkDoneHandler | None = None,
        clock: Callable[[], datetime] = utcnow,
        trace_emitter: TraceEmitter | None = None,
        trace_config: TraceConfig | None = None,
    ) -> None:
        self._adapters = list(adapters)
        self._suppression = suppression
        self._config = config
        self._cache = (
            cache if cache is not None else ReadThroughCache.from_config(config)
        )
        self._resolver = resolver
        self._mark_done_handler = mark_done_handler
        self._clock = clock
        self._trace_emitter = trace_emitter
        self._trace_config = trace_config
        self._generation = 0
        self._view: FeedView | None = None

    @property
    def view(self) -> FeedView | None:
        """The most recently completed, non-superseded view."""
        return self._view

    @property
    def cache(self) -> ReadThroughCache:
        """Read-through cache shared by every refresh."""
        return self._cache

    @property
    def generation(self) -> int:
        """Generation number of the most recently started refresh."""
        return self._generation

    async def refresh(
        self,
        filters: FeedFilters | None = None,
        followup_inputs: Sequence[EntitySignals] = (),
    ) -> FeedView | None:
        """Fetch all sources and rebuild the feed.

        Args:
            filters: Context filters for this view.
            followup_inputs: Follow-up signals per entity.

        Returns:
            The new view, or None if a newer refresh started before this
            one finished.
        """
        self._generation += 1
        generation = self._generation

        batch = await fetch_all_sources(self._adapters, self._cache)

        if generation != self._generation:
            _LOGGER.debug(
                "[feed] Build %d superseded by %d, discarding",
                generation,
                self._generation,
            )
            return None

        view = build_feed(
            batch.records,
            followup_inputs,
            filters,
            self._suppression,
            now=self._clock(),
            config=self._config,
            resolver=self._resolver,
            failed_sources=batch.failed_sources,
            trace_emitter=self._trace_emitter,
            trace_config=self._trace_config,
            generation=generation,
        )
        self._view = view
        return view

    def snooze(self, item_id: str, hours: float) -> SnoozeResult:
        """Hide an item for ``hours``. Takes effect on the next refresh."""
        return self._suppression.items.snooze(item_id, hours, self._clock())

    def suppress_followup(
        self, entity_id: str, followup_type: FollowupType
    ) -> SnoozeResult:
        """Suppress a follow-up type for an entity for the fixed window."""
        return self._suppression.followups.suppress(
            entity_id, followup_type, self._clock()
        )

    async def mark_done(self, item_id: str) -> ActionResult:
        """Delegate completion of an item to the injected handler."""
        if self._mark_done_handler is None:
            return ActionResult(
                ok=False, item_id=item_id, error="no mark-done handler configured"
            )
        try:
            await self._mark_done_handler(item_id)
        except (AttentionFeedError, aiohttp.ClientError, TimeoutError) as err:
            _LOGGER.warning("[%s] Mark done failed: %s", item_id, err)
            return ActionResult(ok=False, item_id=item_id, error=str(err))
        return ActionResult(ok=True, item_id=item_id)
