"""Raw record sources for the attention feed.

Each source is an adapter that returns a list of raw record mappings. The
feed core never queries storage itself; adapters are the only I/O.

Key properties:
- Sources are fetched concurrently; one failing source never fails the feed
- A failed source contributes no records and is reported in failed_sources
- The read-through cache is injected, never module-global
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import aiohttp

from .config import DEFAULT_CONFIG, FeedConfig
from .errors import SourceFetchError, SourceResponseError, SourceTimeout
from .models import SourceType

_LOGGER = logging.getLogger(__name__)

RawRecord = Mapping[str, Any]
CacheKey = tuple[str, tuple[tuple[str, str], ...]]

# Envelope keys accepted around a JSON record list.
_ENVELOPE_KEYS = ("records", "items", "data")


# --------------------------------------------------------------------------
# Adapters
# --------------------------------------------------------------------------


class SourceAdapter(ABC):
    """A source of raw records for one source type."""

    source_type: SourceType

    @property
    def params(self) -> Mapping[str, str]:
        """Query parameters identifying this fetch (part of the cache key)."""
        return {}

    @abstractmethod
    async def fetch(self) -> list[RawRecord]:
        """Fetch raw records.

        Raises:
            SourceFetchError: If the source could not be read.
        """


class StaticSourceAdapter(SourceAdapter):
    """Adapter over an in-memory list of records (tests, fixtures, replays)."""

    def __init__(self, source_type: SourceType, records: Iterable[RawRecord]) -> None:
        self.source_type = source_type
        self._records = list(records)

    async def fetch(self) -> list[RawRecord]:
        """Return a copy of the configured records."""
        return list(self._records)


class HttpSourceAdapter(SourceAdapter):
    """Fetches raw records as JSON over HTTP.

    The endpoint must return either a JSON list of records or an object
    wrapping the list under ``records``, ``items`` or ``data``. The request
    timeout defaults to ``config.feed.source_timeout_seconds``.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        path: str,
        source_type: SourceType,
        *,
        token: str | None = None,
        params: Mapping[str, str] | None = None,
        timeout: float | None = None,
        config: FeedConfig = DEFAULT_CONFIG,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._path = path if path.startswith("/") else f"/{path}"
        self._token = token
        self._params = dict(params or {})
        self._timeout = (
            config.feed.source_timeout_seconds if timeout is None else timeout
        )
        self.source_type = source_type

    @property
    def url(self) -> str:
        """Full endpoint URL."""
        return f"{self._base_url}{self._path}"

    @property
    def params(self) -> Mapping[str, str]:
        """Query parameters sent with each request."""
        return dict(self._params)

    def _auth_headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def fetch(self) -> list[RawRecord]:
        """GET the endpoint and return its records.

        Raises:
            SourceResponseError: If the endpoint returns non-200 or an
                unexpected payload shape.
            SourceTimeout: If the request times out.
            SourceFetchError: If the network request fails.
        """
        try:
            async with self._session.get(
                self.url,
                headers=self._auth_headers(),
                params=self._params,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status != 200:
                    raise SourceResponseError(
                        resp.status,
                        f"{self.source_type.value} source returned {resp.status}",
                    )
                payload = await resp.json()
        except TimeoutError as err:
            raise SourceTimeout(
                f"{self.source_type.value} source request timed out"
            ) from err
        except aiohttp.ClientError as err:
            raise SourceFetchError(
                f"{self.source_type.value} source request failed"
            ) from err

        return _unwrap_records(payload, self.source_type)


def _unwrap_records(payload: Any, source_type: SourceType) -> list[RawRecord]:
    if isinstance(payload, Mapping):
        for key in _ENVELOPE_KEYS:
            if key in payload:
                payload = payload[key]
                break
    if not isinstance(payload, list):
        raise SourceResponseError(
            200, f"{source_type.value} source returned an unexpected payload"
        )
    return payload


# --------------------------------------------------------------------------
# Cache
# --------------------------------------------------------------------------


class ReadThroughCache:
    """TTL cache for source fetches keyed by (source, params).

    Only successful fetches are cached. Expired entries are replaced on the
    next read. A TTL of zero or less disables caching.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, list[RawRecord]]] = {}

    @classmethod
    def from_config(
        cls,
        config: FeedConfig = DEFAULT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ) -> ReadThroughCache:
        """Cache using ``config.feed.cache_ttl_seconds``."""
        return cls(config.feed.cache_ttl_seconds, clock)

    @property
    def ttl_seconds(self) -> float:
        """Entry lifetime in seconds."""
        return self._ttl

    @staticmethod
    def key_for(adapter: SourceAdapter) -> CacheKey:
        """Cache key for an adapter's fetch."""
        return (adapter.source_type.value, tuple(sorted(adapter.params.items())))

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Awaitable[list[RawRecord]]],
    ) -> list[RawRecord]:
        """Return cached records for ``key`` or fetch and cache them."""
        if self._ttl <= 0:
            return await fetch()
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None and entry[0] > now:
            return list(entry[1])

        records = await fetch()
        self._entries[key] = (self._clock() + self._ttl, list(records))
        return records

    def invalidate(self, source_type: SourceType | None = None) -> None:
        """Drop cached entries (all, or for one source)."""
        if source_type is None:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k[0] == source_type.value]:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


# --------------------------------------------------------------------------
# Fan-out
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class SourceBatch:
    """Records gathered from every source for one build.

    Attributes:
        records: Raw records per source type (empty for failed sources).
        failed_sources: Sources that failed to load.
    """

    records: dict[SourceType, list[RawRecord]] = field(default_factory=lambda: {})
    failed_sources: tuple[SourceType, ...] = ()

    @property
    def partial(self) -> bool:
        """Whether any source failed."""
        return bool(self.failed_sources)


async def _fetch_one(
    adapter: SourceAdapter, cache: ReadThroughCache | None
) -> list[RawRecord]:
    if cache is None:
        return await adapter.fetch()
    return await cache.get_or_fetch(ReadThroughCache.key_for(adapter), adapter.fetch)


async def fetch_all_sources(
    adapters: Sequence[SourceAdapter],
    cache: ReadThroughCache | None = None,
) -> SourceBatch:
    """Fetch every source concurrently.

    A source that raises SourceFetchError is logged, recorded as failed and
    contributes an empty list. Any other exception propagates.

    Args:
        adapters: Source adapters to fetch.
        cache: Optional read-through cache.

    Returns:
        SourceBatch with per-source records and the failed sources.
    """
    results = await asyncio.gather(
        *(_fetch_one(adapter, cache) for adapter in adapters),
        return_exceptions=True,
    )

    records: dict[SourceType, list[RawRecord]] = {}
    failed: list[SourceType] = []
    for adapter, result in zip(adapters, results, strict=True):
        bucket = records.setdefault(adapter.source_type, [])
        if isinstance(result, SourceFetchError):
            _LOGGER.warning(
                "[%s] Source failed, continuing without it: %s",
                adapter.source_type.value,
                result,
            )
            failed.append(adapter.source_type)
            continue
        if isinstance(result, BaseException):
            raise result
        bucket.extend(result)

    return SourceBatch(
        records=records,
        failed_sources=tuple(sorted(set(failed), key=lambda s: s.value)),
    )
