"""Core attention feed engine for Tesseract dashboards.

Owned by the Tesseract Attention Core team.
"""

__version__ = "0.1.0"

from .config import FeedConfig, load_config
from .errors import (
    AttentionFeedError,
    ConfigLoadError,
    RecordValidationError,
    SourceFetchError,
    SourceResponseError,
    SourceTimeout,
    SuppressionWriteError,
)
from .feed import EntityContextResolver, build_feed
from .models import (
    ActionResult,
    AttentionItem,
    Band,
    BandSummary,
    DecisionSignal,
    EntityContext,
    EntitySignals,
    FeedFilters,
    FeedView,
    FollowupItem,
    FollowupType,
    PrimaryInsight,
    SnoozeResult,
    SourceType,
    Urgency,
)
from .service import AttentionFeedService
from .sources import (
    HttpSourceAdapter,
    ReadThroughCache,
    SourceAdapter,
    StaticSourceAdapter,
    fetch_all_sources,
)
from .suppression import (
    FollowupSuppressionStore,
    InMemorySuppressionBackend,
    ItemSnoozeStore,
    ScopeKey,
    SuppressionState,
    SuppressionStore,
)

__all__ = [
    "ActionResult",
    "AttentionFeedError",
    "AttentionFeedService",
    "AttentionItem",
    "Band",
    "BandSummary",
    "ConfigLoadError",
    "DecisionSignal",
    "EntityContext",
    "EntityContextResolver",
    "EntitySignals",
    "FeedConfig",
    "FeedFilters",
    "FeedView",
    "FollowupItem",
    "FollowupSuppressionStore",
    "FollowupType",
    "HttpSourceAdapter",
    "InMemorySuppressionBackend",
    "ItemSnoozeStore",
    "PrimaryInsight",
    "ReadThroughCache",
    "RecordValidationError",
    "ScopeKey",
    "SnoozeResult",
    "SourceAdapter",
    "SourceFetchError",
    "SourceResponseError",
    "SourceTimeout",
    "SourceType",
    "StaticSourceAdapter",
    "SuppressionState",
    "SuppressionStore",
    "SuppressionWriteError",
    "Urgency",
    "__version__",
    "build_feed",
    "fetch_all_sources",
    "load_config",
]
