"""Decision logic for the Tesseract attention feed.

This package contains pure decision logic with no I/O dependencies.
All functions are deterministic and side-effect free.

Components:
- normalizer: Raw record to AttentionItem, with urgency cascades
- merge: Pair merging and cross-source dedup
- followups: Derived follow-up rules and primary insight
- bands: Band assignment, urgent-only filter, band summaries
"""

from .bands import (
    DEFAULT_BAND_RULES,
    FALLBACK_RULE,
    BandDecision,
    BandRule,
    assign_band,
    build_band_rules,
    classify_band,
    compute_band_summary,
    filter_urgent_only,
    sort_band,
)
from .followups import (
    FOLLOWUP_RULES,
    FollowupRule,
    combine_entity_signals,
    evaluate_entity_followups,
    evaluate_followups,
    followup_to_item,
    select_primary_insight,
)
from .merge import (
    SOURCE_PRECEDENCE,
    DedupDrop,
    MergeResult,
    merge_and_dedup,
    merge_and_dedup_detailed,
)
from .normalizer import (
    UrgencyRule,
    build_urgency_rules,
    normalize,
    normalize_record,
    parse_timestamp,
)

__all__ = [
    "DEFAULT_BAND_RULES",
    "FALLBACK_RULE",
    "FOLLOWUP_RULES",
    "SOURCE_PRECEDENCE",
    "BandDecision",
    "BandRule",
    "DedupDrop",
    "FollowupRule",
    "MergeResult",
    "UrgencyRule",
    "assign_band",
    "build_band_rules",
    "build_urgency_rules",
    "classify_band",
    "combine_entity_signals",
    "compute_band_summary",
    "evaluate_entity_followups",
    "evaluate_followups",
    "filter_urgent_only",
    "followup_to_item",
    "merge_and_dedup",
    "merge_and_dedup_detailed",
    "normalize",
    "normalize_record",
    "parse_timestamp",
    "select_primary_insight",
    "sort_band",
]
