"""Error types for the Tesseract attention feed core.

Owned by the Tesseract Attention Core team.
"""

from __future__ import annotations


class AttentionFeedError(Exception):
    """Base error for attention feed failures."""


class RecordValidationError(AttentionFeedError):
    """A raw source record is missing required fields or is malformed."""

    def __init__(self, record_id: object, message: str) -> None:
        super().__init__(message)
        self.record_id = record_id


class SourceFetchError(AttentionFeedError):
    """Fetching raw records from a source failed."""


class SourceTimeout(SourceFetchError):
    """Timeout while fetching records from a source."""


class SourceResponseError(SourceFetchError):
    """Source endpoint returned a non-success response."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class SuppressionWriteError(AttentionFeedError):
    """A suppression backend failed to persist a snooze."""


class ConfigLoadError(AttentionFeedError):
    """Error loading feed configuration."""
