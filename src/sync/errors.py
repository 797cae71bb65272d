"""Error taxonomy shared by the sync engine and the record-linkage matcher.

``ValidationError`` and ``NotFoundError`` surface to callers as distinct
error kinds.  ``UpstreamDegraded`` marks a biometric oracle failure; the
matcher absorbs it and never lets it escape a match request.
"""

from __future__ import annotations


class FieldSyncError(Exception):
    """Base exception for sync and matching errors."""


class ValidationError(FieldSyncError):
    """Raised when a scope, cursor or match request is malformed or incomplete."""


class NotFoundError(FieldSyncError):
    """Raised when a scope resolves to no locations or a referenced entity is missing."""


class ConflictError(FieldSyncError):
    """Raised by callers when a write would clash with existing state."""

    def __init__(self, message: str, conflict_data: dict | None = None) -> None:
        super().__init__(message)
        self.conflict_data = conflict_data or {}


class UpstreamDegraded(FieldSyncError):
    """Raised by a biometric oracle client when the matching server is unusable."""
