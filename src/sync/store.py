"""Collaborator interfaces consumed by the sync engine.

The engine never talks to a database directly.  Each component receives
only the collaborator it needs through its constructor; the asyncpg-backed
implementations live in ``src.services.record_store``.
"""

from __future__ import annotations

from typing import Protocol

from src.sync.models import Location, RecordKind, StoredRecord
from src.sync.predicate import SyncPredicate


class LocationDirectory(Protocol):
    """Read access to the location table."""

    async def list_locations(self) -> list[Location]:
        """Return every active location."""
        ...


class RecordSource(Protocol):
    """Read access to syncable records, driven by a SyncPredicate."""

    async def fetch_records(self, predicate: SyncPredicate, limit: int) -> list[StoredRecord]:
        """Return at most ``limit`` matching rows ordered by (modified_at, id)."""
        ...

    async def count_by_voided(self, predicate: SyncPredicate) -> dict[bool, int]:
        """Return matching row counts keyed by the void flag."""
        ...

    async def count_records(self, predicate: SyncPredicate) -> int:
        """Return the number of matching rows."""
        ...

    async def fetch_by_ids(self, kind: RecordKind, ids: frozenset[str]) -> list[StoredRecord]:
        """Return the rows of ``kind`` with the given ids, voided ones included."""
        ...
