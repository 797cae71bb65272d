"""Shared query predicate for delta fetches and count reconciliation.

A ``SyncPredicate`` describes *which* records a sync call is about: one
record kind, a set of locations, an optional inclusive lower time bound and
an optional device-ownership filter.  The delta engine and the count
reconciler both derive their queries from the same predicate, and the
record store turns a predicate into exactly one WHERE clause, so the
population that is counted is always the population that is paged through.

Usage::

    scope = SyncPredicate.for_scope(RecordKind.template, location_ids)
    page = scope.modified_since(cursor.since_modified).excluding_device(device_id)
    counts = await store.count_by_voided(scope)
    ignored = await store.count_records(scope.owned_by(device_id))
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

from src.sync.models import RecordKind, StoredRecord


@dataclass(frozen=True)
class SyncPredicate:
    """Scope + time bound + ownership filter for one record kind.

    Attributes:
        kind:           Record family being queried.
        location_ids:   Records must be attached to one of these locations.
        since_modified: Inclusive lower bound on modification time (epoch ms).
        exclude_device: Drop records captured by this device.
        only_device:    Keep only records captured by this device.
    """

    kind: RecordKind
    location_ids: frozenset[str]
    since_modified: int | None = None
    exclude_device: str | None = None
    only_device: str | None = None

    @classmethod
    def for_scope(cls, kind: RecordKind, location_ids: Iterable[str]) -> SyncPredicate:
        return cls(kind=kind, location_ids=frozenset(location_ids))

    def modified_since(self, since_modified: int | None) -> SyncPredicate:
        return replace(self, since_modified=since_modified)

    def excluding_device(self, device_id: str) -> SyncPredicate:
        return replace(self, exclude_device=device_id, only_device=None)

    def owned_by(self, device_id: str) -> SyncPredicate:
        return replace(self, only_device=device_id, exclude_device=None)

    def population(self) -> SyncPredicate:
        """The whole scope: no time bound, no ownership filter."""
        return SyncPredicate(kind=self.kind, location_ids=self.location_ids)

    def matches(self, record: StoredRecord) -> bool:
        """Evaluate the predicate against one in-memory record."""
        if record.kind is not self.kind:
            return False
        if record.location_id not in self.location_ids:
            return False
        if self.since_modified is not None and record.modified_at < self.since_modified:
            return False
        if self.exclude_device is not None and record.owner_device == self.exclude_device:
            return False
        if self.only_device is not None and record.owner_device != self.only_device:
            return False
        return True
