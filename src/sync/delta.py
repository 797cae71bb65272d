"""Cursor-based delta fetch.

Given a cursor ``(since_modified, known_at_cursor, limit)`` the engine
returns the records in scope modified at or after ``since_modified``,
skipping the exact ``(id, since_modified)`` pairs the client already holds.
Ties on modification time are broken by id, so repeated calls with an
advancing cursor never skip a record and never loop.

The store is asked for ``limit + len(known_at_cursor)`` rows so that, after
the known rows are dropped, a full page of ``limit`` new records can still be
returned.
"""

from __future__ import annotations

import logging
import time

from src.sync.errors import NotFoundError
from src.sync.models import DeltaRecord, RecordKind, StoredRecord, SyncCursor, SyncOp
from src.sync.predicate import SyncPredicate
from src.sync.store import RecordSource

logger = logging.getLogger("fieldsync.sync.delta")


def classify(record: StoredRecord) -> SyncOp:
    """Voided records are delivered as deletes, everything else as updates."""
    return SyncOp.delete if record.voided else SyncOp.update


class DeltaQueryEngine:
    """Fetch the next page of changed records for one record kind."""

    def __init__(self, store: RecordSource) -> None:
        self._store = store

    def predicate(
        self,
        kind: RecordKind,
        cursor: SyncCursor,
        location_ids: frozenset[str],
        device_id: str | None = None,
        optimize: bool = False,
    ) -> SyncPredicate:
        """Build the page predicate for a fetch."""
        predicate = SyncPredicate.for_scope(kind, location_ids).modified_since(
            cursor.since_modified
        )
        if optimize and kind.device_owned and device_id:
            predicate = predicate.excluding_device(device_id)
        return predicate

    async def fetch(
        self,
        kind: RecordKind,
        cursor: SyncCursor,
        location_ids: frozenset[str],
        device_id: str | None = None,
        optimize: bool = False,
    ) -> list[DeltaRecord]:
        """Return at most ``cursor.limit`` changed records, ordered by (modified_at, id).

        Args:
            kind:         Record family to fetch.
            cursor:       What the client already holds.
            location_ids: Resolved scope.  Must not be empty.
            device_id:    Requesting device, used by the optimize filter.
            optimize:     Skip records captured by ``device_id`` (images and
                          templates only).

        Raises:
            NotFoundError: If ``location_ids`` is empty.
        """
        if not location_ids:
            raise NotFoundError("Location not found for the given sync scope")

        start = time.perf_counter()
        predicate = self.predicate(kind, cursor, location_ids, device_id, optimize)
        rows = await self._store.fetch_records(predicate, cursor.fetch_size)

        records: list[DeltaRecord] = []
        seen: set[str] = set()
        skipped_known = 0
        for row in sorted(rows, key=lambda r: (r.modified_at, r.id)):
            if cursor.is_known(row.id, row.modified_at):
                skipped_known += 1
                continue
            if predicate.exclude_device is not None and row.owner_device == predicate.exclude_device:
                continue
            if row.id in seen:
                logger.warning("Duplicate %s record %s in delta page, dropped", kind.value, row.id)
                continue
            seen.add(row.id)
            records.append(
                DeltaRecord(
                    id=row.id,
                    kind=kind,
                    op=classify(row),
                    modified_at=row.modified_at,
                    payload=row.payload,
                )
            )
            if len(records) >= cursor.limit:
                break

        logger.debug(
            "Delta %s: %d row(s) fetched, %d known skipped, %d returned in %.1f ms",
            kind.value,
            len(rows),
            skipped_known,
            len(records),
            (time.perf_counter() - start) * 1000,
        )
        return records
