"""Targeted reads outside the cursor flow.

Devices re-fetch specific records by uuid after a failed local write, and
list the location table on first start to pick their sync scope.
"""

from __future__ import annotations

import logging
from typing import Iterable

from src.sync.delta import classify
from src.sync.errors import ValidationError
from src.sync.models import DeltaRecord, Location, RecordKind, StoredRecord
from src.sync.store import LocationDirectory, RecordSource

logger = logging.getLogger("fieldsync.sync.lookup")


def normalize_ids(ids: Iterable[str] | None) -> list[str]:
    """Strip the requested ids and drop blanks and repeats, keeping request order.

    Raises:
        ValidationError: If no usable id remains.
    """
    wanted: list[str] = []
    for value in ids or ():
        value = value.strip() if value else ""
        if value and value not in wanted:
            wanted.append(value)
    if not wanted:
        raise ValidationError("Uuid list cannot be empty")
    return wanted


class RecordLookup:
    """Fetch records by id and list locations.

    Usage::

        lookup = RecordLookup(store, store, max_ids=500)
        records = await lookup.fetch_by_ids(RecordKind.visit, ["uuid-1", "uuid-2"])
    """

    def __init__(
        self,
        store: RecordSource,
        directory: LocationDirectory,
        max_ids: int | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._max_ids = max_ids

    async def fetch_by_ids(self, kind: RecordKind, ids: Iterable[str] | None) -> list[DeltaRecord]:
        """Return one DeltaRecord per requested id that exists, in request order.

        Voided records come back as deletes so the device can drop its copy.

        Raises:
            ValidationError: Empty id list, or more ids than ``max_ids``.
        """
        wanted = normalize_ids(ids)
        if self._max_ids is not None and len(wanted) > self._max_ids:
            raise ValidationError(f"At most {self._max_ids} uuids can be requested at once")

        rows = await self._store.fetch_by_ids(kind, frozenset(wanted))
        by_id: dict[str, StoredRecord] = {}
        for row in rows:
            if row.id in by_id:
                logger.warning("Duplicate %s record %s in lookup, dropped", kind.value, row.id)
                continue
            by_id[row.id] = row

        missing = len(wanted) - sum(1 for record_id in wanted if record_id in by_id)
        if missing:
            logger.info("%s lookup: %d of %d id(s) not found", kind.value, missing, len(wanted))

        return [
            DeltaRecord(
                id=row.id,
                kind=kind,
                op=classify(row),
                modified_at=row.modified_at,
                payload=row.payload,
            )
            for row in (by_id[record_id] for record_id in wanted if record_id in by_id)
        ]

    async def locations(self) -> list[Location]:
        """Every active location, ordered by country then name."""
        locations = await self._directory.list_locations()
        return sorted(
            locations,
            key=lambda loc: ((loc.country or "").casefold(), loc.name.casefold(), loc.id),
        )
