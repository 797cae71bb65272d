"""Full-population counts for a sync scope.

Counts describe the whole scope a client is entitled to, ignoring the
cursor: a device compares them with its local store to decide whether it
is complete.  They are computed from the same ``SyncPredicate`` the delta
fetch uses, with the time bound and ownership filters dropped.
"""

from __future__ import annotations

import logging

from src.sync.errors import NotFoundError
from src.sync.models import CountSummary, RecordKind
from src.sync.predicate import SyncPredicate
from src.sync.store import RecordSource

logger = logging.getLogger("fieldsync.sync.counts")


class CountReconciler:
    """Compute active / voided / ignored counts for a scope."""

    def __init__(self, store: RecordSource) -> None:
        self._store = store

    async def summarize(
        self,
        kind: RecordKind,
        location_ids: frozenset[str],
        optimize: bool = False,
        device_id: str | None = None,
    ) -> CountSummary:
        """Count every record in scope.

        ``ignored`` is the number of in-scope records captured by
        ``device_id``; it is only reported for images and templates when
        ``optimize`` is set, and is None otherwise.

        Raises:
            NotFoundError: If ``location_ids`` is empty.
        """
        if not location_ids:
            raise NotFoundError("Location not found for the given sync scope")

        population = SyncPredicate.for_scope(kind, location_ids).population()
        by_voided = await self._store.count_by_voided(population)

        ignored: int | None = None
        if optimize and kind.device_owned and device_id:
            ignored = await self._store.count_records(population.owned_by(device_id))

        summary = CountSummary(
            active=by_voided.get(False, 0),
            voided=by_voided.get(True, 0),
            ignored=ignored,
        )
        logger.debug(
            "Counts %s: total=%d active=%d voided=%d ignored=%s",
            kind.value, summary.total, summary.active, summary.voided, summary.ignored,
        )
        return summary
