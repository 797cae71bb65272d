"""Combine a delta page and scope counts into one sync envelope."""

from __future__ import annotations

from dataclasses import dataclass, field

from src.sync.models import (
    CountSummary,
    DeltaRecord,
    LocationScope,
    SyncCursor,
    SyncStatus,
)


@dataclass(frozen=True)
class SyncEnvelope:
    """Everything a device needs from one sync call.

    The request's cursor fields are echoed back verbatim so a client can
    correlate a response with the request that produced it.

    Attributes:
        status:          OUT_OF_SYNC when ``records`` is non-empty, else OK.
        records:         The delta page.
        counts:          Full-population counts for the scope.
        scope:           Echo of the requested scope.
        since_modified:  Echo of the cursor time.
        known_at_cursor: Echo of the known ids, sorted.
        limit:           Echo of the requested limit.
        optimize:        Echo of the optimize flag.
    """

    status: SyncStatus
    records: list[DeltaRecord]
    counts: CountSummary
    scope: LocationScope
    since_modified: int | None
    known_at_cursor: tuple[str, ...] = field(default_factory=tuple)
    limit: int = 0
    optimize: bool | None = None

    @property
    def total(self) -> int:
        return self.counts.total

    @property
    def voided(self) -> int:
        return self.counts.voided

    @property
    def ignored(self) -> int | None:
        return self.counts.ignored


class SyncResponseAssembler:
    """Derive the sync status and echo the request alongside the page."""

    def assemble(
        self,
        records: list[DeltaRecord],
        counts: CountSummary,
        scope: LocationScope,
        cursor: SyncCursor,
        optimize: bool | None = None,
    ) -> SyncEnvelope:
        status = SyncStatus.OUT_OF_SYNC if records else SyncStatus.OK
        return SyncEnvelope(
            status=status,
            records=list(records),
            counts=counts,
            scope=scope,
            since_modified=cursor.since_modified,
            known_at_cursor=tuple(sorted(cursor.known_at_cursor or ())),
            limit=cursor.limit,
            optimize=optimize,
        )
