"""Value objects for the incremental sync engine.

All types here are request-scoped: the engine builds them fresh for each
sync call and holds nothing across requests.  Timestamps are epoch
milliseconds throughout so that cursor comparisons are exact integer
equality, matching what devices send on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class RecordKind(str, Enum):
    """Logical record families a device keeps a local copy of."""

    participant = "participant"
    visit = "visit"
    image = "image"
    template = "template"

    @property
    def device_owned(self) -> bool:
        """Images and templates remember which device captured them."""
        return self in (RecordKind.image, RecordKind.template)


class SyncOp(str, Enum):
    update = "update"
    delete = "delete"


class SyncStatus(str, Enum):
    OK = "OK"
    OUT_OF_SYNC = "OUT_OF_SYNC"


@dataclass(frozen=True)
class Location:
    """A site known to the record store.

    Attributes:
        id:           Location identifier (uuid string).
        name:         Display name.
        country:      Country the site belongs to.
        cluster:      Value of the site's cluster attribute, if any.
        site_code:    Short code printed on participant cards.
        country_code: ISO code of ``country``.
    """

    id: str
    name: str
    country: str | None
    cluster: str | None = None
    site_code: str | None = None
    country_code: str | None = None


@dataclass(frozen=True)
class LocationScope:
    """Country → cluster → site precedence chain from a sync request."""

    country: str | None = None
    cluster: str | None = None
    site: str | None = None


@dataclass(frozen=True)
class SyncCursor:
    """What a client already holds and how much more it wants.

    Attributes:
        since_modified:  Modification time (epoch ms) of the newest record the
                         client has, or None for a first sync.
        known_at_cursor: Ids the client holds whose modification time is
                         exactly ``since_modified``.  None means the client
                         omitted the field, which is a validation error.
        limit:           Maximum number of new records wanted.
    """

    since_modified: int | None
    known_at_cursor: frozenset[str] | None
    limit: int

    @property
    def fetch_size(self) -> int:
        """Rows to request from the store so ``limit`` survive exclusion."""
        return self.limit + len(self.known_at_cursor or ())

    def is_known(self, record_id: str, modified_at: int) -> bool:
        """Return True if the client already holds this exact record version."""
        if self.since_modified is None or not self.known_at_cursor:
            return False
        return modified_at == self.since_modified and record_id in self.known_at_cursor


@dataclass(frozen=True)
class StoredRecord:
    """One row as returned by the record store for a sync query.

    Attributes:
        id:           Record identifier (participant / visit uuid).
        kind:         Record family.
        voided:       Void / retire flag.
        modified_at:  Last modification time, epoch ms.
        owner_device: Device that captured the image / template, if tracked.
        location_id:  Location the record is attached to.
        payload:      Kind-specific body delivered to the device.
    """

    id: str
    kind: RecordKind
    voided: bool
    modified_at: int
    owner_device: str | None = None
    location_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeltaRecord:
    """One changed record delivered to a device."""

    id: str
    kind: RecordKind
    op: SyncOp
    modified_at: int
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CountSummary:
    """Full-population counts for a scope.

    ``total`` is derived, never stored, so it always equals
    ``active + voided``.  ``ignored`` is None unless the optimize flag was
    requested for a device-owned kind.
    """

    active: int = 0
    voided: int = 0
    ignored: int | None = None

    @property
    def total(self) -> int:
        return self.active + self.voided


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_millis(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_millis(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)
