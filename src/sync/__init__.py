"""FieldSync incremental synchronisation engine.

Field devices keep a local copy of the participants, visits, images and
biometric templates for the sites they serve.  Each sync call returns the
records changed since the device's cursor plus full-population counts for
its scope.

Modules:
    models         - Cursor, scope, record and count value objects
    errors         - FieldSyncError hierarchy
    predicate      - SyncPredicate shared by delta fetch and counts
    store          - Collaborator protocols (location directory, record source)
    location_scope - Country / cluster / site → location ids
    delta          - Cursor-based delta page fetch
    counts         - Active / voided / ignored counts
    assembler      - Sync envelope with derived status
    service        - One sync call end to end
    device_errors  - Device-reported sync errors
    lookup         - Re-fetch by id and location listing
"""

from src.sync.errors import (
    ConflictError,
    FieldSyncError,
    NotFoundError,
    UpstreamDegraded,
    ValidationError,
)
from src.sync.models import (
    CountSummary,
    DeltaRecord,
    LocationScope,
    RecordKind,
    SyncCursor,
    SyncOp,
    SyncStatus,
)

__all__ = [
    "FieldSyncError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "UpstreamDegraded",
    "RecordKind",
    "SyncOp",
    "SyncStatus",
    "LocationScope",
    "SyncCursor",
    "DeltaRecord",
    "CountSummary",
]
