"""Pydantic models for the device sync and location endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field, model_serializer

from src.models.base import FieldSyncBase
from src.sync.assembler import SyncEnvelope
from src.sync.models import (
    DeltaRecord,
    Location,
    LocationScope,
    RecordKind,
    SyncCursor,
    SyncOp,
    SyncStatus,
)


# ---------- Requests ----------

class SyncScopeModel(FieldSyncBase):
    country: str | None = None
    cluster: str | None = None
    site_uuid: str | None = None

    def to_scope(self) -> LocationScope:
        return LocationScope(country=self.country, cluster=self.cluster, site=self.site_uuid)

    @classmethod
    def from_scope(cls, scope: LocationScope) -> SyncScopeModel:
        return cls(country=scope.country, cluster=scope.cluster, site_uuid=scope.site)


class SyncRequest(FieldSyncBase):
    since_modified: int | None = None
    sync_scope: SyncScopeModel = Field(default_factory=SyncScopeModel)
    known_at_cursor: list[str] | None = None
    optimize: bool | None = None
    limit: int | None = None

    def to_cursor(self, default_limit: int) -> SyncCursor:
        known = frozenset(self.known_at_cursor) if self.known_at_cursor is not None else None
        limit = self.limit if self.limit is not None else default_limit
        return SyncCursor(since_modified=self.since_modified, known_at_cursor=known, limit=limit)


class ParticipantUuidsRequest(FieldSyncBase):
    participant_uuids: list[str] | None = None


class VisitUuidsRequest(FieldSyncBase):
    visit_uuids: list[str] | None = None


class SyncErrorItem(FieldSyncBase):
    key: str = Field(min_length=1)
    stack_trace: str | None = None
    date_created: datetime | None = None
    metadata: Any = None


class SyncErrorReportRequest(FieldSyncBase):
    sync_errors: list[SyncErrorItem] = Field(default_factory=list)


class ResolveSyncErrorsRequest(FieldSyncBase):
    sync_error_keys: list[str] = Field(default_factory=list)


# ---------- Responses ----------

class DeltaRecordRead(FieldSyncBase):
    id: str
    kind: RecordKind
    op: SyncOp
    modified_at: int
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: DeltaRecord) -> DeltaRecordRead:
        return cls(
            id=record.id,
            kind=record.kind,
            op=record.op,
            modified_at=record.modified_at,
            payload=record.payload,
        )


class SyncResponse(FieldSyncBase):
    status: SyncStatus
    records: list[DeltaRecordRead] = Field(default_factory=list)
    total: int
    voided: int
    ignored: int | None = None
    since_modified: int | None = None
    sync_scope: SyncScopeModel
    known_at_cursor: list[str] = Field(default_factory=list)
    limit: int
    optimize: bool | None = None

    @model_serializer(mode="wrap")
    def _omit_null_ignored(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if data.get("ignored") is None:
            data.pop("ignored", None)
        return data

    @classmethod
    def from_envelope(cls, envelope: SyncEnvelope) -> SyncResponse:
        return cls(
            status=envelope.status,
            records=[DeltaRecordRead.from_record(r) for r in envelope.records],
            total=envelope.total,
            voided=envelope.voided,
            ignored=envelope.ignored,
            since_modified=envelope.since_modified,
            sync_scope=SyncScopeModel.from_scope(envelope.scope),
            known_at_cursor=list(envelope.known_at_cursor),
            limit=envelope.limit,
            optimize=envelope.optimize,
        )


class SyncErrorAck(FieldSyncBase):
    device_id: str
    count: int


class LocationRead(FieldSyncBase):
    uuid: str
    name: str
    country: str | None = None
    cluster: str | None = None
    site_code: str | None = None
    country_code: str | None = None

    @classmethod
    def from_location(cls, location: Location) -> LocationRead:
        return cls(
            uuid=location.id,
            name=location.name,
            country=location.country,
            cluster=location.cluster,
            site_code=location.site_code,
            country_code=location.country_code,
        )


class LocationList(FieldSyncBase):
    results: list[LocationRead] = Field(default_factory=list)
