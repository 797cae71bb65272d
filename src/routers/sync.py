"""Device sync endpoints: delta pages and re-fetch by uuid per record kind, and sync error reports."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.config_loader import SyncPolicy
from src.dependencies import (
    AppPolicy,
    DeviceErrorLogDep,
    DeviceId,
    RecordLookupDep,
    SyncServiceDep,
)
from src.models.sync import (
    DeltaRecordRead,
    ParticipantUuidsRequest,
    ResolveSyncErrorsRequest,
    SyncErrorAck,
    SyncErrorReportRequest,
    SyncRequest,
    SyncResponse,
    VisitUuidsRequest,
)
from src.sync.device_errors import ReportedError
from src.sync.lookup import RecordLookup
from src.sync.models import RecordKind
from src.sync.service import SyncService

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("fieldsync.routers.sync")


async def _sync(
    kind: RecordKind,
    body: SyncRequest,
    service: SyncService,
    policy: SyncPolicy,
    device_id: str | None = None,
) -> SyncResponse:
    envelope = await service.sync(
        kind,
        body.sync_scope.to_scope(),
        body.to_cursor(policy.sync.default_limit),
        optimize=body.optimize,
        device_id=device_id,
    )
    return SyncResponse.from_envelope(envelope)


@router.post("/participants", response_model=SyncResponse)
async def sync_participants(
    body: SyncRequest, service: SyncServiceDep, policy: AppPolicy, device_id: DeviceId = None
) -> Any:
    """Participants changed since the device's cursor, plus scope counts."""
    return await _sync(RecordKind.participant, body, service, policy, device_id)


@router.post("/visits", response_model=SyncResponse)
async def sync_visits(
    body: SyncRequest, service: SyncServiceDep, policy: AppPolicy, device_id: DeviceId = None
) -> Any:
    """Visits of the configured visit type changed since the device's cursor."""
    return await _sync(RecordKind.visit, body, service, policy, device_id)


@router.post("/images", response_model=SyncResponse)
async def sync_images(
    body: SyncRequest, service: SyncServiceDep, policy: AppPolicy, device_id: DeviceId = None
) -> Any:
    """Participant images.  Requires the ``deviceId`` header and ``optimize``."""
    return await _sync(RecordKind.image, body, service, policy, device_id)


@router.post("/templates", response_model=SyncResponse)
async def sync_templates(
    body: SyncRequest, service: SyncServiceDep, policy: AppPolicy, device_id: DeviceId = None
) -> Any:
    """Biometric templates.  Requires the ``deviceId`` header and ``optimize``."""
    return await _sync(RecordKind.template, body, service, policy, device_id)


# ---------- Re-fetch by uuid ----------

async def _by_uuids(
    kind: RecordKind, ids: list[str] | None, lookup: RecordLookup, device_id: str | None
) -> list[DeltaRecordRead]:
    records = await lookup.fetch_by_ids(kind, ids)
    logger.info(
        "Re-fetch %s for device=%s: %d of %d record(s)",
        kind.value,
        device_id,
        len(records),
        len(ids or []),
    )
    return [DeltaRecordRead.from_record(r) for r in records]


@router.post("/participants/by-uuids", response_model=list[DeltaRecordRead])
async def participants_by_uuids(
    body: ParticipantUuidsRequest, lookup: RecordLookupDep, device_id: DeviceId = None
) -> Any:
    """Current state of specific participants, voided ones as deletes."""
    return await _by_uuids(RecordKind.participant, body.participant_uuids, lookup, device_id)


@router.post("/visits/by-uuids", response_model=list[DeltaRecordRead])
async def visits_by_uuids(
    body: VisitUuidsRequest, lookup: RecordLookupDep, device_id: DeviceId = None
) -> Any:
    return await _by_uuids(RecordKind.visit, body.visit_uuids, lookup, device_id)


@router.post("/images/by-uuids", response_model=list[DeltaRecordRead])
async def images_by_uuids(
    body: ParticipantUuidsRequest, lookup: RecordLookupDep, device_id: DeviceId = None
) -> Any:
    return await _by_uuids(RecordKind.image, body.participant_uuids, lookup, device_id)


@router.post("/templates/by-uuids", response_model=list[DeltaRecordRead])
async def templates_by_uuids(
    body: ParticipantUuidsRequest, lookup: RecordLookupDep, device_id: DeviceId = None
) -> Any:
    return await _by_uuids(RecordKind.template, body.participant_uuids, lookup, device_id)


# ---------- Device sync errors ----------

@router.post("/errors", response_model=SyncErrorAck, status_code=201)
async def report_sync_errors(
    body: SyncErrorReportRequest, errors: DeviceErrorLogDep, device_id: DeviceId = None
) -> Any:
    if not device_id:
        raise HTTPException(status_code=400, detail="deviceId header is required")
    count = await errors.report(
        device_id,
        [
            ReportedError(
                key=e.key,
                stack_trace=e.stack_trace,
                reported_at=e.date_created,
                metadata=e.metadata,
            )
            for e in body.sync_errors
        ],
    )
    return SyncErrorAck(device_id=device_id, count=count)


@router.post("/errors/resolved", response_model=SyncErrorAck)
async def resolve_sync_errors(
    body: ResolveSyncErrorsRequest, errors: DeviceErrorLogDep, device_id: DeviceId = None
) -> Any:
    if not device_id:
        raise HTTPException(status_code=400, detail="deviceId header is required")
    count = await errors.resolve(device_id, body.sync_error_keys)
    return SyncErrorAck(device_id=device_id, count=count)
