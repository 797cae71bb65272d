"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, Request

from src.config import Settings, get_settings
from src.config_loader import SyncPolicy, get_policy
from src.linkage.matcher import RecordLinkageMatcher
from src.sync.device_errors import DeviceErrorLog
from src.sync.lookup import RecordLookup
from src.sync.service import SyncService


def get_sync_service(request: Request) -> SyncService:
    """Return the SyncService built during app startup."""
    return request.app.state.sync_service


def get_matcher(request: Request) -> RecordLinkageMatcher:
    return request.app.state.matcher


def get_device_error_log(request: Request) -> DeviceErrorLog:
    return request.app.state.device_errors


def get_record_lookup(request: Request) -> RecordLookup:
    return request.app.state.record_lookup


# Annotated shortcuts for route signatures
SyncServiceDep = Annotated[SyncService, Depends(get_sync_service)]
MatcherDep = Annotated[RecordLinkageMatcher, Depends(get_matcher)]
DeviceErrorLogDep = Annotated[DeviceErrorLog, Depends(get_device_error_log)]
RecordLookupDep = Annotated[RecordLookup, Depends(get_record_lookup)]
DeviceId = Annotated[str | None, Header(alias="deviceId")]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppPolicy = Annotated[SyncPolicy, Depends(get_policy)]
