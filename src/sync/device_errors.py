"""Device-reported sync errors.

Devices report the errors they hit while applying a sync page, and later
mark them resolved by key.  Error keys look like ``"type:subtype,detail"``;
the type and subtype are stored alongside the key so errors can be grouped
without re-parsing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from src.sync.errors import NotFoundError, ValidationError

logger = logging.getLogger("fieldsync.sync.device_errors")

RESOLVED_REASON = "Error resolved"


@dataclass(frozen=True)
class DeviceError:
    """One error as stored for a device.

    Attributes:
        key:           Client-chosen error key.
        meta_type:     Text before the first ``:`` in the key.
        meta_subtype:  Text after ``:`` up to the first ``,``, if any.
        stack_trace:   Client stack trace.
        reported_at:   When the device saw the error.
        metadata:      Arbitrary JSON the device attached.
    """

    key: str
    meta_type: str | None
    meta_subtype: str | None
    stack_trace: str | None = None
    reported_at: datetime | None = None
    metadata: Any = None


@dataclass(frozen=True)
class ReportedError:
    """An error as received from a device."""

    key: str
    stack_trace: str | None = None
    reported_at: datetime | None = None
    metadata: Any = field(default=None)


def parse_error_key(key: str) -> tuple[str | None, str | None]:
    """Split an error key into ``(meta_type, meta_subtype)``.

    >>> parse_error_key("license:expired,site-7")
    ('license', 'expired')
    >>> parse_error_key("network")
    ('network', None)
    """
    meta_type, sep, rest = key.partition(":")
    if not sep:
        return meta_type, None
    return meta_type, rest.partition(",")[0]


class DeviceErrorRepository(Protocol):
    async def get_device(self, device_id: str) -> str | None:
        """Return the internal id of a registered device, or None."""
        ...

    async def register_device(self, device_id: str) -> str:
        """Register a device and return its internal id."""
        ...

    async def add_errors(self, device_ref: str, errors: list[DeviceError]) -> None:
        ...

    async def void_errors(self, device_ref: str, key: str, reason: str) -> int:
        """Void every open error with ``key``; return how many were voided."""
        ...


class DeviceErrorLog:
    """Append and resolve device sync errors."""

    def __init__(self, repository: DeviceErrorRepository) -> None:
        self._repository = repository

    async def report(self, device_id: str, errors: list[ReportedError]) -> int:
        """Store ``errors`` for ``device_id``, registering the device on first sight.

        Returns:
            Number of errors stored.
        """
        if not device_id or not device_id.strip():
            raise ValidationError("deviceId header is required")

        device_ref = await self._repository.get_device(device_id)
        if device_ref is None:
            device_ref = await self._repository.register_device(device_id)
            logger.info("Registered new device %s", device_id)

        rows = []
        for error in errors:
            meta_type, meta_subtype = parse_error_key(error.key)
            rows.append(
                DeviceError(
                    key=error.key,
                    meta_type=meta_type,
                    meta_subtype=meta_subtype,
                    stack_trace=error.stack_trace,
                    reported_at=error.reported_at,
                    metadata=error.metadata,
                )
            )
        if rows:
            await self._repository.add_errors(device_ref, rows)
        logger.info("Device %s reported %d sync error(s)", device_id, len(rows))
        return len(rows)

    async def resolve(self, device_id: str, keys: list[str]) -> int:
        """Mark every open error with one of ``keys`` as resolved.

        Raises:
            ValidationError: If ``keys`` is empty.
            NotFoundError:   If the device has never been seen.
        """
        if not keys:
            raise ValidationError("syncErrorKeys cannot be empty")

        device_ref = await self._repository.get_device(device_id)
        if device_ref is None:
            raise NotFoundError("Device not found")

        resolved = 0
        for key in keys:
            resolved += await self._repository.void_errors(device_ref, key, RESOLVED_REASON)
        logger.info("Device %s resolved %d sync error(s) across %d key(s)", device_id, resolved, len(keys))
        return resolved
