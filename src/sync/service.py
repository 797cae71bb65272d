"""One sync call, end to end.

resolve scope → fetch delta page + count population → assemble envelope.

The delta fetch and the count queries touch the same scope but share no
mutable state, so they run concurrently in one task group.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace

from src.config_loader import SyncPolicy, get_policy
from src.sync.assembler import SyncEnvelope, SyncResponseAssembler
from src.sync.counts import CountReconciler
from src.sync.delta import DeltaQueryEngine
from src.sync.errors import ValidationError
from src.sync.location_scope import LocationScopeResolver
from src.sync.models import LocationScope, RecordKind, SyncCursor

logger = logging.getLogger("fieldsync.sync.service")


class SyncService:
    """Wire the four sync components together for a single request."""

    def __init__(
        self,
        resolver: LocationScopeResolver,
        delta: DeltaQueryEngine,
        counter: CountReconciler,
        assembler: SyncResponseAssembler | None = None,
        policy: SyncPolicy | None = None,
    ) -> None:
        self._resolver = resolver
        self._delta = delta
        self._counter = counter
        self._assembler = assembler or SyncResponseAssembler()
        self._policy = policy

    @property
    def policy(self) -> SyncPolicy:
        return self._policy or get_policy()

    async def sync(
        self,
        kind: RecordKind,
        scope: LocationScope,
        cursor: SyncCursor,
        optimize: bool | None = None,
        device_id: str | None = None,
    ) -> SyncEnvelope:
        """Return the next delta page and scope counts for ``kind``.

        Images and templates are tracked per capturing device, so requests
        for them must name the device and say whether to optimize.

        Raises:
            ValidationError: Bad scope or cursor, or a missing device / optimize
                             flag for a device-owned kind.
            NotFoundError:   The scope resolves to no locations.
        """
        if kind.device_owned:
            if optimize is None:
                raise ValidationError("Optimize flag is missing")
            if device_id is None or not device_id.strip():
                raise ValidationError("deviceId header is required")

        start = time.perf_counter()
        location_ids = await self._resolver.resolve(scope, cursor)

        effective = cursor
        limit = self.policy.clamp_limit(cursor.limit)
        if limit != cursor.limit:
            logger.info("Clamped %s sync limit %d to %d", kind.value, cursor.limit, limit)
            effective = replace(cursor, limit=limit)

        use_optimize = bool(optimize)
        try:
            async with asyncio.TaskGroup() as group:
                fetching = group.create_task(
                    self._delta.fetch(kind, effective, location_ids, device_id, use_optimize)
                )
                counting = group.create_task(
                    self._counter.summarize(kind, location_ids, use_optimize, device_id)
                )
        except ExceptionGroup as failed:
            # first failure cancels the sibling; surface it unwrapped
            raise failed.exceptions[0] from None
        records, counts = fetching.result(), counting.result()

        envelope = self._assembler.assemble(records, counts, scope, cursor, optimize)
        logger.info(
            "Sync %s country=%s cluster=%s site=%s device=%s: %d record(s), status=%s in %.1f ms",
            kind.value,
            scope.country,
            scope.cluster,
            scope.site,
            device_id,
            len(records),
            envelope.status.value,
            (time.perf_counter() - start) * 1000,
        )
        return envelope
