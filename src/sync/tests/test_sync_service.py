"""End-to-end tests for one sync call over in-memory collaborators."""

from __future__ import annotations

import asyncio

import pytest

from src.config_loader import SyncPolicy
from src.sync.counts import CountReconciler
from src.sync.delta import DeltaQueryEngine
from src.sync.errors import NotFoundError, ValidationError
from src.sync.location_scope import LocationScopeResolver
from src.sync.models import LocationScope, RecordKind, SyncCursor, SyncOp, SyncStatus
from src.sync.service import SyncService
from src.sync.tests.conftest import (
    BELGIAN_SITES,
    DEVICE_A,
    FakeLocationDirectory,
    FakeRecordStore,
)


def build_service(store: FakeRecordStore, policy: SyncPolicy) -> SyncService:
    return SyncService(
        resolver=LocationScopeResolver(FakeLocationDirectory()),
        delta=DeltaQueryEngine(store),
        counter=CountReconciler(store),
        policy=policy,
    )


def first_sync(limit: int = 10) -> SyncCursor:
    return SyncCursor(since_modified=0, known_at_cursor=frozenset(), limit=limit)


class TestParticipantSync:
    @pytest.mark.asyncio
    async def test_belgium_first_sync(self, participant_store, policy) -> None:
        """At most 10 Belgian records, counts over the whole Belgian population."""
        service = build_service(participant_store, policy)
        envelope = await service.sync(
            RecordKind.participant, LocationScope(country="Belgium"), first_sync(), optimize=False
        )

        assert envelope.status is SyncStatus.OUT_OF_SYNC
        assert len(envelope.records) == 10
        assert {r.op for r in envelope.records} <= {SyncOp.update, SyncOp.delete}
        locations = {r.location_id for r in participant_store.records if r.id in {d.id for d in envelope.records}}
        assert locations <= BELGIAN_SITES
        assert envelope.total == 25
        assert envelope.voided == 5
        assert envelope.ignored is None

    @pytest.mark.asyncio
    async def test_caught_up_device_is_ok(self, participant_store, policy) -> None:
        service = build_service(participant_store, policy)
        envelope = await service.sync(
            RecordKind.participant,
            LocationScope(country="Belgium"),
            SyncCursor(since_modified=10**13, known_at_cursor=frozenset(), limit=10),
        )
        assert envelope.status is SyncStatus.OK
        assert envelope.records == []
        assert envelope.total == 25

    @pytest.mark.asyncio
    async def test_limit_clamped_but_echoed(self, participant_store, policy) -> None:
        service = build_service(participant_store, policy)
        envelope = await service.sync(
            RecordKind.participant, LocationScope(country="Belgium"), first_sync(limit=1000)
        )
        assert len(envelope.records) == 25
        assert envelope.limit == 1000
        _, requested = participant_store.fetch_calls[-1]
        assert requested == policy.sync.max_limit

    @pytest.mark.asyncio
    async def test_invalid_scope_fails_fast(self, participant_store, policy) -> None:
        service = build_service(participant_store, policy)
        with pytest.raises(ValidationError):
            await service.sync(RecordKind.participant, LocationScope(country="Narnia"), first_sync())
        assert participant_store.fetch_calls == []


class TestDeviceOwnedSync:
    @pytest.mark.asyncio
    async def test_templates_require_optimize_flag(self, template_store, policy) -> None:
        service = build_service(template_store, policy)
        with pytest.raises(ValidationError, match="Optimize"):
            await service.sync(
                RecordKind.template, LocationScope(country="Belgium"), first_sync(), None, DEVICE_A
            )

    @pytest.mark.asyncio
    async def test_images_require_device(self, template_store, policy) -> None:
        service = build_service(template_store, policy)
        with pytest.raises(ValidationError, match="deviceId"):
            await service.sync(
                RecordKind.image, LocationScope(country="Belgium"), first_sync(), False, None
            )

    @pytest.mark.asyncio
    async def test_optimized_template_sync(self, template_store, policy) -> None:
        service = build_service(template_store, policy)
        envelope = await service.sync(
            RecordKind.template,
            LocationScope(country="Belgium", cluster="Antwerp"),
            first_sync(),
            optimize=True,
            device_id=DEVICE_A,
        )
        assert [r.id for r in envelope.records] == ["tpl-3", "tpl-4", "tpl-5"]
        assert envelope.total == 6
        assert envelope.ignored == 3
        assert envelope.optimize is True

    @pytest.mark.asyncio
    async def test_unoptimized_template_sync_has_no_ignored(self, template_store, policy) -> None:
        service = build_service(template_store, policy)
        envelope = await service.sync(
            RecordKind.template,
            LocationScope(country="Belgium"),
            first_sync(),
            optimize=False,
            device_id=DEVICE_A,
        )
        assert len(envelope.records) == 6
        assert envelope.ignored is None


class TestNotFound:
    @pytest.mark.asyncio
    async def test_empty_resolution_propagates(self, policy) -> None:
        class EmptyResolver(LocationScopeResolver):
            async def resolve(self, scope, cursor=None):
                raise NotFoundError("Location not found for the given sync scope")

        store = FakeRecordStore()
        service = SyncService(
            resolver=EmptyResolver(FakeLocationDirectory()),
            delta=DeltaQueryEngine(store),
            counter=CountReconciler(store),
            policy=policy,
        )
        with pytest.raises(NotFoundError):
            await service.sync(RecordKind.visit, LocationScope(country="Belgium"), first_sync())


class TestFetchFailure:
    @pytest.mark.asyncio
    async def test_fetch_error_cancels_counting(self, participant_store, policy) -> None:
        counting_cancelled = asyncio.Event()

        class FailingDelta(DeltaQueryEngine):
            async def fetch(self, *args, **kwargs):
                await asyncio.sleep(0)
                raise NotFoundError("Location not found for the given sync scope")

        class SlowCounter(CountReconciler):
            async def summarize(self, *args, **kwargs):
                try:
                    await asyncio.sleep(10)
                except asyncio.CancelledError:
                    counting_cancelled.set()
                    raise

        service = SyncService(
            resolver=LocationScopeResolver(FakeLocationDirectory()),
            delta=FailingDelta(participant_store),
            counter=SlowCounter(participant_store),
            policy=policy,
        )
        with pytest.raises(NotFoundError):
            await service.sync(RecordKind.participant, LocationScope(country="Belgium"), first_sync())
        assert counting_cancelled.is_set()
