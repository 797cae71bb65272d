"""Shared fixtures and in-memory collaborators for sync engine tests."""

from __future__ import annotations

from collections import Counter

import pytest

from src.config_loader import MatchingSettings, SyncPolicy, SyncSettings
from src.sync.models import Location, RecordKind, StoredRecord
from src.sync.predicate import SyncPredicate

# Canonical ids
BE_ANTWERP_1 = "loc-be-antwerp-1"
BE_ANTWERP_2 = "loc-be-antwerp-2"
BE_GHENT = "loc-be-ghent"
BE_BORDER = "loc-be-border"
FR_LILLE = "loc-fr-lille"
FR_BORDER = "loc-fr-border"

BELGIAN_SITES = frozenset({BE_ANTWERP_1, BE_ANTWERP_2, BE_GHENT, BE_BORDER})

DEVICE_A = "device-a"
DEVICE_B = "device-b"

T0 = 1_700_000_000_000  # epoch ms


LOCATIONS = [
    Location(
        id=BE_ANTWERP_1, name="Antwerp North", country="Belgium", cluster="Antwerp",
        site_code="ANT-N", country_code="BE",
    ),
    Location(id=BE_ANTWERP_2, name="Antwerp South", country="Belgium", cluster="Antwerp"),
    Location(id=BE_GHENT, name="Ghent", country="Belgium"),
    Location(id=BE_BORDER, name="Menen", country="Belgium", cluster="Border"),
    Location(id=FR_LILLE, name="Lille", country="France", cluster="Lille"),
    Location(id=FR_BORDER, name="Halluin", country="France", cluster="Border"),
]


class FakeLocationDirectory:
    def __init__(self, locations: list[Location] | None = None) -> None:
        self.locations = list(LOCATIONS if locations is None else locations)
        self.calls = 0

    async def list_locations(self) -> list[Location]:
        self.calls += 1
        return list(self.locations)


class FakeRecordStore:
    """RecordSource over a list, filtering with SyncPredicate.matches."""

    def __init__(self, records: list[StoredRecord] | None = None) -> None:
        self.records = list(records or [])
        self.fetch_calls: list[tuple[SyncPredicate, int]] = []
        self.count_calls: list[SyncPredicate] = []

    def _matching(self, predicate: SyncPredicate) -> list[StoredRecord]:
        return [r for r in self.records if predicate.matches(r)]

    async def fetch_records(self, predicate: SyncPredicate, limit: int) -> list[StoredRecord]:
        self.fetch_calls.append((predicate, limit))
        rows = sorted(self._matching(predicate), key=lambda r: (r.modified_at, r.id))
        return rows[:limit]

    async def count_by_voided(self, predicate: SyncPredicate) -> dict[bool, int]:
        self.count_calls.append(predicate)
        return dict(Counter(r.voided for r in self._matching(predicate)))

    async def count_records(self, predicate: SyncPredicate) -> int:
        self.count_calls.append(predicate)
        return len(self._matching(predicate))

    async def fetch_by_ids(self, kind: RecordKind, ids: frozenset[str]) -> list[StoredRecord]:
        rows = [r for r in self.records if r.kind is kind and r.id in ids]
        return sorted(rows, key=lambda r: (r.modified_at, r.id))


def make_record(
    record_id: str,
    kind: RecordKind = RecordKind.participant,
    modified_at: int = T0,
    location_id: str = BE_ANTWERP_1,
    voided: bool = False,
    owner_device: str | None = None,
) -> StoredRecord:
    return StoredRecord(
        id=record_id,
        kind=kind,
        voided=voided,
        modified_at=modified_at,
        owner_device=owner_device,
        location_id=location_id,
        payload={"uuid": record_id},
    )


def belgian_population() -> list[StoredRecord]:
    """25 Belgian participants (5 voided) and 4 French ones."""
    records = []
    sites = sorted(BELGIAN_SITES)
    for i in range(25):
        records.append(
            make_record(
                f"be-{i:02d}",
                modified_at=T0 + (i // 3) * 1000,
                location_id=sites[i % len(sites)],
                voided=i % 5 == 4,
            )
        )
    for i in range(4):
        records.append(make_record(f"fr-{i:02d}", modified_at=T0, location_id=FR_LILLE))
    return records


def template_population() -> list[StoredRecord]:
    """Templates in Antwerp: 3 captured by device A, 2 by device B, 1 with no owner."""
    owners = [DEVICE_A, DEVICE_A, DEVICE_A, DEVICE_B, DEVICE_B, None]
    return [
        make_record(
            f"tpl-{i}",
            kind=RecordKind.template,
            modified_at=T0 + i,
            location_id=BE_ANTWERP_1,
            owner_device=owner,
            voided=i == 4,
        )
        for i, owner in enumerate(owners)
    ]


@pytest.fixture
def directory() -> FakeLocationDirectory:
    return FakeLocationDirectory()


@pytest.fixture
def participant_store() -> FakeRecordStore:
    return FakeRecordStore(belgian_population())


@pytest.fixture
def template_store() -> FakeRecordStore:
    return FakeRecordStore(template_population())


@pytest.fixture
def policy() -> SyncPolicy:
    return SyncPolicy(
        version="test",
        sync=SyncSettings(default_limit=10, max_limit=50, location_cache_ttl_seconds=0),
        matching=MatchingSettings(),
    )
