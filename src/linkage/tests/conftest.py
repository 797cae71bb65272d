"""Shared fixtures and fakes for record-linkage tests."""

from __future__ import annotations

import asyncio

import pytest

from src.config_loader import MatchingSettings
from src.linkage.models import BiographicRecord
from src.sync.errors import UpstreamDegraded

TEMPLATE = b"\x01\x02template-bytes"

ALICE = BiographicRecord(
    id="P-001", uuid="uuid-alice", location_id="loc-be", country="Belgium",
    gender="F", birth_date="1990-04-01", phone="+32470000001",
)
ALICE_BY_ID = BiographicRecord(
    id="P-001", uuid="uuid-alice", location_id="loc-be", country="Belgium",
    gender="F", birth_date="1990-04-01", phone="+32470000001",
    attributes=[{"type": "source", "value": "id-search"}],
)
BOB = BiographicRecord(
    id="P-002", uuid="uuid-bob", location_id="loc-fr", country="France",
    gender="M", birth_date="1985-11-20", phone="+32470000001",
)
CAROL = BiographicRecord(
    id="P-003", uuid="uuid-carol", location_id="loc-be", country="Belgium", gender="F",
)
NOMAD = BiographicRecord(id="P-004", uuid="uuid-nomad", location_id=None, country=None)


class FakeSearch:
    """BiographicSearch over fixed phone / participant-id indexes."""

    def __init__(self, by_phone=None, by_id=None) -> None:
        self.by_phone = by_phone or {}
        self.by_id = by_id or {}
        self.phone_queries: list[str] = []
        self.id_queries: list[str] = []

    async def find_by_phone(self, phone: str) -> list[BiographicRecord]:
        self.phone_queries.append(phone)
        return list(self.by_phone.get(phone, []))

    async def find_by_participant_id(self, participant_id: str) -> list[BiographicRecord]:
        self.id_queries.append(participant_id)
        return list(self.by_id.get(participant_id, []))


class FakeOracle:
    """BiometricOracle returning fixed hits, honouring the allow-list."""

    def __init__(self, hits=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self.hits = hits or []
        self.error = error
        self.delay = delay
        self.calls: list[frozenset[str] | None] = []

    async def match(self, template: bytes, allow_list=None) -> list[tuple[str, int]]:
        self.calls.append(allow_list)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if allow_list is None:
            return list(self.hits)
        return [(hit_id, score) for hit_id, score in self.hits if hit_id in allow_list]


def default_search() -> FakeSearch:
    return FakeSearch(
        by_phone={"+32470000001": [ALICE, BOB]},
        by_id={"P-001": [ALICE_BY_ID], "P-002": [BOB], "P-003": [CAROL], "P-004": [NOMAD]},
    )


@pytest.fixture
def search() -> FakeSearch:
    return default_search()


@pytest.fixture
def settings() -> MatchingSettings:
    return MatchingSettings(oracle_timeout_seconds=0.5)


@pytest.fixture
def down_oracle() -> FakeOracle:
    return FakeOracle(error=UpstreamDegraded("Matching server unreachable"))
