"""Tests for SQL generation and row mapping in the Postgres record store."""

from __future__ import annotations

from datetime import date, datetime, timezone

from unittest.mock import AsyncMock

import pytest

from src.services import record_store
from src.services.record_store import PostgresRecordStore, build_where, select_records
from src.sync.models import RecordKind, to_epoch_millis
from src.sync.predicate import SyncPredicate

SITES = frozenset({"loc-b", "loc-a"})
SINCE = 1_700_000_000_000


class TestBuildWhere:
    def test_scope_only(self) -> None:
        sql, params = build_where(SyncPredicate.for_scope(RecordKind.participant, SITES))
        assert sql == "p.location_id = ANY($1::text[])"
        assert params == [["loc-a", "loc-b"]]

    def test_time_bound_is_inclusive(self) -> None:
        predicate = SyncPredicate.for_scope(RecordKind.participant, SITES).modified_since(SINCE)
        sql, params = build_where(predicate)
        assert "p.date_changed >= $2" in sql
        assert to_epoch_millis(params[1]) == SINCE

    def test_visit_type_filter(self) -> None:
        predicate = SyncPredicate.for_scope(RecordKind.visit, SITES).modified_since(SINCE)
        sql, params = build_where(predicate, visit_type="Dosing")
        assert sql == (
            "v.location_id = ANY($1::text[]) AND v.visit_type = $2 AND v.date_changed >= $3"
        )
        assert params[1] == "Dosing"

    def test_exclude_device_keeps_unowned_rows(self) -> None:
        predicate = SyncPredicate.for_scope(RecordKind.template, SITES).excluding_device("dev-1")
        sql, params = build_where(predicate)
        assert "t.owner_device IS DISTINCT FROM $2" in sql
        assert params[-1] == "dev-1"

    def test_owned_by(self) -> None:
        predicate = SyncPredicate.for_scope(RecordKind.image, SITES).owned_by("dev-1")
        sql, _ = build_where(predicate)
        assert sql.endswith("i.owner_device = $2")

    def test_population_shares_scope_clause(self) -> None:
        """Counts and pages filter the same scope."""
        page = SyncPredicate.for_scope(RecordKind.template, SITES).modified_since(SINCE).excluding_device("d")
        page_sql, _ = build_where(page)
        count_sql, count_params = build_where(page.population())
        assert page_sql.startswith(count_sql)
        assert count_params == [["loc-a", "loc-b"]]

    def test_device_filters_ignored_for_participants(self) -> None:
        predicate = SyncPredicate.for_scope(RecordKind.participant, SITES).excluding_device("d")
        sql, params = build_where(predicate)
        assert "owner" not in sql
        assert len(params) == 1


class TestRowMapping:
    MODIFIED = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)

    def row(self, **overrides) -> dict:
        base = {
            "id": "uuid-1",
            "voided": False,
            "modified": self.MODIFIED,
            "owner_device": None,
            "location_id": "loc-a",
            "participant_id": "P-1",
            "gender": "F",
            "birth_date": date(1990, 1, 1),
            "addresses": '[{"cityVillage": "Gent"}]',
            "attributes": '[{"type": "phone", "value": "+32"}]',
        }
        base.update(overrides)
        return base

    def test_participant_update_payload(self) -> None:
        record = PostgresRecordStore(visit_type="Dosing")._record(RecordKind.participant, self.row())
        assert record.modified_at == to_epoch_millis(self.MODIFIED)
        assert record.payload["participantId"] == "P-1"
        assert record.payload["birthDate"] == "1990-01-01"
        assert record.payload["addresses"] == [{"cityVillage": "Gent"}]
        assert record.payload["attributes"][0]["type"] == "phone"

    def test_voided_payload_carries_identity_only(self) -> None:
        record = PostgresRecordStore(visit_type="Dosing")._record(
            RecordKind.participant, self.row(voided=True)
        )
        assert record.voided
        assert set(record.payload) == {"uuid", "dateModified"}

    def test_template_payload(self) -> None:
        row = {
            "id": "uuid-1", "voided": False, "modified": self.MODIFIED,
            "owner_device": "dev-1", "location_id": "loc-a", "template": "QUJD",
        }
        record = PostgresRecordStore(visit_type="Dosing")._record(RecordKind.template, row)
        assert record.owner_device == "dev-1"
        assert record.payload["biometricsTemplate"] == "QUJD"

    @pytest.mark.asyncio
    async def test_image_without_store_has_null_image(self) -> None:
        row = {
            "id": "uuid-1", "voided": False, "modified": self.MODIFIED,
            "owner_device": "dev-1", "location_id": "loc-a",
        }
        record = await PostgresRecordStore(visit_type="Dosing")._image_record(row)
        assert record.kind is RecordKind.image
        assert record.payload["image"] is None


class TestFetchByIds:
    MODIFIED = datetime(2026, 1, 2, tzinfo=timezone.utc)

    def test_select_columns(self) -> None:
        sql = select_records(RecordKind.template)
        assert sql.startswith("SELECT t.participant_uuid AS id, t.voided AS voided")
        assert "t.owner_device AS owner_device" in sql
        assert sql.endswith("FROM biometric_templates t JOIN participants p ON p.uuid = t.participant_uuid")

    @pytest.mark.asyncio
    async def test_queries_by_id_without_scope(self, monkeypatch) -> None:
        rows = [{
            "id": "uuid-1", "voided": False, "modified": self.MODIFIED,
            "owner_device": "dev-1", "location_id": "loc-a", "template": "QUJD",
        }]
        fetch = AsyncMock(return_value=rows)
        monkeypatch.setattr(record_store, "fetch", fetch)

        records = await PostgresRecordStore(visit_type="Dosing").fetch_by_ids(
            RecordKind.template, frozenset({"uuid-2", "uuid-1"})
        )

        sql, ids = fetch.await_args.args
        assert "t.participant_uuid = ANY($1::text[])" in sql
        assert "location_id = ANY" not in sql
        assert ids == ["uuid-1", "uuid-2"]
        assert [r.id for r in records] == ["uuid-1"]
        assert records[0].payload["biometricsTemplate"] == "QUJD"

    @pytest.mark.asyncio
    async def test_list_locations_maps_codes(self, monkeypatch) -> None:
        rows = [{
            "id": "loc-a", "name": "Antwerp", "country": "Belgium",
            "cluster": "North", "site_code": "ANT", "country_code": "BE",
        }]
        monkeypatch.setattr(record_store, "fetch", AsyncMock(return_value=rows))

        [location] = await PostgresRecordStore(visit_type="Dosing").list_locations()

        assert location.site_code == "ANT"
        assert location.country_code == "BE"
