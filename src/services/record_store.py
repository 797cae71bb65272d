"""PostgreSQL record store.

Implements every collaborator the sync engine and the matcher consume:

    LocationDirectory      - ``list_locations``
    RecordSource           - ``fetch_records``, ``fetch_by_ids``, ``count_by_voided``,
                             ``count_records``
    BiographicSearch       - ``find_by_phone``, ``find_by_participant_id``
    DeviceErrorRepository  - ``get_device``, ``register_device``, ``add_errors``, ``void_errors``

Every sync query is derived from a ``SyncPredicate`` through ``build_where``,
so row fetches and counts always filter the same population.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

from src.config_loader import get_policy
from src.linkage.models import BiographicRecord
from src.services.database import fetch, fetchrow, fetchval, get_connection
from src.services.image_store import ImageStore
from src.sync.device_errors import DeviceError
from src.sync.models import (
    Location,
    RecordKind,
    StoredRecord,
    from_epoch_millis,
    to_epoch_millis,
)
from src.sync.predicate import SyncPredicate

logger = logging.getLogger("fieldsync.record_store")


@dataclass(frozen=True)
class KindTable:
    """Column mapping for one syncable record kind."""

    source: str
    id_col: str
    modified_col: str
    voided_col: str
    location_col: str
    owner_col: str | None = None
    columns: str = ""


_ATTRIBUTES = """
    COALESCE((
        SELECT json_agg(json_build_object('type', a.type, 'value', a.value) ORDER BY a.id)
        FROM {table} a WHERE a.{fk} = {owner} AND NOT a.voided
    ), '[]'::json)
"""

_TABLES: dict[RecordKind, KindTable] = {
    RecordKind.participant: KindTable(
        source="participants p",
        id_col="p.uuid",
        modified_col="p.date_changed",
        voided_col="p.voided",
        location_col="p.location_id",
        columns=(
            "p.participant_id, p.gender, p.birth_date, p.addresses, "
            + _ATTRIBUTES.format(table="participant_attributes", fk="participant_uuid", owner="p.uuid")
            + " AS attributes"
        ),
    ),
    RecordKind.visit: KindTable(
        source="visits v",
        id_col="v.uuid",
        modified_col="v.date_changed",
        voided_col="v.voided",
        location_col="v.location_id",
        columns=(
            "v.participant_uuid, v.visit_type, v.start_at, "
            + _ATTRIBUTES.format(table="visit_attributes", fk="visit_uuid", owner="v.uuid")
            + " AS attributes, "
            """COALESCE((
                SELECT json_agg(json_build_object(
                    'concept', o.concept, 'value', o.value, 'observedAt', o.observed_at
                ) ORDER BY o.id)
                FROM visit_observations o WHERE o.visit_uuid = v.uuid AND NOT o.voided
            ), '[]'::json) AS observations"""
        ),
    ),
    RecordKind.image: KindTable(
        source="participant_images i JOIN participants p ON p.uuid = i.participant_uuid",
        id_col="i.participant_uuid",
        modified_col="i.date_changed",
        voided_col="i.voided",
        location_col="p.location_id",
        owner_col="i.owner_device",
    ),
    RecordKind.template: KindTable(
        source="biometric_templates t JOIN participants p ON p.uuid = t.participant_uuid",
        id_col="t.participant_uuid",
        modified_col="t.date_changed",
        voided_col="t.voided",
        location_col="p.location_id",
        owner_col="t.owner_device",
        columns="t.template",
    ),
}


def build_where(predicate: SyncPredicate, visit_type: str | None = None) -> tuple[str, list[Any]]:
    """Translate a predicate into a WHERE clause and its positional params.

    Returns:
        ``(sql, params)`` where ``sql`` uses ``$1..$n`` placeholders.
    """
    table = _TABLES[predicate.kind]
    params: list[Any] = [sorted(predicate.location_ids)]
    clauses = [f"{table.location_col} = ANY($1::text[])"]

    if predicate.kind is RecordKind.visit and visit_type:
        params.append(visit_type)
        clauses.append(f"v.visit_type = ${len(params)}")

    if predicate.since_modified is not None:
        params.append(from_epoch_millis(predicate.since_modified))
        clauses.append(f"{table.modified_col} >= ${len(params)}")

    if table.owner_col is not None:
        if predicate.exclude_device is not None:
            params.append(predicate.exclude_device)
            clauses.append(f"{table.owner_col} IS DISTINCT FROM ${len(params)}")
        if predicate.only_device is not None:
            params.append(predicate.only_device)
            clauses.append(f"{table.owner_col} = ${len(params)}")

    return " AND ".join(clauses), params


def select_records(kind: RecordKind) -> str:
    """SELECT ... FROM clause producing the columns ``_record`` expects."""
    table = _TABLES[kind]
    owner = table.owner_col or "NULL"
    extra = f", {table.columns}" if table.columns else ""
    return (
        f"SELECT {table.id_col} AS id, {table.voided_col} AS voided, "
        f"{table.modified_col} AS modified, {owner} AS owner_device, "
        f"{table.location_col} AS location_id{extra} "
        f"FROM {table.source}"
    )


def _json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None


class PostgresRecordStore:
    """asyncpg-backed record store shared by sync, matching and error logging."""

    def __init__(self, images: ImageStore | None = None, visit_type: str | None = None) -> None:
        self._images = images
        self._visit_type = visit_type

    @property
    def visit_type(self) -> str:
        return self._visit_type or get_policy().sync.visit_type

    # ------------------------------------------------------------------
    # LocationDirectory
    # ------------------------------------------------------------------

    async def list_locations(self) -> list[Location]:
        rows = await fetch(
            "SELECT id, name, country, cluster, site_code, country_code "
            "FROM locations WHERE NOT retired ORDER BY id"
        )
        return [
            Location(
                id=r["id"],
                name=r["name"],
                country=r["country"],
                cluster=r["cluster"],
                site_code=r["site_code"],
                country_code=r["country_code"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # RecordSource
    # ------------------------------------------------------------------

    async def fetch_records(self, predicate: SyncPredicate, limit: int) -> list[StoredRecord]:
        table = _TABLES[predicate.kind]
        where, params = build_where(predicate, self.visit_type)
        params.append(limit)
        rows = await fetch(
            f"""
            {select_records(predicate.kind)}
            WHERE {where}
            ORDER BY {table.modified_col}, {table.id_col}
            LIMIT ${len(params)}
            """,
            *params,
        )
        return await self._records(predicate.kind, rows)

    async def fetch_by_ids(self, kind: RecordKind, ids: frozenset[str]) -> list[StoredRecord]:
        table = _TABLES[kind]
        rows = await fetch(
            f"""
            {select_records(kind)}
            WHERE {table.id_col} = ANY($1::text[])
            ORDER BY {table.modified_col}, {table.id_col}
            """,
            sorted(ids),
        )
        return await self._records(kind, rows)

    async def _records(self, kind: RecordKind, rows: list[asyncpg.Record]) -> list[StoredRecord]:
        if kind is RecordKind.image:
            return list(await asyncio.gather(*(self._image_record(r) for r in rows)))
        return [self._record(kind, r) for r in rows]

    async def count_by_voided(self, predicate: SyncPredicate) -> dict[bool, int]:
        table = _TABLES[predicate.kind]
        where, params = build_where(predicate, self.visit_type)
        rows = await fetch(
            f"""
            SELECT {table.voided_col} AS voided, count(*) AS n
            FROM {table.source}
            WHERE {where}
            GROUP BY {table.voided_col}
            """,
            *params,
        )
        return {bool(r["voided"]): int(r["n"]) for r in rows}

    async def count_records(self, predicate: SyncPredicate) -> int:
        table = _TABLES[predicate.kind]
        where, params = build_where(predicate, self.visit_type)
        value = await fetchval(f"SELECT count(*) FROM {table.source} WHERE {where}", *params)
        return int(value or 0)

    def _record(self, kind: RecordKind, row: asyncpg.Record, payload: dict | None = None) -> StoredRecord:
        modified_at = to_epoch_millis(row["modified"])
        if payload is None:
            payload = self._payload(kind, row, modified_at)
        return StoredRecord(
            id=row["id"],
            kind=kind,
            voided=bool(row["voided"]),
            modified_at=modified_at,
            owner_device=row["owner_device"],
            location_id=row["location_id"],
            payload=payload,
        )

    @staticmethod
    def _payload(kind: RecordKind, row: asyncpg.Record, modified_at: int) -> dict[str, Any]:
        if row["voided"]:
            return {"uuid": row["id"], "dateModified": modified_at}
        if kind is RecordKind.participant:
            return {
                "participantUuid": row["id"],
                "participantId": row["participant_id"],
                "gender": row["gender"],
                "birthDate": _iso(row["birth_date"]),
                "addresses": _json(row["addresses"]) or [],
                "attributes": _json(row["attributes"]) or [],
                "dateModified": modified_at,
            }
        if kind is RecordKind.visit:
            return {
                "visitUuid": row["id"],
                "participantUuid": row["participant_uuid"],
                "locationUuid": row["location_id"],
                "visitType": row["visit_type"],
                "startDatetime": _iso(row["start_at"]),
                "attributes": _json(row["attributes"]) or [],
                "observations": _json(row["observations"]) or [],
                "dateModified": modified_at,
            }
        if kind is RecordKind.template:
            return {
                "participantUuid": row["id"],
                "biometricsTemplate": row["template"],
                "dateModified": modified_at,
            }
        return {"participantUuid": row["id"], "dateModified": modified_at}

    async def _image_record(self, row: asyncpg.Record) -> StoredRecord:
        modified_at = to_epoch_millis(row["modified"])
        if row["voided"]:
            return self._record(RecordKind.image, row)
        image = None
        if self._images is not None:
            image = await self._images.fetch_participant_image(row["owner_device"], row["id"])
        payload = {"participantUuid": row["id"], "image": image, "dateModified": modified_at}
        return self._record(RecordKind.image, row, payload)

    # ------------------------------------------------------------------
    # BiographicSearch
    # ------------------------------------------------------------------

    _PARTICIPANT_SELECT = (
        "SELECT p.uuid, p.participant_id, p.gender, p.birth_date, p.phone, "
        "p.location_id, p.addresses, l.country, "
        + _ATTRIBUTES.format(table="participant_attributes", fk="participant_uuid", owner="p.uuid")
        + " AS attributes "
        "FROM participants p LEFT JOIN locations l ON l.id = p.location_id "
    )

    async def find_by_phone(self, phone: str) -> list[BiographicRecord]:
        rows = await fetch(
            self._PARTICIPANT_SELECT + "WHERE p.phone = $1 AND NOT p.voided ORDER BY p.uuid",
            phone,
        )
        return [self._biographic(r) for r in rows]

    async def find_by_participant_id(self, participant_id: str) -> list[BiographicRecord]:
        rows = await fetch(
            self._PARTICIPANT_SELECT + "WHERE p.participant_id = $1 AND NOT p.voided ORDER BY p.uuid",
            participant_id,
        )
        return [self._biographic(r) for r in rows]

    @staticmethod
    def _biographic(row: asyncpg.Record) -> BiographicRecord:
        return BiographicRecord(
            id=row["participant_id"],
            uuid=row["uuid"],
            location_id=row["location_id"],
            country=row["country"],
            gender=row["gender"],
            birth_date=_iso(row["birth_date"]),
            phone=row["phone"],
            attributes=_json(row["attributes"]) or [],
            addresses=_json(row["addresses"]) or [],
        )

    # ------------------------------------------------------------------
    # DeviceErrorRepository
    # ------------------------------------------------------------------

    async def get_device(self, device_id: str) -> str | None:
        row = await fetchrow(
            "SELECT id FROM devices WHERE device_id = $1 AND NOT voided", device_id
        )
        return str(row["id"]) if row else None

    async def register_device(self, device_id: str) -> str:
        async with get_connection() as conn:
            device_ref = await conn.fetchval(
                """
                INSERT INTO devices (device_id, name) VALUES ($1, $1)
                ON CONFLICT (device_id) DO UPDATE SET voided = false
                RETURNING id
                """,
                device_id,
            )
        return str(device_ref)

    async def add_errors(self, device_ref: str, errors: list[DeviceError]) -> None:
        async with get_connection() as conn:
            await conn.executemany(
                """
                INSERT INTO device_errors (
                    device_ref, key, meta_type, meta_subtype, stack_trace, reported_at, metadata
                ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                """,
                [
                    (
                        int(device_ref),
                        e.key,
                        e.meta_type,
                        e.meta_subtype,
                        e.stack_trace,
                        e.reported_at,
                        json.dumps(e.metadata) if e.metadata is not None else None,
                    )
                    for e in errors
                ],
            )

    async def void_errors(self, device_ref: str, key: str, reason: str) -> int:
        async with get_connection() as conn:
            result = await conn.execute(
                """
                UPDATE device_errors
                SET voided = true, void_reason = $3, date_voided = NOW()
                WHERE device_ref = $1 AND key = $2 AND NOT voided
                """,
                int(device_ref), key, reason,
            )
        # asyncpg status string: "UPDATE <n>"
        return int(result.split()[-1])
