"""Pydantic models for participant matching."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from src.linkage.models import MatchResult, Provenance
from src.models.base import FieldSyncBase


class MatchResultRead(FieldSyncBase):
    participant_uuid: str | None = None
    participant_id: str
    gender: str | None = None
    birth_date: str | None = None
    addresses: list[dict[str, Any]] = Field(default_factory=list)
    attributes: list[dict[str, Any]] = Field(default_factory=list)
    match_with: Provenance
    matching_score: int = 0

    @classmethod
    def from_result(cls, result: MatchResult) -> MatchResultRead:
        record = result.record
        return cls(
            participant_uuid=record.uuid,
            participant_id=result.id,
            gender=record.gender,
            birth_date=record.birth_date,
            addresses=record.addresses,
            attributes=record.attributes,
            match_with=result.provenance,
            matching_score=result.score,
        )
