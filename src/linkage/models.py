"""Value objects for record linkage.

A match request produces candidates from two independent sources: the
biographic record store (phone / participant id search) and the biometric
oracle (template search).  Candidates are merged into one ``MatchResult``
per participant, tagged with where the match came from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MatchSource(str, Enum):
    biographic = "biographic"
    biometric = "biometric"


class Provenance(str, Enum):
    """Which sources agreed on a result."""

    openmrs_only = "OPENMRS"
    both = "BOTH"


@dataclass(frozen=True)
class BiographicRecord:
    """A participant as returned by the biographic search.

    Attributes:
        id:          Participant identifier; biometric templates are enrolled
                     under this id.
        uuid:        Record uuid in the store.
        location_id: Location the participant is registered at.
        country:     Country of that location, None if it cannot be resolved.
        gender:      Gender code.
        birth_date:  ISO birth date.
        phone:       Phone number attribute.
        attributes:  Remaining person attributes as ``{"type": ..., "value": ...}``.
        addresses:   Address rows.
    """

    id: str
    uuid: str | None = None
    location_id: str | None = None
    country: str | None = None
    gender: str | None = None
    birth_date: str | None = None
    phone: str | None = None
    attributes: list[dict[str, Any]] = field(default_factory=list)
    addresses: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class MatchCandidate:
    id: str
    score: int | None
    source: MatchSource
    record: BiographicRecord | None = None


@dataclass(frozen=True)
class MatchResult:
    """One resolved identity in a match response."""

    id: str
    provenance: Provenance
    score: int
    record: BiographicRecord


@dataclass(frozen=True)
class BiometricOutcome:
    """Result of one oracle call.

    ``degraded`` is True when the oracle failed or timed out; ``candidates``
    is then empty and ``reason`` says why.  A skipped call (no template, or
    an empty MFA allow-list) is neither matched nor degraded.
    """

    candidates: tuple[MatchCandidate, ...] = ()
    degraded: bool = False
    reason: str | None = None

    @classmethod
    def matched(cls, hits: list[tuple[str, int]]) -> BiometricOutcome:
        return cls(
            candidates=tuple(
                MatchCandidate(id=hit_id, score=score, source=MatchSource.biometric)
                for hit_id, score in hits
            )
        )

    @classmethod
    def degraded_by(cls, reason: str) -> BiometricOutcome:
        return cls(degraded=True, reason=reason)

    @classmethod
    def skipped(cls) -> BiometricOutcome:
        return cls()

    def scores(self) -> dict[str, int]:
        """Map candidate id → score, first occurrence wins."""
        result: dict[str, int] = {}
        for candidate in self.candidates:
            result.setdefault(candidate.id, candidate.score or 0)
        return result
