"""Record-linkage matcher.

Merges phone search, participant-id search and biometric template search
into one deduplicated, provenance-tagged list of participants.

Steps per request:
1. Biographic merge: phone and id searches run concurrently; results are
   merged by id, first occurrence wins.
2. Country gate (cross-country deployments only): hits registered in a
   different country than the request are dropped.
3. Biometric query: with MFA the oracle only searches the surviving
   biographic ids; without MFA it searches globally.  Oracle failures
   degrade to an empty biometric result.
4. Fan-in: biographic hits are tagged BOTH when the oracle also matched
   them, else OPENMRS with score 0.  With no biographic hits, each oracle
   hit is looked up by participant id and tagged BOTH.
5. Final dedupe by id.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Protocol

from src.config_loader import MatchingSettings, get_policy
from src.linkage.models import BiographicRecord, BiometricOutcome, MatchResult, Provenance
from src.linkage.oracle import BiometricOracle, query_oracle
from src.sync.errors import ValidationError

logger = logging.getLogger("fieldsync.linkage.matcher")


class BiographicSearch(Protocol):
    async def find_by_phone(self, phone: str) -> list[BiographicRecord]:
        ...

    async def find_by_participant_id(self, participant_id: str) -> list[BiographicRecord]:
        ...


def _present(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def merge_first_wins(*groups: Iterable[BiographicRecord]) -> list[BiographicRecord]:
    """Concatenate record lists, keeping the first record seen for each id."""
    merged: dict[str, BiographicRecord] = {}
    for group in groups:
        for record in group:
            merged.setdefault(record.id, record)
    return list(merged.values())


class RecordLinkageMatcher:
    """Find the participants matching a phone, participant id and/or template.

    Usage::

        matcher = RecordLinkageMatcher(search, oracle)
        results = await matcher.match(phone="+32470000000", template=raw_bytes)
    """

    def __init__(
        self,
        search: BiographicSearch,
        oracle: BiometricOracle,
        settings: MatchingSettings | None = None,
    ) -> None:
        self._search = search
        self._oracle = oracle
        self._settings = settings

    @property
    def settings(self) -> MatchingSettings:
        return self._settings or get_policy().matching

    async def match(
        self,
        phone: str | None = None,
        external_id: str | None = None,
        template: bytes | None = None,
        country: str | None = None,
    ) -> list[MatchResult]:
        """Return one MatchResult per distinct participant.

        Raises:
            ValidationError: If phone, external id and template are all absent,
                             or the country gate is on and no country was given.
        """
        phone = _present(phone)
        external_id = _present(external_id)
        country = _present(country)
        if not template:
            template = None

        if phone is None and external_id is None and template is None:
            raise ValidationError("template/ParticipantId/Phone is required for match a participant")

        settings = self.settings
        if settings.cross_country_enabled and country is None:
            raise ValidationError(
                "template/ParticipantId/Phone/Country is required for match a participant"
            )

        biographic = self._country_gate(await self._biographic(phone, external_id), country)

        outcome = BiometricOutcome.skipped()
        if template is not None:
            allow_list: frozenset[str] | None = None
            if settings.mfa_enabled and (phone is not None or external_id is not None):
                allow_list = frozenset(record.id for record in biographic)
            # an empty allow-list would make the oracle search globally, defeating MFA
            if allow_list is not None and not allow_list:
                logger.info("MFA match: no biographic hits survived, skipping biometric search")
            else:
                outcome = await query_oracle(
                    self._oracle, template, allow_list, settings.oracle_timeout_seconds
                )

        if biographic:
            results = self._fan_in(biographic, outcome)
        else:
            results = await self._resolve_biometric(outcome, country)

        final = self._dedupe(results)
        logger.info(
            "Match phone=%s id=%s template=%s: %d biographic, %d biometric%s, %d result(s)",
            phone is not None,
            external_id is not None,
            template is not None,
            len(biographic),
            len(outcome.candidates),
            " (degraded)" if outcome.degraded else "",
            len(final),
        )
        return final

    async def _biographic(
        self, phone: str | None, external_id: str | None
    ) -> list[BiographicRecord]:
        async def _none() -> list[BiographicRecord]:
            return []

        by_phone, by_id = await asyncio.gather(
            self._search.find_by_phone(phone) if phone is not None else _none(),
            self._search.find_by_participant_id(external_id) if external_id is not None else _none(),
        )
        return merge_first_wins(by_phone, by_id)

    def _country_gate(
        self, records: list[BiographicRecord], country: str | None
    ) -> list[BiographicRecord]:
        if not self.settings.cross_country_enabled or country is None:
            return records
        wanted = country.casefold()
        kept = []
        for record in records:
            if record.country is None:
                logger.warning(
                    "Participant %s has no resolvable location country, dropped from match", record.id
                )
                continue
            if record.country.strip().casefold() == wanted:
                kept.append(record)
        return kept

    @staticmethod
    def _fan_in(
        biographic: list[BiographicRecord], outcome: BiometricOutcome
    ) -> list[MatchResult]:
        scores = outcome.scores()
        results = []
        for record in biographic:
            if record.id in scores:
                results.append(
                    MatchResult(id=record.id, provenance=Provenance.both, score=scores[record.id], record=record)
                )
            else:
                results.append(
                    MatchResult(id=record.id, provenance=Provenance.openmrs_only, score=0, record=record)
                )
        return results

    async def _resolve_biometric(
        self, outcome: BiometricOutcome, country: str | None
    ) -> list[MatchResult]:
        scores = outcome.scores()
        if not scores:
            return []
        lookups = await asyncio.gather(
            *(self._search.find_by_participant_id(hit_id) for hit_id in scores)
        )
        results = []
        for (hit_id, score), records in zip(scores.items(), lookups):
            if not records:
                logger.debug("Biometric hit %s has no participant record, dropped", hit_id)
                continue
            gated = self._country_gate(records[:1], country)
            if not gated:
                continue
            results.append(
                MatchResult(id=hit_id, provenance=Provenance.both, score=score, record=gated[0])
            )
        return results

    @staticmethod
    def _dedupe(results: list[MatchResult]) -> list[MatchResult]:
        seen: set[str] = set()
        unique = []
        for result in results:
            if result.id in seen:
                logger.warning("Duplicate participant %s in match results, dropped", result.id)
                continue
            seen.add(result.id)
            unique.append(result)
        return unique
