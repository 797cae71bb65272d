"""Biometric oracle client.

The oracle is an external matching server holding enrolled templates keyed
by participant id.  It is the only dependency of a match request that can
block for long, so every call goes through ``query_oracle`` with a deadline,
and any failure turns into a degraded ``BiometricOutcome`` instead of an
error.

Endpoint used:
    POST {base_url}/match
        request:  {"template": <base64>, "allowList": [ids] | null, "threshold": int}
        response: {"matches": [{"id": str, "score": int}, ...]}
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Protocol

import httpx

from src.linkage.models import BiometricOutcome
from src.sync.errors import UpstreamDegraded

logger = logging.getLogger("fieldsync.linkage.oracle")


class BiometricOracle(Protocol):
    async def match(
        self, template: bytes, allow_list: frozenset[str] | None = None
    ) -> list[tuple[str, int]]:
        """Return ``(participant_id, score)`` pairs for a template.

        ``allow_list`` restricts the search to those ids; None searches
        every enrolled template.
        """
        ...


class HttpBiometricOracle:
    """Oracle reached over HTTP JSON."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        threshold: int = 40,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:    Matching server root URL.
            api_key:     Sent as a Bearer token when non-empty.
            threshold:   Minimum score the server should report.
            http_client: Optional shared client (tests pass one with a mock transport).
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._threshold = threshold
        self._http_client = http_client

    def _build_headers(self) -> dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    async def match(
        self, template: bytes, allow_list: frozenset[str] | None = None
    ) -> list[tuple[str, int]]:
        """Run one identification against the matching server.

        Raises:
            UpstreamDegraded: On transport errors, non-2xx responses or a
                              malformed body.
        """
        url = f"{self._base_url}/match"
        body = {
            "template": base64.b64encode(template).decode("ascii"),
            "allowList": sorted(allow_list) if allow_list is not None else None,
            "threshold": self._threshold,
        }
        try:
            if self._http_client:
                response = await self._http_client.post(url, json=body, headers=self._build_headers())
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=body, headers=self._build_headers())
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise UpstreamDegraded(
                f"Matching server returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamDegraded(f"Matching server unreachable: {exc}") from exc
        except ValueError as exc:
            raise UpstreamDegraded("Matching server returned invalid JSON") from exc

        try:
            return [(str(hit["id"]), int(hit["score"])) for hit in data.get("matches") or []]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UpstreamDegraded("Matching server returned a malformed match list") from exc


async def query_oracle(
    oracle: BiometricOracle,
    template: bytes,
    allow_list: frozenset[str] | None,
    timeout: float,
) -> BiometricOutcome:
    """Call the oracle under a deadline and never raise.

    Returns:
        A matched outcome, or a degraded one when the oracle failed or did
        not answer within ``timeout`` seconds.
    """
    try:
        hits = await asyncio.wait_for(oracle.match(template, allow_list), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Biometric match timed out after %.1fs; continuing without it", timeout)
        return BiometricOutcome.degraded_by(f"timeout after {timeout}s")
    except Exception as exc:
        logger.warning("Biometric match failed (%s); continuing without it", exc)
        return BiometricOutcome.degraded_by(str(exc))
    return BiometricOutcome.matched(hits)
