"""Resolve a sync request's country / cluster / site scope to location ids.

The scope is a precedence chain, not a set: a non-blank site wins over a
cluster, which wins over a country.  Every narrower level is validated
against the country named in the request.  Country and cluster names are
compared case-insensitively.

The country → locations and cluster → locations maps are built from the
location directory once per call, or reused for ``cache_ttl_seconds`` when a
TTL is configured.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from src.sync.errors import NotFoundError, ValidationError
from src.sync.models import Location, LocationScope, SyncCursor
from src.sync.store import LocationDirectory

logger = logging.getLogger("fieldsync.sync.location_scope")


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _key(value: str) -> str:
    return value.strip().casefold()


@dataclass
class LocationMaps:
    """Lookup tables derived from one snapshot of the location directory."""

    by_country: dict[str, list[str]] = field(default_factory=dict)
    by_cluster: dict[str, list[str]] = field(default_factory=dict)
    by_id: dict[str, Location] = field(default_factory=dict)

    @classmethod
    def build(cls, locations: list[Location]) -> LocationMaps:
        by_country: dict[str, list[str]] = defaultdict(list)
        by_cluster: dict[str, list[str]] = defaultdict(list)
        by_id: dict[str, Location] = {}
        for location in locations:
            by_id[location.id] = location
            if not _is_blank(location.country):
                by_country[_key(location.country)].append(location.id)
            if not _is_blank(location.cluster):
                by_cluster[_key(location.cluster)].append(location.id)
        return cls(by_country=dict(by_country), by_cluster=dict(by_cluster), by_id=by_id)


class LocationScopeResolver:
    """Turn a LocationScope into a concrete, validated set of location ids.

    Usage::

        resolver = LocationScopeResolver(directory, cache_ttl_seconds=300)
        location_ids = await resolver.resolve(scope, cursor)
    """

    def __init__(
        self,
        directory: LocationDirectory,
        cache_ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._directory = directory
        self._ttl = cache_ttl_seconds
        self._clock = clock
        self._maps: LocationMaps | None = None
        self._built_at = 0.0

    async def resolve(
        self, scope: LocationScope, cursor: SyncCursor | None = None
    ) -> frozenset[str]:
        """Validate the scope (and cursor, if given) and return its location ids.

        Raises:
            ValidationError: Unknown country, site outside the country, unknown
                             cluster or cluster in another country, non-positive
                             limit, or a missing ``known_at_cursor``.
            NotFoundError:   The scope resolves to no locations.
        """
        if cursor is not None:
            validate_cursor(cursor)

        maps = await self.maps()

        if _is_blank(scope.country) or _key(scope.country) not in maps.by_country:
            raise ValidationError("Invalid request. Please verify the country")
        country_key = _key(scope.country)
        country_locations = maps.by_country[country_key]

        if not _is_blank(scope.site):
            site = scope.site.strip()
            if site not in country_locations:
                raise ValidationError(
                    "Invalid request. Site details not correct or site not mapped for the given country"
                )
            location_ids = frozenset({site})
        elif not _is_blank(scope.cluster):
            cluster_locations = maps.by_cluster.get(_key(scope.cluster))
            if not cluster_locations:
                raise ValidationError(
                    "Invalid request. Cluster not found or no locations tagged for the given cluster"
                )
            for location_id in cluster_locations:
                country = maps.by_id[location_id].country
                if _is_blank(country) or _key(country) != country_key:
                    raise ValidationError(
                        "Invalid request. Cluster not mapped to the country mentioned in the request"
                    )
            location_ids = frozenset(cluster_locations)
        else:
            location_ids = frozenset(country_locations)

        if not location_ids:
            raise NotFoundError("Location not found for the given sync scope")

        logger.debug(
            "Resolved scope country=%s cluster=%s site=%s to %d location(s)",
            scope.country, scope.cluster, scope.site, len(location_ids),
        )
        return location_ids

    async def maps(self) -> LocationMaps:
        """Return the current lookup maps, rebuilding them when stale."""
        now = self._clock()
        if self._maps is not None and self._ttl > 0 and now - self._built_at < self._ttl:
            return self._maps

        start = time.perf_counter()
        maps = LocationMaps.build(await self._directory.list_locations())
        logger.info(
            "Built location maps: %d countries, %d clusters in %.1f ms",
            len(maps.by_country),
            len(maps.by_cluster),
            (time.perf_counter() - start) * 1000,
        )
        if self._ttl > 0:
            self._maps = maps
            self._built_at = now
        return maps

    def invalidate(self) -> None:
        """Drop any cached maps so the next call re-reads the directory."""
        self._maps = None


def validate_cursor(cursor: SyncCursor) -> None:
    """Reject cursors with a non-positive limit or no ``known_at_cursor`` set.

    Raises:
        ValidationError: If the cursor is unusable.
    """
    if cursor.limit <= 0:
        raise ValidationError("Invalid request. limit must be greater than 0")
    if cursor.known_at_cursor is None:
        raise ValidationError("Invalid request. knownAtCursor is required (may be empty)")
