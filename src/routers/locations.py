"""Location listing used by devices to choose a country / cluster / site scope."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from src.dependencies import RecordLookupDep
from src.models.sync import LocationList, LocationRead

router = APIRouter(tags=["locations"])


@router.get("/location", response_model=LocationList)
async def list_locations(lookup: RecordLookupDep) -> Any:
    """Every active location, ordered by country then name."""
    locations = await lookup.locations()
    return LocationList(results=[LocationRead.from_location(loc) for loc in locations])
