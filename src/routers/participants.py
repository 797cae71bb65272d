"""Participant matching endpoint."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, File, Form, UploadFile

from src.dependencies import MatcherDep
from src.models.participants import MatchResultRead

router = APIRouter(prefix="/participants", tags=["participants"])


@router.post("/match", response_model=list[MatchResultRead])
async def match_participant(
    matcher: MatcherDep,
    phone: str | None = Form(default=None),
    participant_id: str | None = Form(default=None, alias="participantId"),
    country: str | None = Form(default=None),
    template: UploadFile | None = File(default=None),
) -> Any:
    """Match a participant by phone, participant id, biometric template, or a combination.

    With MFA enabled the template is only matched against the participants
    found by phone / participant id.  A biometric server outage never fails
    the request; matches then come from the biographic search alone.
    """
    template_bytes = await template.read() if template is not None else None
    results = await matcher.match(
        phone=phone,
        external_id=participant_id,
        template=template_bytes,
        country=country,
    )
    return [MatchResultRead.from_result(r) for r in results]
