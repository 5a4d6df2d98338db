"""
Summary API endpoints
Daily AI summaries of a contact's activity
"""

import logging
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from api.dependencies import Services, get_services, rate_limited
from utils.error_handler import InvalidRequestError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/summaries", tags=["summaries"])


class SummaryRequest(BaseModel):
    contactId: Optional[str] = None
    forceRegenerate: bool = False


@router.post("/generate", dependencies=[Depends(rate_limited("summary"))])
async def generate_summary(request: SummaryRequest, services: Services = Depends(get_services)):
    """Return today's summary, generating it when missing or forced"""
    return await services.summaries.generate(request.contactId, force_regenerate=request.forceRegenerate)


@router.get("")
async def get_summary(
    contactId: Optional[str] = Query(None),
    day: Optional[str] = Query(None, alias="date", description="YYYY-MM-DD, defaults to today (UTC)"),
    services: Services = Depends(get_services)
):
    """Get a stored summary"""
    summary_date = _parse_day(day)
    return {"summary": await services.summaries.get_summary(contactId, summary_date)}


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise InvalidRequestError(f"Invalid date: {value}")
