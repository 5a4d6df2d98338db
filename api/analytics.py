"""
Usage analytics API endpoints
Aggregated completion usage and estimated cost from the usage_tracking table
"""

import asyncio
import logging
from fastapi import APIRouter, Depends, Query, HTTPException
from api.dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/usage", tags=["analytics"])


@router.get("/stats")
async def get_usage_stats(
    days: int = Query(7, ge=1, le=90, description="Number of days to look back"),
    services: Services = Depends(get_services)
):
    """
    Get usage statistics

    Returns:
        - totalRequests, totalTokens, totalCost
        - avgResponseTime, errorRate
        - byModel / byTier breakdowns
    """
    if not services.usage_tracker.supabase:
        raise HTTPException(status_code=503, detail="Usage tracking not configured")

    stats = await asyncio.to_thread(services.usage_tracker.get_usage_stats, days)
    if stats is None:
        raise HTTPException(status_code=500, detail="Error fetching usage stats")

    return {"days": days, **stats}
