"""
Chat API endpoints
Agent questions about a contact, session history and status analysis
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel
from api.dependencies import Services, get_services, rate_limited
from services.chat_service import get_session_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


class AskRequest(BaseModel):
    contactId: Optional[str] = None
    question: Optional[str] = None
    tier: Optional[str] = None
    sessionId: Optional[str] = None


class StatusRequest(BaseModel):
    contactId: Optional[str] = None
    sessionId: Optional[str] = None


@router.post("/chat/ask", dependencies=[Depends(rate_limited("ask"))])
async def ask(
    request: AskRequest,
    x_privacy_mode: Optional[str] = Header(None, alias="x-privacy-mode"),
    services: Services = Depends(get_services)
):
    """Answer a question about a contact"""
    result = await services.chat.ask(
        contact_id=request.contactId,
        question=request.question,
        tier=request.tier,
        session_id=request.sessionId,
        privacy_mode=(x_privacy_mode or "").lower() == "true"
    )
    return result.to_dict()


@router.get("/chat/session/messages")
async def session_messages(
    sessionId: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """Turn log of a chat session, oldest first"""
    return await get_session_log(services.store, sessionId)


@router.post("/analyze-status")
async def analyze_status(request: StatusRequest, services: Services = Depends(get_services)):
    """Label a conversation PAID, ACTIVE, DORMANT or UNSURE"""
    result = await services.status.analyze(contact_id=request.contactId, session_id=request.sessionId)
    logger.info(f"📊 Status {result.status} ({result.source})")
    return {
        "status": result.status,
        "source": result.source,
        "daysSinceLastMessage": result.days_since_last_message
    }
