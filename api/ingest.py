"""
CRM ingestion webhooks
Orders and conversation messages pushed by the CRM
"""

import logging
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from api.dependencies import Services, get_services, rate_limited

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/ingest",
    tags=["ingest"],
    dependencies=[Depends(rate_limited("ingest"))]
)


class OrderWebhook(BaseModel):
    ghl_contact_id: Optional[str] = None
    contact: Optional[Dict[str, Any]] = None
    order: Optional[Dict[str, Any]] = None


class ConversationWebhook(BaseModel):
    ghl_contact_id: Optional[str] = None
    contact: Optional[Dict[str, Any]] = None
    message: Optional[Dict[str, Any]] = None


@router.post("/order")
async def ingest_order(payload: OrderWebhook, services: Services = Depends(get_services)):
    """Upsert an order and its contact"""
    contact_id = await services.ingestion.ingest_order(payload.ghl_contact_id, payload.order, payload.contact)
    return {"ok": True, "contactId": contact_id}


@router.post("/conversation")
async def ingest_conversation(payload: ConversationWebhook, services: Services = Depends(get_services)):
    """Upsert a conversation message"""
    contact_id = await services.ingestion.ingest_conversation(
        payload.ghl_contact_id, payload.message, payload.contact
    )
    return {"ok": True, "contactId": contact_id}
