"""
Contact API endpoints
Contact header plus the read-only tools used by the chat UI
"""

import asyncio
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from api.dependencies import Services, get_services
from services.fact_resolvers import format_official_address
from services.intent_classifier import clamp
from utils.error_handler import InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["contacts"])

ORDER_TOOL_FIELDS = ("id", "order_id", "order_date", "status", "order_total", "tracking_link", "invoice_link")


async def resolve_contact_id(store, contact_id: Optional[str], external_id: Optional[str]) -> str:
    """Internal id from ?contactId, or looked up from the CRM id in ?ghlContactId"""
    if contact_id:
        return contact_id
    if not external_id:
        raise InvalidRequestError("Provide contactId or ghlContactId")
    resolved = await asyncio.to_thread(store.find_contact_id, external_id)
    if not resolved:
        raise NotFoundError("Contact not found for that GHL id", details={"ghl_contact_id": external_id})
    return resolved


@router.get("/contacts/{contact_id}")
async def get_contact(contact_id: str, services: Services = Depends(get_services)):
    """Get a contact by internal id"""
    contact = await asyncio.to_thread(services.store.get_contact, contact_id)
    if not contact:
        raise NotFoundError(f"Contact not found: {contact_id}", details={"contact_id": contact_id})
    return contact


@router.get("/tools/get_profile")
async def get_profile(
    contactId: Optional[str] = Query(None),
    ghlContactId: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """Contact basics with a summary of the latest order"""
    store = services.store
    contact_id = await resolve_contact_id(store, contactId, ghlContactId)

    contact, order = await asyncio.gather(
        asyncio.to_thread(store.get_contact, contact_id),
        asyncio.to_thread(store.get_latest_order, contact_id),
    )
    if not contact:
        raise NotFoundError(f"Contact not found: {contact_id}", details={"contact_id": contact_id})

    return {
        "contact": {
            k: contact.get(k)
            for k in ("id", "external_id", "name", "email", "phone", "company", "last_activity_at")
        },
        "latest_order_summary": {
            "order_id": order["order_id"],
            "order_date": order.get("order_date"),
            "order_total": order.get("order_total"),
            "official_shipping_address": format_official_address(order),
        } if order else None
    }


@router.get("/tools/get_orders")
async def get_orders(
    contactId: Optional[str] = Query(None),
    ghlContactId: Optional[str] = Query(None),
    limit: int = Query(10),
    services: Services = Depends(get_services)
):
    """Most recent orders of a contact"""
    contact_id = await resolve_contact_id(services.store, contactId, ghlContactId)
    orders = await asyncio.to_thread(services.store.get_recent_orders, contact_id, clamp(limit, 1, 50))
    return {"orders": [{k: o.get(k) for k in ORDER_TOOL_FIELDS} for o in orders]}


@router.get("/tools/get_last_conversations")
async def get_last_conversations(
    contactId: Optional[str] = Query(None),
    ghlContactId: Optional[str] = Query(None),
    limit: int = Query(10),
    services: Services = Depends(get_services)
):
    """Most recent messages of a contact, newest first"""
    contact_id = await resolve_contact_id(services.store, contactId, ghlContactId)
    messages = await asyncio.to_thread(services.store.get_recent_messages, contact_id, clamp(limit, 1, 50))
    return {
        "contactId": contact_id,
        "count": len(messages),
        "messages": [
            {
                "id": m.get("external_message_id"),
                "conversation_id": m.get("conversation_id"),
                "channel": m.get("channel"),
                "direction": m.get("direction"),
                "sender": m.get("sender"),
                "type": m.get("message_type"),
                "status": m.get("status"),
                "body": m.get("body"),
                "occurred_at": m.get("occurred_at"),
            }
            for m in messages
        ]
    }
