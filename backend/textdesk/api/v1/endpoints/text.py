"""SMS/Text API endpoints: inbound webhooks and 1:1 staff conversations.

Endpoints:
    POST /webhook                          Twilio inbound SMS webhook (STOP/START handling)
    POST /status                           Twilio delivery status webhook
    POST /send                             Send a 1:1 SMS to an authorized number
    GET  /conversations                    List conversations
    GET  /conversations/{id}/messages      Messages in a conversation
    POST /conversations/{id}/read          Reset the unread counter
    PUT  /conversations/{id}/status        Archive or reopen a conversation
    GET  /events                           Live conversation/message changes (SSE)
"""

import json
import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from sqlalchemy.orm import Session

from textdesk.api.v1.errors import to_http_error
from textdesk.core.auth import get_admin_profile
from textdesk.core.config import settings
from textdesk.core.database import get_db
from textdesk.models.profile import Profile
from textdesk.schemas.text import (
    ConversationListResponse,
    ConversationResponse,
    ConversationStatusRequest,
    MessageListResponse,
    SmsSendRequest,
    SmsSendResponse,
)
from textdesk.services.conversations import (
    list_conversations,
    list_messages,
    mark_conversation_read,
    send_conversation_message,
    set_conversation_status,
    update_message_status,
)
from textdesk.services.errors import SmsServiceError
from textdesk.services.inbound import EMPTY_TWIML, handle_inbound_sms
from textdesk.services.realtime import change_feed
from textdesk.services.telephony import InboundSmsPayload, StatusCallbackPayload, validate_webhook_signature
from textdesk.services.telephony.exceptions import TelephonyError

logger = logging.getLogger(__name__)

router = APIRouter()

KNOWN_CARRIER_STATUSES = {
    "accepted",
    "scheduled",
    "queued",
    "sending",
    "sent",
    "delivered",
    "failed",
    "undelivered",
    "canceled",
}


def _webhook_url(request: Request, path: str) -> str:
    """URL Twilio signed: the public base URL when configured, else the URL we were reached on."""
    if settings.TWILIO_BASE_URL:
        return f"{settings.TWILIO_BASE_URL.rstrip('/')}{settings.API_V1_PREFIX}/text/{path}"
    return str(request.url)


def _signature_ok(request: Request, path: str, params: dict) -> bool:
    if not settings.TWILIO_VALIDATE_WEBHOOKS:
        return True
    signature = request.headers.get("X-Twilio-Signature", "")
    return validate_webhook_signature(settings.TWILIO_AUTH_TOKEN, _webhook_url(request, path), params, signature)


def _twiml(content: str) -> PlainTextResponse:
    return PlainTextResponse(content=content, media_type="text/xml")


# ---------------------------------------------------------------------------
# POST /webhook: Twilio inbound SMS webhook
# ---------------------------------------------------------------------------


@router.post("/webhook")
async def handle_inbound_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Handle inbound SMS from Twilio.

    Always answers 200 with valid TwiML: a STOP/START confirmation, or an
    empty <Response/> for everything else including internal errors.
    """
    try:
        form_dict = dict(await request.form())
    except Exception:
        logger.exception("Unreadable inbound SMS webhook body")
        return _twiml(EMPTY_TWIML)

    if not _signature_ok(request, "webhook", form_dict):
        logger.warning("Rejected inbound SMS webhook with invalid signature (sid=%s)", form_dict.get("MessageSid"))
        return _twiml(EMPTY_TWIML)

    payload = InboundSmsPayload(
        MessageSid=form_dict.get("MessageSid", ""),
        From=form_dict.get("From", ""),
        To=form_dict.get("To", ""),
        Body=form_dict.get("Body", ""),
        SmsStatus=form_dict.get("SmsStatus"),
        NumMedia=form_dict.get("NumMedia"),
    )
    return _twiml(handle_inbound_sms(db, payload))


# ---------------------------------------------------------------------------
# POST /status: Twilio delivery status webhook
# ---------------------------------------------------------------------------


@router.post("/status")
async def handle_status_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Handle SMS delivery status updates from Twilio.

    Updates both conversation messages and campaign audit rows carrying the
    SID. Settled rows are never moved out of their terminal status.
    """
    form_dict = dict(await request.form())

    if not _signature_ok(request, "status", form_dict):
        logger.warning("Rejected status webhook with invalid signature (sid=%s)", form_dict.get("MessageSid"))
        return {"status": "ignored", "reason": "invalid signature"}

    payload = StatusCallbackPayload(
        MessageSid=form_dict.get("MessageSid", ""),
        MessageStatus=form_dict.get("MessageStatus", ""),
        ErrorCode=form_dict.get("ErrorCode") or None,
        ErrorMessage=form_dict.get("ErrorMessage") or None,
    )

    logger.info("SMS status webhook: sid=%s status=%s", payload.MessageSid, payload.MessageStatus)

    if not payload.MessageSid or not payload.MessageStatus:
        return {"status": "ignored", "reason": "missing MessageSid or MessageStatus"}

    if payload.MessageStatus not in KNOWN_CARRIER_STATUSES:
        logger.warning("Unknown SMS status: %s", payload.MessageStatus)
        return {"status": "ignored", "reason": f"unknown status: {payload.MessageStatus}"}

    updated = update_message_status(
        db,
        payload.MessageSid,
        payload.MessageStatus,
        error_code=payload.ErrorCode,
        error_message=payload.ErrorMessage,
    )
    if updated == 0:
        return {"status": "ignored", "reason": "message not found"}

    return {"status": "ok", "message_status": payload.MessageStatus, "updated": updated}


# ---------------------------------------------------------------------------
# POST /send: 1:1 outbound SMS
# ---------------------------------------------------------------------------


@router.post("/send", response_model=SmsSendResponse, status_code=201)
async def send_sms(
    payload: SmsSendRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    """Send a staff message to an authorized, non-opted-out number."""
    base_url = settings.TWILIO_BASE_URL
    status_callback = f"{base_url.rstrip('/')}{settings.API_V1_PREFIX}/text/status" if base_url else None

    try:
        message = await send_conversation_message(
            db,
            to=payload.to,
            body=payload.body,
            sent_by=admin.id,
            status_callback=status_callback,
        )
    except (SmsServiceError, TelephonyError) as exc:
        if not isinstance(exc, SmsServiceError):
            logger.error("SMS send failed: %s", exc)
        raise to_http_error(exc, compliance_status=400) from exc

    return SmsSendResponse(
        message_id=message.id,
        twilio_sid=message.twilio_sid or "",
        conversation_id=message.conversation_id,
        status=message.status,
    )


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


@router.get("/conversations", response_model=ConversationListResponse)
def get_conversations(
    status: str = Query("active", pattern="^(active|archived|all)$"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """List conversations, most recent activity first."""
    items, total = list_conversations(
        db,
        status=None if status == "all" else status,
        page=page,
        page_size=page_size,
    )
    return ConversationListResponse(items=items, total=total, page=page, page_size=page_size)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
def get_conversation_messages(
    conversation_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """List messages in a conversation, ordered chronologically."""
    try:
        items, total = list_messages(db, conversation_id, page=page, page_size=page_size)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc
    return MessageListResponse(items=items, total=total, page=page, page_size=page_size)


@router.post("/conversations/{conversation_id}/read", response_model=ConversationResponse)
def mark_read(
    conversation_id: uuid.UUID,
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    try:
        return mark_conversation_read(db, conversation_id)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


@router.put("/conversations/{conversation_id}/status", response_model=ConversationResponse)
def update_conversation_status(
    conversation_id: uuid.UUID,
    payload: ConversationStatusRequest,
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """Archive or reopen a conversation."""
    try:
        return set_conversation_status(db, conversation_id, payload.status)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


# ---------------------------------------------------------------------------
# GET /events: live change stream
# ---------------------------------------------------------------------------


@router.get("/events")
async def stream_events(
    conversation_id: uuid.UUID | None = Query(None, description="Stream this conversation's messages"),
    _admin: Profile = Depends(get_admin_profile),
):
    """Server-Sent Events for conversation list or thread updates.

    Without ``conversation_id`` the stream carries conversation changes;
    with it, message changes in that conversation.
    """
    if conversation_id is None:
        table, filters = "sms_conversations", None
    else:
        table, filters = "sms_messages", {"conversation_id": conversation_id}

    async def event_generator():
        async for event in change_feed.iter_events(table, filters):
            data = {"table": event.table, "event": event.event, "record": event.record}
            yield f"event: change\ndata: {json.dumps(data, default=str)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
