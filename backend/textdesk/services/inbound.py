"""Inbound SMS webhook handling: STOP/START compliance and conversation threading.

Each inbound message is classified as a STOP keyword, a START keyword, or
an ordinary message:

    STOP     → opt-out ledger row (if absent), consent withdrawn,
               message threaded, unsubscribe confirmation sent back
    START    → ledger row removed, consent restored, message threaded,
               resubscribe confirmation sent back
    ordinary → message threaded with unread count + 1, empty acknowledgement

The carrier delivers webhooks at least once and retries on any non-200 or
slow answer, so the handler always returns valid TwiML and never raises.
A delivery whose MessageSid is already stored as an inbound message is a
retry: it gets the same acknowledgement again and changes nothing.
"""

import logging
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session
from twilio.twiml.messaging_response import MessagingResponse

from textdesk.services.consent import (
    START_KEYWORD_METHOD,
    STOP_KEYWORD_METHOD,
    record_opt_in,
    record_opt_out,
)
from textdesk.services.conversations import (
    find_or_create_conversation,
    publish_message_changes,
    record_inbound_message,
)
from textdesk.models.sms_message import SmsMessage
from textdesk.services.phone import normalize_phone
from textdesk.services.telephony.models import InboundSmsPayload

logger = logging.getLogger(__name__)

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'

STOP_KEYWORDS: frozenset[str] = frozenset({"stop", "stopall", "unsubscribe", "cancel", "end", "quit"})
START_KEYWORDS: frozenset[str] = frozenset({"start", "unstop", "subscribe", "yes"})

STOP_CONFIRMATION = (
    "You have been unsubscribed and will no longer receive SMS messages from us. "
    "Reply START to resubscribe."
)
START_CONFIRMATION = (
    "You have been resubscribed and will receive SMS messages from us again. "
    "Reply STOP to unsubscribe."
)


class InboundKind(str, Enum):
    STOP = "stop"
    START = "start"
    ORDINARY = "ordinary"


def classify_message(body: str | None) -> InboundKind:
    """Exact, case-insensitive keyword match on the trimmed body."""
    keyword = (body or "").strip().lower()
    if keyword in STOP_KEYWORDS:
        return InboundKind.STOP
    if keyword in START_KEYWORDS:
        return InboundKind.START
    return InboundKind.ORDINARY


def reply_twiml(message: str) -> str:
    response = MessagingResponse()
    response.message(message)
    return str(response)


def acknowledgement(kind: InboundKind) -> str:
    if kind is InboundKind.STOP:
        return reply_twiml(STOP_CONFIRMATION)
    if kind is InboundKind.START:
        return reply_twiml(START_CONFIRMATION)
    return EMPTY_TWIML


def is_redelivery(db: Session, message_sid: str) -> bool:
    """True if an inbound message with this carrier SID is already stored."""
    existing = db.execute(
        select(SmsMessage.id)
        .where(SmsMessage.twilio_sid == message_sid, SmsMessage.direction == "inbound")
        .limit(1)
    ).first()
    return existing is not None


def handle_inbound_sms(db: Session, payload: InboundSmsPayload) -> str:
    """Process one inbound SMS and return the TwiML to answer the carrier with.

    Never raises: any internal failure is logged, the transaction rolled
    back, and the empty acknowledgement returned.
    """
    try:
        return _process_inbound(db, payload)
    except Exception:
        logger.exception("Error handling inbound SMS sid=%s from=%s", payload.MessageSid, payload.From)
        try:
            db.rollback()
        except Exception:
            logger.exception("Rollback failed after inbound SMS error")
        return EMPTY_TWIML


def _process_inbound(db: Session, payload: InboundSmsPayload) -> str:
    if not payload.MessageSid or not payload.From or not payload.Body:
        logger.error("Missing required webhook fields: sid=%r from=%r", payload.MessageSid, payload.From)
        return EMPTY_TWIML

    from_number = normalize_phone(payload.From)
    if from_number is None:
        logger.error("Inbound SMS sid=%s from unparseable number %r", payload.MessageSid, payload.From)
        return EMPTY_TWIML
    to_number = normalize_phone(payload.To) or payload.To

    kind = classify_message(payload.Body)
    trimmed = payload.Body.strip()

    if is_redelivery(db, payload.MessageSid):
        logger.info("Inbound SMS sid=%s already processed, acknowledging retry", payload.MessageSid)
        return acknowledgement(kind)

    logger.info(
        "Inbound SMS: sid=%s from=%s to=%s kind=%s body_len=%d",
        payload.MessageSid,
        from_number,
        to_number,
        kind.value,
        len(payload.Body),
    )

    if kind is InboundKind.STOP:
        record_opt_out(db, from_number, method=STOP_KEYWORD_METHOD, notes=f"Received: {trimmed}", commit=False)
    elif kind is InboundKind.START:
        record_opt_in(db, from_number, method=START_KEYWORD_METHOD, commit=False)

    conversation, created = find_or_create_conversation(db, from_number)
    message = record_inbound_message(
        db,
        conversation,
        body=payload.Body,
        from_number=from_number,
        to_number=to_number,
        twilio_sid=payload.MessageSid,
        status=payload.SmsStatus or "received",
        increment_unread=kind is InboundKind.ORDINARY,
    )
    db.commit()
    publish_message_changes(conversation, message, created)

    if kind is InboundKind.STOP:
        logger.info("Opt-out processed for %s", from_number)
    elif kind is InboundKind.START:
        logger.info("Opt-in processed for %s", from_number)
    return acknowledgement(kind)
