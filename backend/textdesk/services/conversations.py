"""Conversation store: 1:1 SMS threads keyed by customer phone number."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from textdesk.core.config import settings
from textdesk.models.sms_conversation import SmsConversation
from textdesk.models.sms_message import MESSAGE_STATUSES, TERMINAL_STATUSES, SmsMessage
from textdesk.models.sms_message_audit import SmsMessageAudit
from textdesk.services.authorized_numbers import is_authorized
from textdesk.services.consent import find_profile_by_phone, is_opted_out
from textdesk.services.errors import ComplianceError, NotFoundError, ValidationError
from textdesk.services.phone import require_phone
from textdesk.services.realtime import publish_change
from textdesk.services.telephony import BaseSmsProvider, SmsResult, get_twilio_provider
from textdesk.services.telephony.exceptions import TelephonyProviderError

logger = logging.getLogger(__name__)

# Twilio reports these before a message reaches "sent"
_PENDING_CARRIER_STATUSES = {"accepted", "scheduled", "sending"}

AUDIT_TERMINAL_STATUSES = frozenset({"delivered", "failed", "undelivered", "skipped"})


def normalize_carrier_status(status: str | None) -> str:
    """Map a carrier status onto the message status vocabulary."""
    if status in MESSAGE_STATUSES:
        return status
    if status in _PENDING_CARRIER_STATUSES:
        return "queued"
    if status in {"canceled", "partially_delivered"}:
        return "undelivered"
    return "queued"


def get_conversation_by_phone(db: Session, phone: str) -> SmsConversation | None:
    return db.execute(select(SmsConversation).where(SmsConversation.customer_phone == phone)).scalar_one_or_none()


def find_or_create_conversation(db: Session, phone: str) -> tuple[SmsConversation, bool]:
    """Find the conversation for a phone number or create it.

    There is at most one conversation per number. An archived thread is
    reactivated when new traffic arrives. Returns (conversation, created).
    """
    conversation = get_conversation_by_phone(db, phone)
    if conversation is not None:
        if conversation.status != "active":
            conversation.status = "active"
        if conversation.customer_id is None:
            profile = find_profile_by_phone(db, phone)
            if profile is not None:
                conversation.customer_id = profile.id
        return conversation, False

    profile = find_profile_by_phone(db, phone)
    conversation = SmsConversation(
        customer_phone=phone,
        customer_id=profile.id if profile is not None else None,
        status="active",
        unread_count=0,
    )
    db.add(conversation)
    db.flush()
    logger.info("Created SMS conversation %s for %s", conversation.id, phone)
    return conversation, True


def record_inbound_message(
    db: Session,
    conversation: SmsConversation,
    body: str,
    from_number: str,
    to_number: str,
    twilio_sid: str | None,
    status: str = "received",
    increment_unread: bool = True,
) -> SmsMessage:
    """Append an inbound message to the thread and bump its activity.

    The unread count is incremented from the stored value. Two concurrent
    deliveries for one number can therefore lose an increment; the count is
    a UI hint, not a compliance figure.
    """
    now = datetime.now(timezone.utc)
    message = SmsMessage(
        conversation_id=conversation.id,
        direction="inbound",
        body=body,
        from_number=from_number,
        to_number=to_number,
        twilio_sid=twilio_sid,
        status=status if status in MESSAGE_STATUSES else "received",
        sent_at=now,
    )
    db.add(message)
    if increment_unread:
        conversation.unread_count = (conversation.unread_count or 0) + 1
    conversation.last_message_at = now
    db.flush()
    return message


def record_outbound_message(
    db: Session,
    conversation: SmsConversation,
    body: str,
    from_number: str,
    to_number: str,
    twilio_sid: str | None = None,
    status: str = "queued",
    error_code: str | None = None,
    error_message: str | None = None,
    sent_by: uuid.UUID | None = None,
) -> SmsMessage:
    now = datetime.now(timezone.utc)
    message = SmsMessage(
        conversation_id=conversation.id,
        direction="outbound",
        body=body,
        from_number=from_number,
        to_number=to_number,
        twilio_sid=twilio_sid,
        status=normalize_carrier_status(status),
        error_code=error_code,
        error_message=error_message,
        sent_by=sent_by,
        sent_at=now,
    )
    db.add(message)
    conversation.last_message_at = now
    db.flush()
    return message


def publish_message_changes(conversation: SmsConversation, message: SmsMessage, conversation_created: bool) -> None:
    """Notify live subscribers after a committed message insert."""
    publish_change("sms_conversations", "INSERT" if conversation_created else "UPDATE", conversation)
    publish_change("sms_messages", "INSERT", message)


async def send_conversation_message(
    db: Session,
    to: str,
    body: str,
    sent_by: uuid.UUID | None = None,
    provider: BaseSmsProvider | None = None,
    status_callback: str | None = None,
) -> SmsMessage:
    """Send a 1:1 staff message and record it in the conversation thread.

    1. Validates the number and body
    2. Refuses opted-out numbers and, when required, numbers not on the
       authorized allow-list
    3. Finds or creates the conversation
    4. Sends via the carrier; a rejection is stored as a failed message
       and re-raised
    """
    to = require_phone(to)
    body = (body or "").strip()
    if not body:
        raise ValidationError("Message body cannot be empty")

    if is_opted_out(db, to):
        raise ComplianceError("Customer has opted out of SMS communications")
    if settings.SMS_REQUIRE_AUTHORIZATION and not is_authorized(db, to):
        raise ComplianceError("Phone number is not authorized for 1:1 messaging")

    provider = provider or get_twilio_provider()
    conversation, created = find_or_create_conversation(db, to)

    try:
        result: SmsResult = await provider.send_sms(to=to, body=body, status_callback=status_callback)
    except TelephonyProviderError as exc:
        message = record_outbound_message(
            db,
            conversation,
            body=body,
            from_number=provider.default_from_number or "unknown",
            to_number=to,
            status="failed",
            error_code=exc.code,
            error_message=exc.error_message,
            sent_by=sent_by,
        )
        db.commit()
        publish_message_changes(conversation, message, created)
        logger.error("Outbound SMS to %s failed: %s", to, exc)
        raise

    message = record_outbound_message(
        db,
        conversation,
        body=body,
        from_number=result.from_number or provider.default_from_number or "unknown",
        to_number=to,
        twilio_sid=result.message_id,
        status=result.status,
        sent_by=sent_by,
    )
    db.commit()
    db.refresh(message)
    publish_message_changes(conversation, message, created)

    logger.info(
        "Outbound SMS sent: msg_id=%s twilio_sid=%s to=%s conv=%s",
        message.id,
        result.message_id,
        to,
        conversation.id,
    )
    return message


def mark_conversation_read(db: Session, conversation_id: uuid.UUID) -> SmsConversation:
    """Reset the unread counter when staff open the thread."""
    conversation = db.get(SmsConversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")

    conversation.unread_count = 0
    db.commit()
    db.refresh(conversation)
    publish_change("sms_conversations", "UPDATE", conversation)
    return conversation


def set_conversation_status(db: Session, conversation_id: uuid.UUID, status: str) -> SmsConversation:
    """Archive or reopen a thread. Messages are kept either way."""
    conversation = db.get(SmsConversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")

    conversation.status = status
    db.commit()
    db.refresh(conversation)
    publish_change("sms_conversations", "UPDATE", conversation)

    logger.info("Conversation %s status updated to %s", conversation_id, status)
    return conversation


def list_conversations(
    db: Session,
    status: str | None = "active",
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[SmsConversation], int]:
    filters = []
    if status:
        filters.append(SmsConversation.status == status)

    total = db.execute(select(func.count()).select_from(SmsConversation).where(*filters)).scalar_one()

    conversations = (
        db.execute(
            select(SmsConversation)
            .where(*filters)
            .order_by(SmsConversation.last_message_at.desc().nullslast())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return list(conversations), total


def list_messages(
    db: Session,
    conversation_id: uuid.UUID,
    page: int = 1,
    page_size: int = 50,
) -> tuple[list[SmsMessage], int]:
    """Messages in a conversation, oldest first."""
    if db.get(SmsConversation, conversation_id) is None:
        raise NotFoundError("Conversation not found")

    total = db.execute(
        select(func.count()).select_from(SmsMessage).where(SmsMessage.conversation_id == conversation_id)
    ).scalar_one()

    messages = (
        db.execute(
            select(SmsMessage)
            .where(SmsMessage.conversation_id == conversation_id)
            .order_by(SmsMessage.sent_at.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        .scalars()
        .all()
    )
    return list(messages), total


def update_message_status(
    db: Session,
    twilio_sid: str,
    new_status: str,
    error_code: str | None = None,
    error_message: str | None = None,
) -> int:
    """Apply a delivery status update to every row carrying the Twilio SID.

    Covers both conversation messages and campaign audit rows. Rows already
    in a terminal status are left untouched. Returns the number of rows
    updated.
    """
    now = datetime.now(timezone.utc)
    updated = 0
    changed: list[SmsMessage] = []

    messages = db.execute(select(SmsMessage).where(SmsMessage.twilio_sid == twilio_sid)).scalars().all()
    for message in messages:
        if message.status in TERMINAL_STATUSES:
            logger.info("Ignoring status %s for terminal message sid=%s (%s)", new_status, twilio_sid, message.status)
            continue
        message.status = normalize_carrier_status(new_status)
        if error_code:
            message.error_code = error_code
        if error_message:
            message.error_message = error_message
        message.status_checked_at = now
        changed.append(message)
        updated += 1

    audit_result = db.execute(
        update(SmsMessageAudit)
        .where(
            SmsMessageAudit.twilio_sid == twilio_sid,
            SmsMessageAudit.twilio_status.notin_(AUDIT_TERMINAL_STATUSES),
        )
        .values(
            twilio_status=new_status,
            error_code=func.coalesce(error_code, SmsMessageAudit.error_code),
            error_message=func.coalesce(error_message, SmsMessageAudit.error_message),
            status_checked_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    updated += audit_result.rowcount

    if updated == 0:
        logger.warning("Status update for unknown or settled twilio_sid: %s", twilio_sid)
        return 0

    db.commit()
    for message in changed:
        publish_change("sms_messages", "UPDATE", message)

    logger.info("SMS status updated: twilio_sid=%s new_status=%s rows=%d", twilio_sid, new_status, updated)
    return updated
