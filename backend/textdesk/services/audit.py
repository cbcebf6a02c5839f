"""SMS audit and reporting queries.

Campaign audit rows and conversation messages live in separate tables and
are merged here into one record shape for compliance review. Pagination is
approximate: each source is paged on its own, the two pages are merged
newest first and truncated to the page size, and the total is the sum of
the per-source counts. When one source dominates recent activity, a page
can undercount the other.
"""

import csv
import io
import logging
import math
from datetime import datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from textdesk.core.config import settings
from textdesk.models.profile import Profile
from textdesk.models.sms_conversation import SmsConversation
from textdesk.models.sms_message import SmsMessage
from textdesk.models.sms_message_audit import SmsMessageAudit
from textdesk.models.sms_opt_out import SmsOptOut
from textdesk.schemas.audit import (
    AuditFilters,
    AuditPage,
    AuditRecord,
    AuditStatistics,
    OptOutHistoryItem,
)
from textdesk.services.phone import phone_variants

logger = logging.getLogger(__name__)

AUDIT_CSV_COLUMNS = [
    "Date/Time",
    "Type",
    "Direction",
    "Recipient Name",
    "Phone Number",
    "Email",
    "Message Body",
    "Status",
    "Sent By",
    "Twilio SID",
    "Error Code",
    "Error Message",
    "Batch ID",
]


def _sort_key(record: AuditRecord) -> datetime:
    # SQLite hands back naive datetimes; compare without tzinfo
    return record.timestamp.replace(tzinfo=None)


def _campaign_filters(filters: AuditFilters) -> list:
    clauses = []
    if filters.search:
        pattern = f"%{filters.search}%"
        clauses.append(or_(SmsMessageAudit.phone_number.ilike(pattern), SmsMessageAudit.message_body.ilike(pattern)))
    if filters.status:
        clauses.append(SmsMessageAudit.twilio_status == filters.status)
    if filters.date_from:
        clauses.append(SmsMessageAudit.sent_at >= filters.date_from)
    if filters.date_to:
        clauses.append(SmsMessageAudit.sent_at <= filters.date_to)
    return clauses


def _message_filters(filters: AuditFilters) -> list:
    clauses = []
    if filters.search:
        pattern = f"%{filters.search}%"
        clauses.append(
            or_(
                SmsMessage.from_number.ilike(pattern),
                SmsMessage.to_number.ilike(pattern),
                SmsMessage.body.ilike(pattern),
            )
        )
    if filters.status:
        clauses.append(SmsMessage.status == filters.status)
    if filters.direction:
        clauses.append(SmsMessage.direction == filters.direction)
    if filters.date_from:
        clauses.append(SmsMessage.sent_at >= filters.date_from)
    if filters.date_to:
        clauses.append(SmsMessage.sent_at <= filters.date_to)
    return clauses


def _campaign_record(row: SmsMessageAudit) -> AuditRecord:
    return AuditRecord(
        id=row.id,
        type="campaign",
        direction="outbound",
        timestamp=row.sent_at,
        recipient_name=row.user.full_name if row.user is not None else None,
        phone_number=row.phone_number,
        email=row.user.email if row.user is not None else None,
        message_body=row.message_body,
        status=row.twilio_status,
        sent_by_name=row.sender.full_name if row.sender is not None else None,
        twilio_sid=row.twilio_sid,
        error_code=row.error_code,
        error_message=row.error_message,
        batch_id=row.batch_id,
    )


def _message_record(row: SmsMessage) -> AuditRecord:
    customer = row.conversation.customer if row.conversation is not None else None
    phone = row.from_number if row.direction == "inbound" else row.to_number
    return AuditRecord(
        id=row.id,
        type="conversation",
        direction=row.direction,
        timestamp=row.sent_at,
        recipient_name=customer.full_name if customer is not None else None,
        phone_number=phone,
        email=customer.email if customer is not None else None,
        message_body=row.body,
        status=row.status,
        sent_by_name=row.sender.full_name if row.sender is not None else None,
        twilio_sid=row.twilio_sid,
        error_code=row.error_code,
        error_message=row.error_message,
    )


def get_audit_logs(
    db: Session,
    filters: AuditFilters | None = None,
    page: int = 1,
    limit: int | None = None,
) -> AuditPage:
    """One page of campaign and conversation records, newest first."""
    filters = filters or AuditFilters()
    limit = limit or settings.AUDIT_PAGE_SIZE
    offset = (page - 1) * limit

    records: list[AuditRecord] = []
    total = 0

    # Campaign rows are always outbound
    if filters.direction != "inbound":
        clauses = _campaign_filters(filters)
        total += db.execute(select(func.count()).select_from(SmsMessageAudit).where(*clauses)).scalar_one()
        rows = (
            db.execute(
                select(SmsMessageAudit)
                .where(*clauses)
                .options(selectinload(SmsMessageAudit.user), selectinload(SmsMessageAudit.sender))
                .order_by(SmsMessageAudit.sent_at.desc())
                .offset(offset)
                .limit(limit)
            )
            .scalars()
            .all()
        )
        records.extend(_campaign_record(row) for row in rows)

    clauses = _message_filters(filters)
    total += db.execute(select(func.count()).select_from(SmsMessage).where(*clauses)).scalar_one()
    rows = (
        db.execute(
            select(SmsMessage)
            .where(*clauses)
            .options(
                selectinload(SmsMessage.conversation).selectinload(SmsConversation.customer),
                selectinload(SmsMessage.sender),
            )
            .order_by(SmsMessage.sent_at.desc())
            .offset(offset)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    records.extend(_message_record(row) for row in rows)

    records.sort(key=_sort_key, reverse=True)
    return AuditPage(
        items=records[:limit],
        total=total,
        page=page,
        limit=limit,
        total_pages=math.ceil(total / limit) if total else 0,
    )


def get_audit_statistics(db: Session) -> AuditStatistics:
    """Aggregate delivery figures across campaigns and conversations.

    A message counts as sent once the carrier has accepted it (it carries a
    carrier SID). ``delivery_rate`` is delivered / sent, or 0 with nothing sent.
    """

    def _count(model, *clauses) -> int:
        return db.execute(select(func.count()).select_from(model).where(*clauses)).scalar_one()

    total_sent = _count(SmsMessageAudit, SmsMessageAudit.twilio_sid.isnot(None)) + _count(
        SmsMessage, SmsMessage.direction == "outbound", SmsMessage.twilio_sid.isnot(None)
    )
    delivered = _count(SmsMessageAudit, SmsMessageAudit.twilio_status == "delivered") + _count(
        SmsMessage, SmsMessage.direction == "outbound", SmsMessage.status == "delivered"
    )
    failed = _count(SmsMessageAudit, SmsMessageAudit.twilio_status.in_(("failed", "undelivered"))) + _count(
        SmsMessage, SmsMessage.direction == "outbound", SmsMessage.status.in_(("failed", "undelivered"))
    )
    opted_out = _count(SmsOptOut)

    return AuditStatistics(
        total_sent=total_sent,
        delivered=delivered,
        failed=failed,
        opted_out=opted_out,
        delivery_rate=(delivered / total_sent) if total_sent > 0 else 0.0,
    )


def get_opt_out_history(db: Session) -> list[OptOutHistoryItem]:
    """Opt-out ledger joined with customer names, newest first."""
    opt_outs = db.execute(select(SmsOptOut).order_by(SmsOptOut.opted_out_at.desc())).scalars().all()
    if not opt_outs:
        return []

    variant_to_phone: dict[str, str] = {}
    for opt_out in opt_outs:
        for variant in phone_variants(opt_out.phone_number):
            variant_to_phone.setdefault(variant, opt_out.phone_number)

    profiles_by_phone: dict[str, Profile] = {}
    profiles = (
        db.execute(select(Profile).where(Profile.phone.in_(list(variant_to_phone))).order_by(Profile.created_at))
        .scalars()
        .all()
    )
    for profile in profiles:
        profiles_by_phone.setdefault(variant_to_phone[profile.phone], profile)

    history = []
    for opt_out in opt_outs:
        profile = profiles_by_phone.get(opt_out.phone_number)
        history.append(
            OptOutHistoryItem(
                phone_number=opt_out.phone_number,
                customer_name=profile.full_name if profile is not None else None,
                email=profile.email if profile is not None else None,
                method=opt_out.method,
                notes=opt_out.notes,
                opted_out_at=opt_out.opted_out_at,
            )
        )
    return history


def export_audit_csv(records: list[AuditRecord]) -> str:
    """Serialize already-fetched audit records as CSV.

    Every field is quoted and embedded quotes are doubled.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(AUDIT_CSV_COLUMNS)
    for record in records:
        writer.writerow(
            [
                record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                record.type,
                record.direction,
                record.recipient_name or "",
                record.phone_number,
                record.email or "",
                record.message_body,
                record.status,
                record.sent_by_name or "",
                record.twilio_sid or "",
                record.error_code or "",
                record.error_message or "",
                str(record.batch_id) if record.batch_id else "",
            ]
        )
    return buf.getvalue()
