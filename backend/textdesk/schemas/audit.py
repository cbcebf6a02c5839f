"""Pydantic schemas for the SMS audit and reporting endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

AuditRecordType = Literal["campaign", "conversation"]
Direction = Literal["inbound", "outbound"]


class AuditFilters(BaseModel):
    """Filters shared by the audit log listing and the CSV export."""

    search: str | None = Field(None, description="Matches phone number or message body")
    status: str | None = None
    direction: Direction | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


class AuditRecord(BaseModel):
    """One campaign audit row or conversation message in a common shape."""

    id: uuid.UUID
    type: AuditRecordType
    direction: Direction
    timestamp: datetime
    recipient_name: str | None = None
    phone_number: str
    email: str | None = None
    message_body: str
    status: str
    sent_by_name: str | None = None
    twilio_sid: str | None = None
    error_code: str | None = None
    error_message: str | None = None
    batch_id: uuid.UUID | None = None


class AuditPage(BaseModel):
    """A page of merged audit records.

    ``total`` sums each source's own count. ``items`` is the newest
    ``limit`` records of the two sources merged, so a page can hold fewer
    rows from one source than an exact union would.
    """

    items: list[AuditRecord]
    total: int
    page: int
    limit: int
    total_pages: int


class AuditStatistics(BaseModel):
    total_sent: int = 0
    delivered: int = 0
    failed: int = 0
    opted_out: int = 0
    delivery_rate: float = 0.0


class OptOutHistoryItem(BaseModel):
    phone_number: str
    customer_name: str | None = None
    email: str | None = None
    method: str
    notes: str | None = None
    opted_out_at: datetime


class OptOutHistoryResponse(BaseModel):
    items: list[OptOutHistoryItem]
    total: int
