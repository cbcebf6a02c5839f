"""Pydantic schemas for SMS/Text API endpoints."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Send SMS
# ---------------------------------------------------------------------------


class SmsSendRequest(BaseModel):
    """POST /api/v1/text/send request body."""

    to: str = Field(..., min_length=1, description="Recipient phone number (E.164 or 10-digit US)")
    body: str = Field(..., min_length=1, max_length=1600, description="Message text")


class SmsSendResponse(BaseModel):
    """POST /api/v1/text/send response."""

    message_id: uuid.UUID
    twilio_sid: str
    conversation_id: uuid.UUID
    status: str
    direction: str = "outbound"


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class ConversationCustomer(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str | None
    last_name: str | None
    email: str | None


class ConversationResponse(BaseModel):
    """Single SMS conversation in list/detail responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_phone: str
    customer_id: uuid.UUID | None
    customer: ConversationCustomer | None = None
    status: str
    unread_count: int
    last_message_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ConversationListResponse(BaseModel):
    """GET /api/v1/text/conversations response."""

    items: list[ConversationResponse]
    total: int
    page: int
    page_size: int


class ConversationStatusRequest(BaseModel):
    """PUT /api/v1/text/conversations/{id}/status request body."""

    status: Literal["active", "archived"] = Field(..., description="New conversation status")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    """Single SMS message in list responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    direction: str
    body: str
    from_number: str
    to_number: str
    twilio_sid: str | None
    status: str
    error_code: str | None = None
    error_message: str | None = None
    sent_by: uuid.UUID | None = None
    sent_at: datetime


class MessageListResponse(BaseModel):
    """Paginated list of SMS messages."""

    items: list[MessageResponse]
    total: int
    page: int
    page_size: int
