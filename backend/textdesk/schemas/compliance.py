"""Pydantic schemas for consent, opt-out and allow-list endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AuthorizeNumberRequest(BaseModel):
    """POST /api/v1/compliance/authorized-numbers request body."""

    phone_number: str = Field(..., min_length=1)
    notes: str | None = Field(None, max_length=1000)


class AuthorizedNumberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone_number: str
    compliance_verified: bool
    verification_date: datetime | None
    verification_notes: str | None
    added_by: uuid.UUID | None
    is_active: bool
    created_at: datetime


class AuthorizedNumberListResponse(BaseModel):
    items: list[AuthorizedNumberResponse]
    total: int


class OptOutRequest(BaseModel):
    """POST /api/v1/compliance/opt-outs request body (manual opt-out by staff)."""

    phone_number: str = Field(..., min_length=1)
    method: str = Field("admin", max_length=50)
    notes: str | None = Field(None, max_length=1000)


class OptOutResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone_number: str
    method: str
    notes: str | None
    opted_out_at: datetime


class OptOutListResponse(BaseModel):
    items: list[OptOutResponse]
    total: int


class OptInResult(BaseModel):
    phone_number: str
    removed: bool


class EligibilityResponse(BaseModel):
    phone_number: str
    eligible: bool
    opted_out: bool


class ConsentUpdateRequest(BaseModel):
    """PUT /api/v1/compliance/consent/me request body."""

    sms_consent: bool


class ConsentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    phone: str | None
    sms_consent: bool
    sms_consent_method: str | None
    sms_consent_date: datetime | None


class WebOptInRequest(BaseModel):
    """POST /api/v1/compliance/opt-in request body (public form)."""

    phone_number: str = Field(..., min_length=1)
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=255)
    consent: bool = Field(..., description="Must be true; the form's consent checkbox")


class WebOptInResponse(BaseModel):
    phone_number: str
    message: str
