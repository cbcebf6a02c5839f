import uuid
from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

RecipientOutcome = Literal["success", "failed", "skipped"]


# ---------------------------------------------------------------------------
# Batch send
# ---------------------------------------------------------------------------


class BatchSendRequest(BaseModel):
    """POST /api/v1/campaigns/batch request body.

    Size and blank-template checks happen in the service so they surface
    as 400s with a specific message.
    """

    user_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("user_ids", "userIds"),
    )
    message_template: str = Field(
        "",
        validation_alias=AliasChoices("message_template", "messageTemplate"),
    )


class RecipientResult(BaseModel):
    user_id: str
    phone: str
    status: RecipientOutcome
    reason: str | None = None
    twilio_sid: str | None = None
    twilio_status: str | None = None
    error_code: str | None = None
    error: str | None = None


class BatchSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0


class BatchSendResponse(BaseModel):
    success: bool = True
    batch_id: uuid.UUID
    summary: BatchSummary
    results: list[RecipientResult]
    message: str


# ---------------------------------------------------------------------------
# Eligible users
# ---------------------------------------------------------------------------


class EligibleUserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    sms_consent_date: datetime | None = None


class EligibleUserListResponse(BaseModel):
    items: list[EligibleUserResponse]
    total: int


# ---------------------------------------------------------------------------
# Batch history
# ---------------------------------------------------------------------------


class BatchCampaignSummary(BaseModel):
    """Per-batch rollup of campaign audit rows."""

    batch_id: uuid.UUID
    template_used: str | None = None
    sent_by: uuid.UUID | None = None
    sender_name: str | None = None
    started_at: datetime | None = None
    total: int = 0
    sent: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    pending: int = 0


class BatchListResponse(BaseModel):
    items: list[BatchCampaignSummary]
    total: int


# ---------------------------------------------------------------------------
# Status reconciliation
# ---------------------------------------------------------------------------


class StatusCheckResult(BaseModel):
    source: Literal["message", "audit"]
    record_id: uuid.UUID
    twilio_sid: str
    old_status: str
    new_status: str
    updated: bool = False
    error: str | None = None


class StatusPollResponse(BaseModel):
    success: bool = True
    message: str
    checked: int = 0
    updated: int = 0
    results: list[StatusCheckResult] = Field(default_factory=list)
