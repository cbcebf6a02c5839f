"""Batch SMS campaign API: send, eligible recipients, batch history, status polling."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from textdesk.api.v1.errors import to_http_error
from textdesk.core.auth import get_admin_profile
from textdesk.core.database import get_db
from textdesk.models.profile import Profile
from textdesk.schemas.campaigns import (
    BatchCampaignSummary,
    BatchListResponse,
    BatchSendRequest,
    BatchSendResponse,
    EligibleUserListResponse,
    StatusPollResponse,
)
from textdesk.services.campaigns import get_batch_summary, list_batches, send_batch
from textdesk.services.consent import list_eligible_profiles
from textdesk.services.errors import SmsServiceError
from textdesk.services.status_poller import reconcile_message_statuses
from textdesk.services.telephony.exceptions import TelephonyError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/batch", response_model=BatchSendResponse)
async def send_batch_campaign(
    payload: BatchSendRequest,
    db: Session = Depends(get_db),
    admin: Profile = Depends(get_admin_profile),
):
    """Send one template to a list of customers.

    Per-recipient problems never fail the request; they appear as skipped or
    failed entries in ``results`` and in the audit log.
    """
    try:
        return await send_batch(db, payload.user_ids, payload.message_template, sent_by=admin.id)
    except (SmsServiceError, TelephonyError) as exc:
        raise to_http_error(exc) from exc


@router.get("/eligible-users", response_model=EligibleUserListResponse)
def get_eligible_users(
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """Consented customers with a phone on file who have not opted out."""
    profiles = list_eligible_profiles(db)
    return EligibleUserListResponse(items=profiles, total=len(profiles))


@router.get("/batches", response_model=BatchListResponse)
def get_batches(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    batches = list_batches(db, limit=limit)
    return BatchListResponse(items=batches, total=len(batches))


@router.get("/batches/{batch_id}", response_model=BatchCampaignSummary)
def get_batch(
    batch_id: uuid.UUID,
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    try:
        return get_batch_summary(db, batch_id)
    except SmsServiceError as exc:
        raise to_http_error(exc) from exc


@router.post("/status-poll", response_model=StatusPollResponse)
async def poll_statuses(
    limit: int = Query(100, ge=1),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """Reconcile delivery statuses with Twilio on demand."""
    try:
        return await reconcile_message_statuses(db, limit=limit)
    except (SmsServiceError, TelephonyError) as exc:
        raise to_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Status poll failed")
        raise HTTPException(status_code=500, detail="Status poll failed") from exc
