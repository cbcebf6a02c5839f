"""SMS audit API: compliance log, statistics, opt-out history, CSV export."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from textdesk.core.auth import get_admin_profile
from textdesk.core.database import get_db
from textdesk.models.profile import Profile
from textdesk.schemas.audit import AuditFilters, AuditPage, AuditStatistics, Direction, OptOutHistoryResponse
from textdesk.services.audit import export_audit_csv, get_audit_logs, get_audit_statistics, get_opt_out_history

router = APIRouter()


def _filters(
    search: str | None = Query(None, description="Phone number or message text"),
    status: str | None = Query(None),
    direction: Direction | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
) -> AuditFilters:
    return AuditFilters(
        search=search or None,
        status=status or None,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/logs", response_model=AuditPage)
def get_logs(
    filters: AuditFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """Campaign and conversation records merged newest first.

    Pagination is approximate across the two sources; ``total`` is exact.
    """
    return get_audit_logs(db, filters, page=page, limit=limit)


@router.get("/statistics", response_model=AuditStatistics)
def get_statistics(
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    return get_audit_statistics(db)


@router.get("/opt-outs", response_model=OptOutHistoryResponse)
def get_opt_outs(
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    items = get_opt_out_history(db)
    return OptOutHistoryResponse(items=items, total=len(items))


@router.get("/export")
def export_logs(
    filters: AuditFilters = Depends(_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _admin: Profile = Depends(get_admin_profile),
):
    """Download the requested audit page as CSV."""
    audit_page = get_audit_logs(db, filters, page=page, limit=limit)
    filename = f"sms-audit-{datetime.now().strftime('%Y-%m-%d')}.csv"
    return StreamingResponse(
        iter([export_audit_csv(audit_page.items)]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
