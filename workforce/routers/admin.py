from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.models import AuditEntry, Employee, EmployeeStatus, LeaveRequest, LeaveStatus, Role
from workforce.schemas import (
    AuditEntryRead,
    DashboardStatsRead,
    IdentityRead,
    ResumeParseRequest,
    ResumeParseResponse,
    RoleUpdateRequest,
    SummaryRequest,
    SummaryResponse,
)
from workforce.security import ADMIN_ONLY, HR_ROLES, RequestContext, require_roles
from workforce.services.ai_client import ResumeParsed, generate_summary, parse_resume
from workforce.services.attendance import local_work_date, normalize_ts, stats_for_date
from workforce.services.employees import change_role

router = APIRouter(tags=["admin"])


@router.patch("/identities/{identity_id}/role", response_model=IdentityRead)
def update_identity_role(
    identity_id: int,
    payload: RoleUpdateRequest,
    context: RequestContext = Depends(require_roles(*ADMIN_ONLY)),
    db: Session = Depends(get_db),
) -> IdentityRead:
    return IdentityRead.model_validate(change_role(db, context, identity_id, payload.role))


@router.get("/dashboard/stats", response_model=DashboardStatsRead)
def dashboard_stats(
    work_date: date | None = Query(default=None),
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> DashboardStatsRead:
    target_date = work_date or local_work_date(normalize_ts(None))
    stats = stats_for_date(db, target_date)
    payload = DashboardStatsRead(
        work_date=stats.work_date,
        present=stats.present,
        total=stats.total,
        attendance_rate_percent=stats.rate_percent,
    )
    if context.role == Role.EMPLOYEE:
        return payload

    payload.pending_leave_requests = int(
        db.scalar(select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveStatus.PENDING)) or 0
    )
    payload.active_employees = int(
        db.scalar(select(func.count(Employee.id)).where(Employee.status == EmployeeStatus.ACTIVE)) or 0
    )
    return payload


@router.get("/audit", response_model=list[AuditEntryRead])
def list_audit_entries(
    resource_type: str | None = Query(default=None, max_length=255),
    actor_id: int | None = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=1000),
    _context: RequestContext = Depends(require_roles(*ADMIN_ONLY)),
    db: Session = Depends(get_db),
) -> list[AuditEntryRead]:
    stmt = select(AuditEntry).order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
    if resource_type:
        stmt = stmt.where(AuditEntry.resource_type == resource_type.strip())
    if actor_id is not None:
        stmt = stmt.where(AuditEntry.actor_id == actor_id)
    entries = db.scalars(stmt.limit(limit)).all()
    return [AuditEntryRead.model_validate(item) for item in entries]


@router.post("/recruitment/resume/parse", response_model=ResumeParseResponse)
def parse_resume_endpoint(
    payload: ResumeParseRequest,
    _context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> ResumeParseResponse:
    # Release the read transaction opened by the access check before the slow external call.
    db.rollback()
    result = parse_resume(payload.text)
    if isinstance(result, ResumeParsed):
        return ResumeParseResponse(
            ok=True,
            skills=result.skills,
            experience_years=result.experience_years,
            experience_summary=result.experience_summary,
            summary=result.summary,
        )
    return ResumeParseResponse(ok=False, reason=result.reason)


@router.post("/recruitment/summary", response_model=SummaryResponse)
def summarize_endpoint(
    payload: SummaryRequest,
    _context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> SummaryResponse:
    db.rollback()
    return SummaryResponse(summary=generate_summary(payload.text))
