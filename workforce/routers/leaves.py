
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.errors import ProfileRequired
from workforce.schemas import (
    LeaveAllotmentRequest,
    LeaveBalanceRead,
    LeaveCreateRequest,
    LeaveDecisionRequest,
    LeaveRequestRead,
)
from workforce.security import HR_ROLES, MANAGEMENT_ROLES, RequestContext, require_roles
from workforce.services.attendance import local_work_date, normalize_ts
from workforce.services.leaves import (
    cancel_own_request,
    decide_request,
    file_request,
    list_balances,
    list_pending,
    list_requests,
    set_allotment,
)

router = APIRouter(prefix="/leaves", tags=["leaves"])


def _own_employee_id(context: RequestContext) -> int:
    if context.employee_id is None:
        raise ProfileRequired()
    return context.employee_id


@router.post("/request", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def create_leave_request(
    payload: LeaveCreateRequest,
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = file_request(
        db,
        context,
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )
    return LeaveRequestRead.model_validate(leave)


@router.get("/requests", response_model=list[LeaveRequestRead])
def own_leave_requests(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return [LeaveRequestRead.model_validate(item) for item in list_requests(db, _own_employee_id(context))]


@router.get("/pending", response_model=list[LeaveRequestRead])
def pending_leave_requests(
    _context: RequestContext = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return [LeaveRequestRead.model_validate(item) for item in list_pending(db)]


@router.get("/balances", response_model=list[LeaveBalanceRead])
def own_leave_balances(
    year: int | None = Query(default=None, ge=1900, le=9999),
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> list[LeaveBalanceRead]:
    target_year = year or local_work_date(normalize_ts(None)).year
    balances = list_balances(db, _own_employee_id(context), target_year)
    return [LeaveBalanceRead.model_validate(item) for item in balances]


@router.post("/balances", response_model=LeaveBalanceRead)
def set_leave_allotment(
    payload: LeaveAllotmentRequest,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> LeaveBalanceRead:
    balance = set_allotment(
        db,
        context,
        employee_id=payload.employee_id,
        leave_type=payload.leave_type,
        year=payload.year,
        total_days=payload.total_days,
    )
    return LeaveBalanceRead.model_validate(balance)


@router.post("/{request_id}/decide", response_model=LeaveRequestRead)
def decide_leave_request(
    request_id: int,
    payload: LeaveDecisionRequest,
    context: RequestContext = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave = decide_request(db, context, request_id, outcome=payload.status, comments=payload.comments)
    return LeaveRequestRead.model_validate(leave)


@router.post("/{request_id}/cancel", response_model=LeaveRequestRead)
def cancel_leave_request(
    request_id: int,
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    return LeaveRequestRead.model_validate(cancel_own_request(db, context, request_id))
