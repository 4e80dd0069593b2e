from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.errors import ProfileRequired
from workforce.schemas import AttendanceMarkRequest, AttendanceRead, ClockInRequest
from workforce.security import HR_ROLES, RequestContext, require_roles
from workforce.services.attendance import (
    clock_in,
    clock_out,
    get_day_record,
    list_history,
    local_work_date,
    mark_day_status,
    normalize_ts,
)

router = APIRouter(prefix="/attendance", tags=["attendance"])


def _own_employee_id(context: RequestContext) -> int:
    if context.employee_id is None:
        raise ProfileRequired()
    return context.employee_id


@router.post("/clock-in", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
def clock_in_endpoint(
    payload: ClockInRequest | None = None,
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> AttendanceRead:
    body = payload or ClockInRequest()
    record = clock_in(db, context, location=body.location, via_biometric=body.is_biometric)
    return AttendanceRead.model_validate(record)


@router.post("/clock-out", response_model=AttendanceRead)
def clock_out_endpoint(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> AttendanceRead:
    return AttendanceRead.model_validate(clock_out(db, context))


@router.get("/today", response_model=AttendanceRead | None)
def today(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> AttendanceRead | None:
    employee_id = _own_employee_id(context)
    record = get_day_record(db, employee_id, local_work_date(normalize_ts(None)))
    if record is None:
        return None
    return AttendanceRead.model_validate(record)


@router.get("/history", response_model=list[AttendanceRead])
def history(
    limit: int = Query(default=30, ge=1, le=366),
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> list[AttendanceRead]:
    employee_id = _own_employee_id(context)
    return [AttendanceRead.model_validate(item) for item in list_history(db, employee_id, limit=limit)]


@router.post("/mark", response_model=AttendanceRead, status_code=status.HTTP_201_CREATED)
def mark(
    payload: AttendanceMarkRequest,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> AttendanceRead:
    record = mark_day_status(
        db,
        context,
        employee_id=payload.employee_id,
        work_date=payload.work_date,
        status=payload.status,
        notes=payload.notes,
    )
    return AttendanceRead.model_validate(record)
