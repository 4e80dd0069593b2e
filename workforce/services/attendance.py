from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workforce.audit import record_audit, snapshot
from workforce.errors import (
    AlreadyClockedIn,
    AlreadyClockedOut,
    ConflictError,
    EmployeeInactive,
    EmployeeNotFound,
    NoClockIn,
    ProfileRequired,
    ValidationError,
)
from workforce.models import AttendanceRecord, AttendanceStatus, Employee, EmployeeStatus
from workforce.security import RequestContext
from workforce.settings import get_lateness_cutoff, get_settings

logger = logging.getLogger("workforce.attendance")

PRESENT_EQUIVALENT_STATUSES = (
    AttendanceStatus.PRESENT,
    AttendanceStatus.LATE,
    AttendanceStatus.HALF_DAY,
)
MARKABLE_STATUSES = frozenset({AttendanceStatus.ABSENT, AttendanceStatus.ON_LEAVE, AttendanceStatus.HALF_DAY})


@dataclass(frozen=True, slots=True)
class AttendanceStats:
    work_date: date
    present: int
    total: int

    @property
    def rate_percent(self) -> int:
        if self.total <= 0:
            return 0
        rate = Decimal(self.present * 100) / Decimal(self.total)
        return int(rate.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or "UTC"
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("attendance_timezone_invalid", extra={"attendance_timezone": raw_name})
        return ZoneInfo("UTC")


def local_work_date(now_utc: datetime) -> date:
    return normalize_ts(now_utc).astimezone(attendance_timezone()).date()


def is_late(now_utc: datetime) -> bool:
    """Late when the local clock-in time is at or after the configured cutoff."""
    local_time = normalize_ts(now_utc).astimezone(attendance_timezone()).time()
    return local_time >= get_lateness_cutoff()


def _require_active_employee(db: Session, context: RequestContext) -> Employee:
    if context.employee_id is None:
        raise ProfileRequired()
    employee = db.get(Employee, context.employee_id)
    if employee is None:
        raise EmployeeNotFound()
    if employee.status != EmployeeStatus.ACTIVE:
        raise EmployeeInactive()
    return employee


def get_day_record(db: Session, employee_id: int, work_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
        )
    )


def list_history(db: Session, employee_id: int, *, limit: int = 30) -> list[AttendanceRecord]:
    stmt = (
        select(AttendanceRecord)
        .where(AttendanceRecord.employee_id == employee_id)
        .order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.id.desc())
        .limit(max(1, min(limit, 366)))
    )
    return list(db.scalars(stmt).all())


def _claim_unclocked_day(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    values: dict,
) -> AttendanceRecord | None:
    # A row may already exist for the day without a clock-in (e.g. marked by HR).
    result = db.execute(
        update(AttendanceRecord)
        .where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
            AttendanceRecord.clock_in.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    record = get_day_record(db, employee_id, work_date)
    if record is not None:
        db.refresh(record)
    return record


def clock_in(
    db: Session,
    context: RequestContext,
    *,
    now: datetime | None = None,
    location: str | None = None,
    via_biometric: bool = False,
) -> AttendanceRecord:
    employee = _require_active_employee(db, context)
    now_utc = normalize_ts(now)
    work_date = local_work_date(now_utc)
    late = is_late(now_utc)
    values = {
        "clock_in": now_utc,
        "status": AttendanceStatus.LATE if late else AttendanceStatus.PRESENT,
        "is_late": late,
        "location": location,
        "is_biometric": bool(via_biometric),
    }

    record = AttendanceRecord(employee_id=employee.id, work_date=work_date, **values)
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # The (employee_id, work_date) unique constraint is the arbiter between concurrent clock-ins.
        db.rollback()
        previous = get_day_record(db, employee.id, work_date)
        before = snapshot(previous)
        claimed = _claim_unclocked_day(db, employee_id=employee.id, work_date=work_date, values=values)
        if claimed is None:
            raise AlreadyClockedIn() from None
        record_audit(
            db,
            actor_id=context.identity_id,
            action="clock_in",
            resource_type="attendance",
            resource_id=claimed.id,
            before=before,
            after=snapshot(claimed),
            request_meta=context.meta(),
        )
        return claimed

    db.refresh(record)
    record_audit(
        db,
        actor_id=context.identity_id,
        action="clock_in",
        resource_type="attendance",
        resource_id=record.id,
        after=snapshot(record),
        request_meta=context.meta(),
    )
    return record


def clock_out(db: Session, context: RequestContext, *, now: datetime | None = None) -> AttendanceRecord:
    employee = _require_active_employee(db, context)
    now_utc = normalize_ts(now)
    record = get_day_record(db, employee.id, local_work_date(now_utc))
    if record is None or record.clock_in is None:
        raise NoClockIn()
    if record.clock_out is not None:
        raise AlreadyClockedOut()

    before = snapshot(record)
    result = db.execute(
        update(AttendanceRecord)
        .where(AttendanceRecord.id == record.id, AttendanceRecord.clock_out.is_(None))
        .values(clock_out=now_utc)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise AlreadyClockedOut()
    db.commit()
    db.refresh(record)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="clock_out",
        resource_type="attendance",
        resource_id=record.id,
        before=before,
        after=snapshot(record),
        request_meta=context.meta(),
    )
    return record


def mark_day_status(
    db: Session,
    context: RequestContext,
    *,
    employee_id: int,
    work_date: date,
    status: AttendanceStatus,
    notes: str | None = None,
) -> AttendanceRecord:
    if status not in MARKABLE_STATUSES:
        raise ValidationError(
            code="STATUS_NOT_MARKABLE",
            message="Only absent, on_leave and half_day can be recorded without a clock-in.",
        )
    if db.get(Employee, employee_id) is None:
        raise EmployeeNotFound()

    record = AttendanceRecord(employee_id=employee_id, work_date=work_date, status=status, notes=notes)
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            code="ATTENDANCE_EXISTS",
            message="An attendance record already exists for this employee and date.",
        ) from None
    db.refresh(record)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="mark_status",
        resource_type="attendance",
        resource_id=record.id,
        after=snapshot(record),
        request_meta=context.meta(),
    )
    return record


def stats_for_date(db: Session, work_date: date) -> AttendanceStats:
    present_case = case((AttendanceRecord.status.in_(PRESENT_EQUIVALENT_STATUSES), 1), else_=0)
    row = db.execute(
        select(
            func.coalesce(func.sum(present_case), 0),
            func.count(AttendanceRecord.id),
        ).where(
            AttendanceRecord.work_date == work_date,
            AttendanceRecord.status.is_not(None),
        )
    ).one()
    return AttendanceStats(work_date=work_date, present=int(row[0] or 0), total=int(row[1] or 0))
