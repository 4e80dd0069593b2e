from __future__ import annotations

import logging
from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session

from workforce.audit import record_audit, snapshot
from workforce.errors import (
    ApiError,
    DataIntegrityError,
    EmployeeNotFound,
    NotFoundError,
    PayrollAlreadyPaid,
    PeriodAlreadyProcessed,
    ValidationError,
)
from workforce.models import MONEY_LIMIT, AttendanceRecord, Employee, PayrollRecord
from workforce.security import RequestContext
from workforce.services.attendance import local_work_date, normalize_ts
from workforce.services.payroll_calc import MONEY_SCALE, compute_net, tally_attendance
from workforce.settings import get_settings

logger = logging.getLogger("workforce.payroll")


@dataclass(frozen=True)
class PayrollEntry:
    employee_id: int
    bonuses: Decimal = Decimal("0")
    overtime: Decimal = Decimal("0")
    deductions: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")


@dataclass
class PayrollRunFailure:
    employee_id: int
    code: str
    message: str


@dataclass
class PayrollRunResult:
    processed: list[PayrollRecord] = field(default_factory=list)
    failed: list[PayrollRunFailure] = field(default_factory=list)


def period_bounds(month: int, year: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError(code="INVALID_PERIOD", message="month must be between 1 and 12.")
    if not 1900 <= year <= 9999:
        raise ValidationError(code="INVALID_PERIOD", message="year is out of range.")
    return date(year, month, 1), date(year, month, monthrange(year, month)[1])


def _amount(name: str, value: Decimal | int | str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValidationError(code="INVALID_AMOUNT", message=f"{name} is not a number.") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(code="INVALID_AMOUNT", message=f"{name} must be zero or positive.")
    if amount > MONEY_LIMIT:
        raise ValidationError(code="AMOUNT_OUT_OF_RANGE", message=f"{name} is too large.")
    if amount != amount.quantize(MONEY_SCALE):
        raise ValidationError(code="INVALID_AMOUNT", message=f"{name} allows at most two decimals.")
    return amount


def process_entry(
    db: Session,
    context: RequestContext,
    *,
    month: int,
    year: int,
    entry: PayrollEntry,
) -> PayrollRecord:
    start, end = period_bounds(month, year)
    bonuses = _amount("bonuses", entry.bonuses)
    overtime = _amount("overtime", entry.overtime)
    deductions = _amount("deductions", entry.deductions)
    tax = _amount("tax", entry.tax)

    employee = db.get(Employee, entry.employee_id)
    if employee is None:
        raise EmployeeNotFound()
    base = employee.base_salary
    net = compute_net(base=base, bonuses=bonuses, overtime=overtime, deductions=deductions, tax=tax)
    if abs(net) > MONEY_LIMIT:
        raise ValidationError(code="AMOUNT_OUT_OF_RANGE", message="net_salary is out of range.")

    statuses = db.scalars(
        select(AttendanceRecord.status).where(
            AttendanceRecord.employee_id == employee.id,
            AttendanceRecord.work_date >= start,
            AttendanceRecord.work_date <= end,
        )
    ).all()
    tally = tally_attendance(statuses, half_day_weight=get_settings().half_day_worked_weight)

    record = PayrollRecord(
        employee_id=employee.id,
        month=month,
        year=year,
        base_salary=base,
        bonuses=bonuses,
        overtime=overtime,
        deductions=deductions,
        tax=tax,
        net_salary=net,
        days_worked=tally.days_worked,
        days_absent=tally.days_absent,
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # (employee_id, month, year) is unique; a re-run never supersedes a prior record.
        db.rollback()
        raise PeriodAlreadyProcessed() from None
    db.refresh(record)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="payroll_run",
        resource_type="payroll",
        resource_id=record.id,
        after=snapshot(record),
        request_meta=context.meta(),
    )
    return record


def run_payroll(
    db: Session,
    context: RequestContext,
    *,
    month: int,
    year: int,
    entries: list[PayrollEntry],
) -> PayrollRunResult:
    period_bounds(month, year)
    result = PayrollRunResult()
    for entry in entries:
        try:
            result.processed.append(process_entry(db, context, month=month, year=year, entry=entry))
        except DataIntegrityError as exc:
            logger.error(
                "payroll_entry_data_integrity_failure",
                extra={"employee_id": entry.employee_id, "code": exc.code, "request_id": context.request_id},
            )
            result.failed.append(PayrollRunFailure(entry.employee_id, exc.code, exc.message))
        except ApiError as exc:
            result.failed.append(PayrollRunFailure(entry.employee_id, exc.code, exc.message))
        except DataError:
            db.rollback()
            logger.exception(
                "payroll_entry_store_rejected",
                extra={"employee_id": entry.employee_id, "request_id": context.request_id},
            )
            result.failed.append(
                PayrollRunFailure(entry.employee_id, "STORE_REJECTED", "Payroll values could not be stored.")
            )

    logger.info(
        "payroll_run_complete",
        extra={
            "month": month,
            "year": year,
            "processed": len(result.processed),
            "failed": len(result.failed),
            "request_id": context.request_id,
        },
    )
    return result


def mark_paid(
    db: Session,
    context: RequestContext,
    record_id: int,
    *,
    payslip_url: str | None = None,
) -> PayrollRecord:
    record = db.get(PayrollRecord, record_id)
    if record is None:
        raise NotFoundError(code="PAYROLL_NOT_FOUND", message="Payroll record not found.")
    before = snapshot(record)

    result = db.execute(
        update(PayrollRecord)
        .where(PayrollRecord.id == record.id, PayrollRecord.paid_at.is_(None))
        .values(paid_at=datetime.now(timezone.utc), payslip_url=payslip_url)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise PayrollAlreadyPaid()
    db.commit()
    db.refresh(record)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="mark_paid",
        resource_type="payroll",
        resource_id=record.id,
        before=before,
        after=snapshot(record),
        request_meta=context.meta(),
    )
    return record


def list_records(db: Session, employee_id: int) -> list[PayrollRecord]:
    stmt = (
        select(PayrollRecord)
        .where(PayrollRecord.employee_id == employee_id)
        .order_by(PayrollRecord.year.desc(), PayrollRecord.month.desc())
    )
    return list(db.scalars(stmt).all())


def current_record(db: Session, employee_id: int, *, today: date | None = None) -> PayrollRecord | None:
    reference = today or local_work_date(normalize_ts(None))
    return db.scalar(
        select(PayrollRecord).where(
            PayrollRecord.employee_id == employee_id,
            PayrollRecord.month == reference.month,
            PayrollRecord.year == reference.year,
        )
    )
