from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workforce.audit import record_audit, snapshot
from workforce.errors import (
    ConflictError,
    EmployeeNotFound,
    Forbidden,
    InsufficientBalance,
    IntegrityViolation,
    InvalidRange,
    NotFoundError,
    NotPending,
    ProfileRequired,
    ReasonTooShort,
    ValidationError,
)
from workforce.models import Employee, LeaveBalance, LeaveRequest, LeaveStatus, LeaveType
from workforce.security import RequestContext
from workforce.settings import get_settings

DAY_SCALE = Decimal("0.01")
# LeaveRequest.days is Numeric(5, 2); allotments are capped at 366 days.
MAX_REQUEST_DAYS = 366
DECISION_OUTCOMES = frozenset({LeaveStatus.APPROVED, LeaveStatus.REJECTED, LeaveStatus.CANCELLED})


def count_leave_days(start_date: date, end_date: date) -> int:
    if end_date < start_date:
        raise InvalidRange()
    days = (end_date - start_date).days + 1
    if days > MAX_REQUEST_DAYS:
        raise InvalidRange(message=f"A leave request may span at most {MAX_REQUEST_DAYS} days.")
    return days


def _to_days(value: Decimal | int | str) -> Decimal:
    try:
        days = Decimal(str(value)).quantize(DAY_SCALE)
    except InvalidOperation as exc:
        raise ValidationError(code="INVALID_DAYS", message="Day count is not a number.") from exc
    if not days.is_finite() or days < 0:
        raise ValidationError(code="INVALID_DAYS", message="Day count must be zero or positive.")
    return days


def _get_request(db: Session, request_id: int) -> LeaveRequest:
    leave = db.get(LeaveRequest, request_id)
    if leave is None:
        raise NotFoundError(code="LEAVE_REQUEST_NOT_FOUND", message="Leave request not found.")
    return leave


def file_request(
    db: Session,
    context: RequestContext,
    *,
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
    reason: str,
) -> LeaveRequest:
    if context.employee_id is None:
        raise ProfileRequired()
    days = count_leave_days(start_date, end_date)
    normalized_reason = (reason or "").strip()
    if len(normalized_reason) < get_settings().leave_reason_min_length:
        raise ReasonTooShort()

    # Filing reserves nothing; the balance only moves on approval.
    leave = LeaveRequest(
        employee_id=context.employee_id,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date,
        days=Decimal(days),
        reason=normalized_reason,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="create",
        resource_type="leave_request",
        resource_id=leave.id,
        after=snapshot(leave),
        request_meta=context.meta(),
    )
    return leave


def _debit_balance(db: Session, leave: LeaveRequest) -> None:
    days = leave.days
    result = db.execute(
        update(LeaveBalance)
        .where(
            LeaveBalance.employee_id == leave.employee_id,
            LeaveBalance.leave_type == leave.leave_type,
            LeaveBalance.year == leave.start_date.year,
            LeaveBalance.remaining_days >= days,
        )
        .values(
            used_days=LeaveBalance.used_days + days,
            remaining_days=LeaveBalance.total_days - (LeaveBalance.used_days + days),
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientBalance()


def _transition(
    db: Session,
    context: RequestContext,
    leave: LeaveRequest,
    *,
    outcome: LeaveStatus,
    comments: str | None,
    action: str,
) -> LeaveRequest:
    before = snapshot(leave)
    # Status transition and balance debit share one transaction; either both land or neither.
    result = db.execute(
        update(LeaveRequest)
        .where(LeaveRequest.id == leave.id, LeaveRequest.status == LeaveStatus.PENDING)
        .values(
            status=outcome,
            approver_id=context.identity_id,
            approver_comments=comments,
            decided_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise NotPending()

    if outcome == LeaveStatus.APPROVED:
        try:
            _debit_balance(db, leave)
        except InsufficientBalance:
            db.rollback()
            raise

    db.commit()
    db.refresh(leave)

    record_audit(
        db,
        actor_id=context.identity_id,
        action=action,
        resource_type="leave_request",
        resource_id=leave.id,
        before=before,
        after=snapshot(leave),
        request_meta=context.meta(),
    )
    return leave


def decide_request(
    db: Session,
    context: RequestContext,
    request_id: int,
    *,
    outcome: LeaveStatus,
    comments: str | None = None,
) -> LeaveRequest:
    if outcome not in DECISION_OUTCOMES:
        raise ValidationError(code="INVALID_OUTCOME", message="Outcome must be approved, rejected or cancelled.")
    leave = _get_request(db, request_id)
    if outcome != LeaveStatus.CANCELLED and leave.employee_id == context.employee_id:
        raise Forbidden(code="SELF_DECISION_FORBIDDEN", message="Approvers cannot decide their own leave requests.")
    if leave.status != LeaveStatus.PENDING:
        raise NotPending()
    return _transition(db, context, leave, outcome=outcome, comments=comments, action=outcome.value)


def cancel_own_request(db: Session, context: RequestContext, request_id: int) -> LeaveRequest:
    leave = _get_request(db, request_id)
    if context.employee_id is None or leave.employee_id != context.employee_id:
        raise Forbidden()
    if leave.status != LeaveStatus.PENDING:
        raise NotPending()
    return _transition(db, context, leave, outcome=LeaveStatus.CANCELLED, comments=None, action="cancelled")


def get_balance(db: Session, employee_id: int, leave_type: LeaveType, year: int) -> LeaveBalance | None:
    return db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        )
    )


def set_allotment(
    db: Session,
    context: RequestContext,
    *,
    employee_id: int,
    leave_type: LeaveType,
    year: int,
    total_days: Decimal | int | str,
) -> LeaveBalance:
    total = _to_days(total_days)
    if db.get(Employee, employee_id) is None:
        raise EmployeeNotFound()

    existing = get_balance(db, employee_id, leave_type, year)
    before = snapshot(existing)
    if existing is not None:
        result = db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == existing.id, LeaveBalance.used_days <= total)
            .values(
                total_days=total,
                remaining_days=total - LeaveBalance.used_days,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            raise IntegrityViolation(
                code="ALLOTMENT_BELOW_USED",
                message="Allotment cannot be lower than the days already used.",
            )
        db.commit()
        db.refresh(existing)
        balance = existing
    else:
        balance = LeaveBalance(
            employee_id=employee_id,
            leave_type=leave_type,
            year=year,
            total_days=total,
            used_days=Decimal("0.00"),
            remaining_days=total,
        )
        db.add(balance)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise ConflictError(
                code="BALANCE_CONCURRENT_UPDATE",
                message="Leave balance was created concurrently; retry the request.",
            ) from None
        db.refresh(balance)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="set_allotment",
        resource_type="leave_balance",
        resource_id=balance.id,
        before=before,
        after=snapshot(balance),
        request_meta=context.meta(),
    )
    return balance


def list_requests(db: Session, employee_id: int) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .where(LeaveRequest.employee_id == employee_id)
        .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    )
    return list(db.scalars(stmt).all())


def list_pending(db: Session) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .where(LeaveRequest.status == LeaveStatus.PENDING)
        .order_by(LeaveRequest.created_at.asc(), LeaveRequest.id.asc())
    )
    return list(db.scalars(stmt).all())


def list_balances(db: Session, employee_id: int, year: int) -> list[LeaveBalance]:
    stmt = (
        select(LeaveBalance)
        .where(LeaveBalance.employee_id == employee_id, LeaveBalance.year == year)
        .order_by(LeaveBalance.leave_type.asc())
    )
    return list(db.scalars(stmt).all())
