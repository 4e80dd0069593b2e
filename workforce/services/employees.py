from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from workforce.audit import record_audit, snapshot
from workforce.errors import (
    ConflictError,
    EmailAlreadyRegistered,
    EmployeeNotFound,
    NotFoundError,
    ProfileRequired,
    ValidationError,
)
from workforce.models import MONEY_LIMIT, Employee, EmployeeStatus, FaceEncoding, Identity, Role, to_money
from workforce.security import RequestContext, hash_password, normalize_email

MIN_PASSWORD_LENGTH = 8


def register_identity(
    db: Session,
    *,
    email: str,
    password: str,
    role: Role = Role.EMPLOYEE,
    request_meta: dict | None = None,
) -> Identity:
    normalized_email = normalize_email(email)
    if "@" not in normalized_email:
        raise ValidationError(code="INVALID_EMAIL", message="A valid email is required.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            code="PASSWORD_TOO_SHORT",
            message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters.",
        )

    identity = Identity(email=normalized_email, password_hash=hash_password(password), role=role)
    db.add(identity)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise EmailAlreadyRegistered() from None
    db.refresh(identity)

    record_audit(
        db,
        actor_id=identity.id,
        action="register",
        resource_type="identity",
        resource_id=identity.id,
        after=snapshot(identity),
        request_meta=request_meta,
    )
    return identity


def change_role(db: Session, context: RequestContext, identity_id: int, role: Role) -> Identity:
    identity = db.get(Identity, identity_id)
    if identity is None:
        raise NotFoundError(code="IDENTITY_NOT_FOUND", message="Identity not found.")
    before = snapshot(identity)
    identity.role = role
    db.commit()
    db.refresh(identity)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="change_role",
        resource_type="identity",
        resource_id=identity.id,
        before=before,
        after=snapshot(identity),
        request_meta=context.meta(),
    )
    return identity


def create_profile(
    db: Session,
    context: RequestContext,
    *,
    identity_id: int,
    first_name: str,
    last_name: str,
    hire_date: date,
    department: str,
    position: str,
    base_salary: Decimal | str,
    phone: str | None = None,
    date_of_birth: date | None = None,
    address: str | None = None,
    emergency_contact: str | None = None,
    emergency_phone: str | None = None,
    manager_id: int | None = None,
) -> Employee:
    if db.get(Identity, identity_id) is None:
        raise NotFoundError(code="IDENTITY_NOT_FOUND", message="Identity not found.")
    if manager_id is not None and db.get(Employee, manager_id) is None:
        raise NotFoundError(code="MANAGER_NOT_FOUND", message="Manager profile not found.")
    try:
        salary = to_money(base_salary)
    except ValueError as exc:
        raise ValidationError(code="INVALID_AMOUNT", message="base_salary is not a valid amount.") from exc
    if salary < 0:
        raise ValidationError(code="INVALID_AMOUNT", message="base_salary must be zero or positive.")
    if salary > MONEY_LIMIT:
        raise ValidationError(code="AMOUNT_OUT_OF_RANGE", message="base_salary is too large.")

    employee = Employee(
        identity_id=identity_id,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        hire_date=hire_date,
        department=department.strip(),
        position=position.strip(),
        phone=phone,
        date_of_birth=date_of_birth,
        address=address,
        emergency_contact=emergency_contact,
        emergency_phone=emergency_phone,
        manager_id=manager_id,
    )
    employee.base_salary = salary
    db.add(employee)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(code="PROFILE_EXISTS", message="Identity already has an employee profile.") from None
    db.refresh(employee)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="create",
        resource_type="employee",
        resource_id=employee.id,
        after=snapshot(employee),
        request_meta=context.meta(),
    )
    return employee


def list_profiles(db: Session, *, status: EmployeeStatus | None = None) -> list[Employee]:
    stmt = select(Employee).order_by(Employee.id)
    if status is not None:
        stmt = stmt.where(Employee.status == status)
    return list(db.scalars(stmt).all())


def get_own_profile(db: Session, context: RequestContext) -> Employee:
    if context.employee_id is None:
        raise ProfileRequired()
    employee = db.get(Employee, context.employee_id)
    if employee is None:
        raise EmployeeNotFound()
    return employee


def update_status(db: Session, context: RequestContext, employee_id: int, status: EmployeeStatus) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise EmployeeNotFound()
    before = snapshot(employee)
    employee.status = status
    db.commit()
    db.refresh(employee)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="update_status",
        resource_type="employee",
        resource_id=employee.id,
        before=before,
        after=snapshot(employee),
        request_meta=context.meta(),
    )
    return employee


def enroll_biometric(db: Session, context: RequestContext, descriptor: list[float]) -> FaceEncoding:
    if context.employee_id is None:
        raise ProfileRequired()
    if not descriptor:
        raise ValidationError(code="EMPTY_DESCRIPTOR", message="Biometric descriptor cannot be empty.")

    encoding = db.scalar(select(FaceEncoding).where(FaceEncoding.employee_id == context.employee_id))
    before = snapshot(encoding)
    if encoding is None:
        encoding = FaceEncoding(employee_id=context.employee_id)
        db.add(encoding)
    encoding.descriptor = descriptor
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(code="BIOMETRIC_CONCURRENT_UPDATE", message="Biometric enrolment raced; retry.") from None
    db.refresh(encoding)

    record_audit(
        db,
        actor_id=context.identity_id,
        action="enroll_biometric",
        resource_type="face_encoding",
        resource_id=encoding.id,
        before=before,
        after=snapshot(encoding),
        request_meta=context.meta(),
    )
    return encoding


def get_biometric(db: Session, employee_id: int) -> FaceEncoding:
    encoding = db.scalar(select(FaceEncoding).where(FaceEncoding.employee_id == employee_id))
    if encoding is None:
        raise NotFoundError(code="BIOMETRIC_NOT_ENROLLED", message="No biometric descriptor enrolled.")
    return encoding


def ensure_bootstrap_admin(db: Session, *, email: str, password_hash: str) -> Identity | None:
    normalized_email = normalize_email(email)
    existing = db.scalar(select(Identity).where(Identity.email == normalized_email))
    if existing is not None:
        return None
    identity = Identity(email=normalized_email, password_hash=password_hash, role=Role.ADMIN)
    db.add(identity)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    db.refresh(identity)
    record_audit(
        db,
        actor_id=None,
        action="bootstrap_admin",
        resource_type="identity",
        resource_id=identity.id,
        after=snapshot(identity),
        request_meta={"source": "startup"},
    )
    return identity
