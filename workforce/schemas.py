from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from workforce.models import (
    AttendanceStatus,
    EmployeeStatus,
    LeaveStatus,
    LeaveType,
    Role,
)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=8, max_length=256)


class LoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=1, max_length=256)


class IdentityRead(BaseModel):
    id: int
    email: str
    role: Role
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    identity: IdentityRead


class MeResponse(BaseModel):
    identity: IdentityRead
    employee_id: int | None = None


class RoleUpdateRequest(BaseModel):
    role: Role


class EmployeeCreate(BaseModel):
    identity_id: int = Field(ge=1)
    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    hire_date: date
    department: str = Field(min_length=1, max_length=255)
    position: str = Field(min_length=1, max_length=255)
    base_salary: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    phone: str | None = Field(default=None, max_length=64)
    date_of_birth: date | None = None
    address: str | None = None
    emergency_contact: str | None = Field(default=None, max_length=255)
    emergency_phone: str | None = Field(default=None, max_length=64)
    manager_id: int | None = Field(default=None, ge=1)


class EmployeeRead(BaseModel):
    id: int
    identity_id: int
    first_name: str
    last_name: str
    full_name: str
    phone: str | None
    date_of_birth: date | None
    hire_date: date
    department: str
    position: str
    base_salary: Decimal
    address: str | None
    emergency_contact: str | None
    emergency_phone: str | None
    status: EmployeeStatus
    manager_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EmployeeStatusUpdateRequest(BaseModel):
    status: EmployeeStatus


class BiometricEnrollRequest(BaseModel):
    descriptor: list[float] = Field(min_length=1, max_length=1024)


class BiometricRead(BaseModel):
    employee_id: int
    descriptor: list[float]
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClockInRequest(BaseModel):
    location: str | None = Field(default=None, max_length=512)
    is_biometric: bool = False


class AttendanceMarkRequest(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date
    status: AttendanceStatus
    notes: str | None = None


class AttendanceRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    clock_in: datetime | None
    clock_out: datetime | None
    status: AttendanceStatus | None
    is_late: bool
    location: str | None
    is_biometric: bool
    notes: str | None

    model_config = ConfigDict(from_attributes=True)


class DashboardStatsRead(BaseModel):
    work_date: date
    present: int
    total: int
    attendance_rate_percent: int
    pending_leave_requests: int | None = None
    active_employees: int | None = None


class LeaveCreateRequest(BaseModel):
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(max_length=4000)


class LeaveDecisionRequest(BaseModel):
    status: LeaveStatus
    comments: str | None = Field(default=None, max_length=4000)


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    days: Decimal
    reason: str
    status: LeaveStatus
    approver_id: int | None
    approver_comments: str | None
    decided_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveAllotmentRequest(BaseModel):
    employee_id: int = Field(ge=1)
    leave_type: LeaveType
    year: int = Field(ge=1900, le=9999)
    total_days: Decimal = Field(ge=0, le=366, decimal_places=2)


class LeaveBalanceRead(BaseModel):
    id: int
    employee_id: int
    leave_type: LeaveType
    year: int
    total_days: Decimal
    used_days: Decimal
    remaining_days: Decimal

    model_config = ConfigDict(from_attributes=True)


class PayrollEntryRequest(BaseModel):
    employee_id: int = Field(ge=1)
    bonuses: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    overtime: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    deductions: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)


class PayrollRunRequest(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1900, le=9999)
    entries: list[PayrollEntryRequest] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_unique_employees(self) -> "PayrollRunRequest":
        employee_ids = [entry.employee_id for entry in self.entries]
        if len(employee_ids) != len(set(employee_ids)):
            raise ValueError("entries must not repeat an employee_id")
        return self


class PayrollRecordRead(BaseModel):
    id: int
    employee_id: int
    month: int
    year: int
    base_salary: Decimal
    bonuses: Decimal
    overtime: Decimal
    deductions: Decimal
    tax: Decimal
    net_salary: Decimal
    days_worked: Decimal
    days_absent: int
    payslip_url: str | None
    paid_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PayrollRunFailureRead(BaseModel):
    employee_id: int
    code: str
    message: str


class PayrollRunResponse(BaseModel):
    month: int
    year: int
    processed: list[PayrollRecordRead]
    failed: list[PayrollRunFailureRead]


class PayrollPayRequest(BaseModel):
    payslip_url: str | None = Field(default=None, max_length=2048)


class AuditEntryRead(BaseModel):
    id: int
    actor_id: int | None
    action: str
    resource_type: str
    resource_id: str | None
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    request_meta: dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResumeParseRequest(BaseModel):
    text: str = Field(min_length=1, max_length=50000)


class SummaryRequest(BaseModel):
    text: str = Field(min_length=1, max_length=20000)


class SummaryResponse(BaseModel):
    summary: str | None = None


class ResumeParseResponse(BaseModel):
    ok: bool
    reason: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience_years: float | None = None
    experience_summary: str | None = None
    summary: str | None = None
