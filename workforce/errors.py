from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    status_code = 400
    code = "BAD_REQUEST"
    message = "Request failed."

    def __init__(self, status_code: int | None = None, code: str | None = None, message: str | None = None):
        self.status_code = status_code if status_code is not None else type(self).status_code
        self.code = code or type(self).code
        self.message = message or type(self).message
        super().__init__(self.message)


# Taxonomy


class ValidationError(ApiError):
    status_code = 422
    code = "VALIDATION_ERROR"
    message = "Request is invalid."


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found."


class ConflictError(ApiError):
    status_code = 409
    code = "CONFLICT"
    message = "Request conflicts with the current state."


class AuthError(ApiError):
    status_code = 401
    code = "UNAUTHENTICATED"
    message = "Authentication required."


class IntegrityViolation(ApiError):
    status_code = 422
    code = "INTEGRITY_VIOLATION"
    message = "Operation would violate a record invariant."


class DependencyError(ApiError):
    """Store, key or collaborator failure. The message returned to callers is always generic."""

    status_code = 503
    code = "DEPENDENCY_FAILURE"
    message = "Service temporarily unavailable."


class DataIntegrityError(ApiError):
    status_code = 500
    code = "DATA_INTEGRITY_FAILURE"
    message = "Stored data failed an integrity check."


# Access gate


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid credentials."


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"
    message = "Authentication required."


class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Insufficient permissions."


class EmailAlreadyRegistered(ConflictError):
    code = "EMAIL_ALREADY_REGISTERED"
    message = "Email already registered."


class TooManyAttempts(ApiError):
    status_code = 429
    code = "TOO_MANY_ATTEMPTS"
    message = "Too many failed login attempts. Please try again later."


# Field cipher


class MalformedToken(DataIntegrityError):
    code = "FIELD_TOKEN_MALFORMED"
    message = "Encrypted field token is malformed."


class AuthenticationFailure(DataIntegrityError):
    code = "FIELD_AUTHENTICATION_FAILED"
    message = "Encrypted field failed authentication."


class CipherKeyMissing(DependencyError):
    code = "FIELD_KEY_MISSING"


# Records


class EmployeeNotFound(NotFoundError):
    code = "EMPLOYEE_NOT_FOUND"
    message = "Employee not found."


class EmployeeInactive(Forbidden):
    code = "EMPLOYEE_INACTIVE"
    message = "Inactive employee cannot perform attendance actions."


class ProfileRequired(NotFoundError):
    code = "PROFILE_REQUIRED"
    message = "An employee profile is required for this action."


class AlreadyClockedIn(ConflictError):
    code = "ALREADY_CLOCKED_IN"
    message = "Already clocked in today."


class NoClockIn(ConflictError):
    code = "NO_CLOCK_IN"
    message = "No clock-in record found for today."


class AlreadyClockedOut(ConflictError):
    code = "ALREADY_CLOCKED_OUT"
    message = "Already clocked out today."


class InvalidRange(ValidationError):
    code = "INVALID_RANGE"
    message = "end_date must be greater than or equal to start_date."


class ReasonTooShort(ValidationError):
    code = "REASON_TOO_SHORT"
    message = "Leave reason is too short."


class NotPending(ConflictError):
    code = "NOT_PENDING"
    message = "Leave request is not pending."


class InsufficientBalance(IntegrityViolation):
    code = "INSUFFICIENT_BALANCE"
    message = "Leave balance is insufficient."


class PeriodAlreadyProcessed(ConflictError):
    code = "PERIOD_ALREADY_PROCESSED"
    message = "Payroll already processed for this period."


class PayrollAlreadyPaid(ConflictError):
    code = "PAYROLL_ALREADY_PAID"
    message = "Payroll record is already paid."


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
