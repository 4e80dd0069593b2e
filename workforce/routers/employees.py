from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.models import EmployeeStatus
from workforce.schemas import (
    BiometricEnrollRequest,
    BiometricRead,
    EmployeeCreate,
    EmployeeRead,
    EmployeeStatusUpdateRequest,
)
from workforce.security import HR_ROLES, MANAGEMENT_ROLES, RequestContext, require_roles
from workforce.services.employees import (
    create_profile,
    enroll_biometric,
    get_biometric,
    get_own_profile,
    list_profiles,
    update_status,
)

router = APIRouter(tags=["employees"])


@router.post("/employees", response_model=EmployeeRead, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: EmployeeCreate,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = create_profile(db, context, **payload.model_dump())
    return EmployeeRead.model_validate(employee)


@router.get("/employees", response_model=list[EmployeeRead])
def list_employees(
    status_filter: EmployeeStatus | None = Query(default=None, alias="status"),
    _context: RequestContext = Depends(require_roles(*MANAGEMENT_ROLES)),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    return [EmployeeRead.model_validate(item) for item in list_profiles(db, status=status_filter)]


@router.get("/profile", response_model=EmployeeRead)
def own_profile(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(get_own_profile(db, context))


@router.patch("/employees/{employee_id}/status", response_model=EmployeeRead)
def change_employee_status(
    employee_id: int,
    payload: EmployeeStatusUpdateRequest,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> EmployeeRead:
    return EmployeeRead.model_validate(update_status(db, context, employee_id, payload.status))


@router.post("/attendance/biometric/enroll", response_model=BiometricRead)
def enroll_own_biometric(
    payload: BiometricEnrollRequest,
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> BiometricRead:
    return BiometricRead.model_validate(enroll_biometric(db, context, payload.descriptor))


@router.get("/employees/{employee_id}/biometric", response_model=BiometricRead)
def read_biometric(
    employee_id: int,
    _context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> BiometricRead:
    return BiometricRead.model_validate(get_biometric(db, employee_id))
