from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from workforce.db import get_db
from workforce.errors import ProfileRequired
from workforce.schemas import (
    PayrollPayRequest,
    PayrollRecordRead,
    PayrollRunFailureRead,
    PayrollRunRequest,
    PayrollRunResponse,
)
from workforce.security import HR_ROLES, RequestContext, require_roles
from workforce.services.payroll import PayrollEntry, current_record, list_records, mark_paid, run_payroll

router = APIRouter(prefix="/payroll", tags=["payroll"])


def _own_employee_id(context: RequestContext) -> int:
    if context.employee_id is None:
        raise ProfileRequired()
    return context.employee_id


@router.post("/run", response_model=PayrollRunResponse)
def run_payroll_endpoint(
    payload: PayrollRunRequest,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> PayrollRunResponse:
    entries = [
        PayrollEntry(
            employee_id=item.employee_id,
            bonuses=item.bonuses,
            overtime=item.overtime,
            deductions=item.deductions,
            tax=item.tax,
        )
        for item in payload.entries
    ]
    result = run_payroll(db, context, month=payload.month, year=payload.year, entries=entries)
    return PayrollRunResponse(
        month=payload.month,
        year=payload.year,
        processed=[PayrollRecordRead.model_validate(item) for item in result.processed],
        failed=[
            PayrollRunFailureRead(employee_id=item.employee_id, code=item.code, message=item.message)
            for item in result.failed
        ],
    )


@router.get("/records", response_model=list[PayrollRecordRead])
def own_payroll_records(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> list[PayrollRecordRead]:
    return [PayrollRecordRead.model_validate(item) for item in list_records(db, _own_employee_id(context))]


@router.get("/current", response_model=PayrollRecordRead | None)
def own_current_payroll(
    context: RequestContext = Depends(require_roles()),
    db: Session = Depends(get_db),
) -> PayrollRecordRead | None:
    record = current_record(db, _own_employee_id(context))
    if record is None:
        return None
    return PayrollRecordRead.model_validate(record)


@router.post("/{record_id}/pay", response_model=PayrollRecordRead)
def pay_payroll_record(
    record_id: int,
    payload: PayrollPayRequest | None = None,
    context: RequestContext = Depends(require_roles(*HR_ROLES)),
    db: Session = Depends(get_db),
) -> PayrollRecordRead:
    payslip_url = payload.payslip_url if payload is not None else None
    return PayrollRecordRead.model_validate(mark_paid(db, context, record_id, payslip_url=payslip_url))
