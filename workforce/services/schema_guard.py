from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "identities": {"id", "email", "password_hash", "role", "last_login_at"},
    "employees": {"id", "identity_id", "base_salary", "status"},
    "attendance_records": {"id", "employee_id", "work_date", "clock_in", "clock_out", "status"},
    "leave_balances": {"id", "employee_id", "leave_type", "year", "total_days", "used_days", "remaining_days"},
    "leave_requests": {"id", "employee_id", "status", "days"},
    "payroll_records": {"id", "employee_id", "month", "year", "net_salary"},
    "audit_entries": {"id", "actor_id", "action", "resource_type", "before", "after"},
}

# Concurrency guarantees depend on these; without them two writers can both succeed.
REQUIRED_UNIQUE_KEYS: dict[str, set[tuple[str, ...]]] = {
    "identities": {("email",)},
    "attendance_records": {("employee_id", "work_date")},
    "leave_balances": {("employee_id", "leave_type", "year")},
    "payroll_records": {("employee_id", "month", "year")},
}


def _unique_column_sets(inspector: Any, table_name: str) -> set[frozenset[str]]:
    found: set[frozenset[str]] = set()
    for constraint in inspector.get_unique_constraints(table_name) or []:
        found.add(frozenset(str(item) for item in constraint.get("column_names") or []))
    for index in inspector.get_indexes(table_name) or []:
        if index.get("unique"):
            found.add(frozenset(str(item) for item in index.get("column_names") or [] if item))
    return found


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover - depends on backend error types
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, required_keys in REQUIRED_UNIQUE_KEYS.items():
        try:
            unique_sets = _unique_column_sets(inspector, table_name)
        except Exception as exc:  # pragma: no cover - depends on backend error types
            warnings.append(f"UNIQUE_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        for key in sorted(required_keys):
            if frozenset(key) not in unique_sets:
                issues.append(f"MISSING_UNIQUE:{table_name}:{','.join(key)}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
