from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from workforce.models import AttendanceStatus

MONEY_SCALE = Decimal("0.01")
ZERO = Decimal("0")


@dataclass(frozen=True)
class DayTally:
    days_worked: Decimal
    days_absent: int
    days_on_leave: int
    records_counted: int


def _as_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_net(
    *,
    base: Decimal | int | str,
    bonuses: Decimal | int | str = ZERO,
    overtime: Decimal | int | str = ZERO,
    deductions: Decimal | int | str = ZERO,
    tax: Decimal | int | str = ZERO,
) -> Decimal:
    # Intermediate terms keep full precision; rounding happens once on the result.
    gross = _as_decimal(base) + _as_decimal(bonuses) + _as_decimal(overtime)
    net = gross - _as_decimal(deductions) - _as_decimal(tax)
    return net.quantize(MONEY_SCALE, rounding=ROUND_HALF_UP)


def tally_attendance(
    statuses: Iterable[AttendanceStatus | None],
    *,
    half_day_weight: Decimal = Decimal("0.5"),
) -> DayTally:
    worked = ZERO
    absent = 0
    on_leave = 0
    counted = 0
    for status in statuses:
        if status is None:
            continue
        counted += 1
        if status in (AttendanceStatus.PRESENT, AttendanceStatus.LATE):
            worked += 1
        elif status == AttendanceStatus.HALF_DAY:
            worked += half_day_weight
        elif status == AttendanceStatus.ABSENT:
            absent += 1
        elif status == AttendanceStatus.ON_LEAVE:
            on_leave += 1
    return DayTally(
        days_worked=worked.quantize(MONEY_SCALE),
        days_absent=absent,
        days_on_leave=on_leave,
        records_counted=counted,
    )
