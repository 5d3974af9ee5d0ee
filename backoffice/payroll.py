"""Daily payroll line derived from one closed attendance."""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.errors import AttendanceNotFoundError, OutletNotFoundError, OutletSettingsNotFoundError
from backoffice.models import (
    Attendance,
    InternalPayroll,
    Order,
    Outlet,
    OutletSetting,
    Payroll,
    PayrollBonus,
    PayrollDeduction,
)
from backoffice.periods import day_bounds, outlet_zone

logger = logging.getLogger(__name__)

LATE_RATE_PER_MINUTE = Decimal(1000)
TARGET_BONUS_STEP = Decimal(100000)
TARGET_BONUS_PER_STEP = Decimal(5000)
DEDUCTION_TYPES = ("LATE", "ABSENT", "LOAN", "OTHER")

PayrollLine = Union[Payroll, InternalPayroll]


def _dec(value) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def compute_late_deduction(late_minutes: int) -> Decimal:
    return max(0, late_minutes or 0) * LATE_RATE_PER_MINUTE


def compute_target_bonus(orders_total, income_target) -> tuple[Decimal, Decimal]:
    """Return ``(exceeded, bonus)``: one bonus step per full step of sales above target."""
    exceeded = max(Decimal(0), _dec(orders_total) - _dec(income_target))
    steps = exceeded // TARGET_BONUS_STEP
    return exceeded, steps * TARGET_BONUS_PER_STEP


def employee_orders_total(db: Session, employee_id: int, outlet: Outlet, work_date: date) -> Decimal:
    starts_at, ends_at = day_bounds(work_date, outlet_zone(outlet))
    total = db.query(func.coalesce(func.sum(Order.total_amount), 0)).filter(
        Order.employee_id == employee_id,
        Order.outlet_id == outlet.id,
        Order.created_at >= starts_at,
        Order.created_at < ends_at,
        Order.is_active.is_(True),
    ).scalar()
    return _dec(total)


def _recompute(line: PayrollLine) -> None:
    line.final_salary = _dec(line.base_salary) + _dec(line.total_bonus) - _dec(line.total_deduction)


def _owner_kwargs(line: PayrollLine) -> dict:
    if isinstance(line, InternalPayroll):
        return {"internal_payroll_id": line.id}
    return {"payroll_id": line.id}


def add_bonus(
    db: Session,
    line: PayrollLine,
    bonus_type: str,
    amount,
    description: Optional[str] = None,
    reference: Optional[dict] = None,
) -> PayrollBonus:
    # caller commits
    amount = _dec(amount)
    bonus = PayrollBonus(
        type=bonus_type,
        amount=amount,
        description=description,
        reference=reference,
        **_owner_kwargs(line),
    )
    db.add(bonus)
    line.total_bonus = _dec(line.total_bonus) + amount
    _recompute(line)
    return bonus


def add_deduction(
    db: Session,
    line: PayrollLine,
    deduction_type: str,
    amount,
    description: Optional[str] = None,
    reference: Optional[dict] = None,
) -> PayrollDeduction:
    amount = _dec(amount)
    deduction = PayrollDeduction(
        type=deduction_type,
        amount=amount,
        description=description,
        reference=reference,
        **_owner_kwargs(line),
    )
    db.add(deduction)
    line.total_deduction = _dec(line.total_deduction) + amount
    _recompute(line)
    return deduction


def create_payroll_for_attendance(db: Session, attendance_id: int) -> Payroll:
    attendance = db.get(Attendance, attendance_id)
    if not attendance:
        raise AttendanceNotFoundError(attendance_id)

    existing = db.query(Payroll).filter(Payroll.attendance_id == attendance_id).first()
    if existing:
        return existing

    outlet = db.get(Outlet, attendance.outlet_id)
    if not outlet:
        raise OutletNotFoundError(attendance.outlet_id)
    setting = db.query(OutletSetting).filter(
        OutletSetting.outlet_id == outlet.id,
        OutletSetting.is_active.is_(True),
    ).order_by(OutletSetting.id).first()
    if not setting:
        raise OutletSettingsNotFoundError(outlet.id)

    work_date = attendance.work_date
    base_salary = _dec(setting.salary)
    late_deduction = compute_late_deduction(attendance.late_minutes)
    orders_total = employee_orders_total(db, attendance.employee_id, outlet, work_date)
    income_target = _dec(outlet.income_target)
    exceeded, target_bonus = compute_target_bonus(orders_total, income_target)

    payroll = Payroll(
        employee_id=attendance.employee_id,
        outlet_id=outlet.id,
        attendance_id=attendance.id,
        base_salary=base_salary,
        total_bonus=Decimal(0),
        total_deduction=Decimal(0),
        final_salary=base_salary,
        work_date=work_date,
    )
    db.add(payroll)
    try:
        db.flush()
    except IntegrityError:
        # another request created the line for this attendance first
        db.rollback()
        existing = db.query(Payroll).filter(Payroll.attendance_id == attendance_id).first()
        if existing is None:
            raise
        return existing

    if target_bonus > 0:
        add_bonus(
            db,
            payroll,
            "TARGET_ACHIEVEMENT",
            target_bonus,
            description=f"Target exceeded by {exceeded:,.0f}",
            reference={
                "totalSales": float(orders_total),
                "target": float(income_target),
                "exceeded": float(exceeded),
            },
        )
    if late_deduction > 0:
        add_deduction(
            db,
            payroll,
            "LATE",
            late_deduction,
            description=f"Late {attendance.late_minutes} minutes",
            reference={
                "lateMinutes": attendance.late_minutes,
                "ratePerMinute": int(LATE_RATE_PER_MINUTE),
            },
        )
    db.commit()
    db.refresh(payroll)
    logger.info(
        "[payroll] created payroll_id=%s attendance_id=%s final_salary=%s",
        payroll.id,
        attendance.id,
        payroll.final_salary,
    )
    return payroll
