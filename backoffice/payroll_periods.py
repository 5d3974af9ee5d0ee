from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.attendance import attendance_summary
from backoffice.errors import (
    EmployeeNotFoundError,
    NoPayrollDataError,
    NoUnpaidPayrollError,
    PaymentConflictError,
)
from backoffice.models import (
    BasePayroll,
    Employee,
    InternalPayroll,
    OutletEmployee,
    PaymentBatch,
    Payroll,
    PayrollBonus,
    PayrollDeduction,
)
from backoffice.payroll import PayrollLine, _dec, add_bonus, add_deduction
from backoffice.periods import (
    format_period,
    local_today,
    month_bounds,
    outlet_zone,
    utcnow,
    week_bounds,
)

logger = logging.getLogger(__name__)


@dataclass
class ManualDeduction:
    date: date
    amount: Decimal
    description: Optional[str] = None
    type: str = "LOAN"


class PayrollStrategy:
    employee_type = ""
    line_model: type = Payroll
    owner_column = "payroll_id"

    def default_period(self, today: date) -> tuple[date, date]:
        raise NotImplementedError

    def unpaid_lines(self, db: Session, employee_id: int, start: date, end: date) -> list:
        raise NotImplementedError

    def latest_unpaid_period(self, db: Session, employee_id: int) -> Optional[tuple[date, date]]:
        raise NotImplementedError

    def lines_for_batch(self, db: Session, batch_id: int) -> list:
        raise NotImplementedError

    def span(self, lines: Sequence[PayrollLine]) -> tuple[date, date]:
        raise NotImplementedError

    def line_date(self, line: PayrollLine) -> date:
        raise NotImplementedError

    def match_line(self, lines: Sequence[PayrollLine], target: date) -> Optional[PayrollLine]:
        raise NotImplementedError

    def _items(self, db: Session, model, lines: Sequence[PayrollLine]) -> list:
        ids = [line.id for line in lines]
        if not ids:
            return []
        column = getattr(model, self.owner_column)
        return db.query(model).filter(column.in_(ids)).order_by(model.created_at, model.id).all()

    def bonuses(self, db: Session, lines: Sequence[PayrollLine]) -> list[PayrollBonus]:
        return self._items(db, PayrollBonus, lines)

    def deductions(self, db: Session, lines: Sequence[PayrollLine]) -> list[PayrollDeduction]:
        return self._items(db, PayrollDeduction, lines)

    def item_date(self, item, lines_by_id: dict) -> Optional[date]:
        line = lines_by_id.get(getattr(item, self.owner_column))
        return self.line_date(line) if line is not None else None

    def link_to_batch(self, db: Session, lines: Sequence[PayrollLine], batch_id: int) -> int:
        model = self.line_model
        return db.query(model).filter(
            model.id.in_([line.id for line in lines]),
            model.payment_batch_id.is_(None),
        ).update(
            {model.payment_batch_id: batch_id}, synchronize_session=False
        )


class OutletPayrollStrategy(PayrollStrategy):
    employee_type = "outlet"
    line_model = Payroll
    owner_column = "payroll_id"

    def default_period(self, today: date) -> tuple[date, date]:
        return week_bounds(today)

    def unpaid_lines(self, db: Session, employee_id: int, start: date, end: date) -> list[Payroll]:
        return db.query(Payroll).filter(
            Payroll.employee_id == employee_id,
            Payroll.payment_batch_id.is_(None),
            Payroll.work_date >= start,
            Payroll.work_date <= end,
            Payroll.is_active.is_(True),
        ).order_by(Payroll.work_date, Payroll.id).all()

    def latest_unpaid_period(self, db: Session, employee_id: int) -> Optional[tuple[date, date]]:
        latest = db.query(Payroll).filter(
            Payroll.employee_id == employee_id,
            Payroll.payment_batch_id.is_(None),
            Payroll.is_active.is_(True),
        ).order_by(Payroll.work_date.desc()).first()
        if not latest:
            return None
        return week_bounds(latest.work_date)

    def lines_for_batch(self, db: Session, batch_id: int) -> list[Payroll]:
        return db.query(Payroll).filter(
            Payroll.payment_batch_id == batch_id,
            Payroll.is_active.is_(True),
        ).order_by(Payroll.work_date, Payroll.id).all()

    def span(self, lines: Sequence[Payroll]) -> tuple[date, date]:
        return lines[0].work_date, lines[-1].work_date

    def line_date(self, line: Payroll) -> date:
        return line.work_date

    def match_line(self, lines: Sequence[Payroll], target: date) -> Optional[Payroll]:
        return next((line for line in lines if line.work_date == target), None)


class InternalPayrollStrategy(PayrollStrategy):
    employee_type = "internal"
    line_model = InternalPayroll
    owner_column = "internal_payroll_id"

    def default_period(self, today: date) -> tuple[date, date]:
        return month_bounds(today)

    def unpaid_lines(self, db: Session, employee_id: int, start: date, end: date) -> list[InternalPayroll]:
        return db.query(InternalPayroll).filter(
            InternalPayroll.employee_id == employee_id,
            InternalPayroll.payment_batch_id.is_(None),
            InternalPayroll.period_start >= start,
            InternalPayroll.period_end <= end,
            InternalPayroll.is_active.is_(True),
        ).order_by(InternalPayroll.period_start, InternalPayroll.id).all()

    def latest_unpaid_period(self, db: Session, employee_id: int) -> Optional[tuple[date, date]]:
        latest = db.query(InternalPayroll).filter(
            InternalPayroll.employee_id == employee_id,
            InternalPayroll.payment_batch_id.is_(None),
            InternalPayroll.is_active.is_(True),
        ).order_by(InternalPayroll.period_end.desc()).first()
        if not latest:
            return None
        return latest.period_start, latest.period_end

    def lines_for_batch(self, db: Session, batch_id: int) -> list[InternalPayroll]:
        return db.query(InternalPayroll).filter(
            InternalPayroll.payment_batch_id == batch_id,
            InternalPayroll.is_active.is_(True),
        ).order_by(InternalPayroll.period_start, InternalPayroll.id).all()

    def span(self, lines: Sequence[InternalPayroll]) -> tuple[date, date]:
        return lines[0].period_start, lines[-1].period_end

    def line_date(self, line: InternalPayroll) -> date:
        return line.period_start

    def match_line(self, lines: Sequence[InternalPayroll], target: date) -> Optional[InternalPayroll]:
        return next(
            (line for line in lines if line.period_start <= target <= line.period_end),
            None,
        )

    def item_date(self, item, lines_by_id: dict) -> Optional[date]:
        recorded = (item.reference or {}).get("date")
        if recorded:
            return date.fromisoformat(recorded)
        return super().item_date(item, lines_by_id)


OUTLET_STRATEGY = OutletPayrollStrategy()
INTERNAL_STRATEGY = InternalPayrollStrategy()


def strategy_for(db: Session, employee_id: int) -> PayrollStrategy:
    assignment = db.query(OutletEmployee.id).filter(
        OutletEmployee.employee_id == employee_id,
        OutletEmployee.is_active.is_(True),
    ).first()
    return OUTLET_STRATEGY if assignment else INTERNAL_STRATEGY


def _employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if not employee:
        raise EmployeeNotFoundError(employee_id)
    return employee


def _today(today: Optional[date]) -> date:
    return today or local_today(outlet_zone())


def _resolve_lines(
    db: Session,
    strategy: PayrollStrategy,
    employee_id: int,
    start: Optional[date],
    end: Optional[date],
    today: Optional[date],
) -> tuple[list, date, date]:
    if start and end:
        lines = strategy.unpaid_lines(db, employee_id, start, end)
    else:
        start, end = strategy.default_period(_today(today))
        lines = strategy.unpaid_lines(db, employee_id, start, end)
        if not lines:
            latest = strategy.latest_unpaid_period(db, employee_id)
            if latest:
                start, end = latest
                lines = strategy.unpaid_lines(db, employee_id, start, end)
    if not lines:
        raise NoUnpaidPayrollError(employee_id)
    return lines, start, end


def _totals(lines: Iterable[PayrollLine]) -> dict:
    lines = list(lines)
    return {
        "total_base_salary": sum((_dec(line.base_salary) for line in lines), Decimal(0)),
        "total_bonus": sum((_dec(line.total_bonus) for line in lines), Decimal(0)),
        "total_deduction": sum((_dec(line.total_deduction) for line in lines), Decimal(0)),
        "final_amount": sum((_dec(line.final_salary) for line in lines), Decimal(0)),
    }


def _sum_amounts(items, item_type: Optional[str] = None) -> Decimal:
    return sum(
        (_dec(item.amount) for item in items if item_type is None or item.type == item_type),
        Decimal(0),
    )


def _adjustment_rows(strategy: PayrollStrategy, items, lines: Sequence[PayrollLine]) -> list[dict]:
    lines_by_id = {line.id: line for line in lines}
    rows = []
    for item in items:
        item_date = strategy.item_date(item, lines_by_id)
        rows.append(
            {
                "id": item.id,
                "type": item.type,
                "date": item_date.isoformat() if item_date else None,
                "amount": _dec(item.amount),
                "description": item.description,
            }
        )
    return rows


def _detail(db: Session, strategy: PayrollStrategy, employee: Employee, lines: Sequence[PayrollLine]) -> dict:
    bonuses = strategy.bonuses(db, lines)
    deductions = strategy.deductions(db, lines)
    span_start, span_end = strategy.span(lines)
    return {
        "employee_id": employee.id,
        "employee_name": employee.name,
        "employee_type": strategy.employee_type,
        "period": format_period(span_start, span_end),
        "start_period": span_start.isoformat(),
        "end_period": span_end.isoformat(),
        **_totals(lines),
        "manual_bonus": _sum_amounts(bonuses, "MANUAL"),
        "bonuses": _adjustment_rows(strategy, bonuses, lines),
        "deductions": _adjustment_rows(strategy, deductions, lines),
    }


def get_payroll_detail(
    db: Session,
    employee_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> dict:
    employee = _employee(db, employee_id)
    strategy = strategy_for(db, employee_id)
    lines, _, _ = _resolve_lines(db, strategy, employee_id, start, end, today)
    return _detail(db, strategy, employee, lines)


def update_payroll_period(
    db: Session,
    employee_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    manual_bonus=None,
    manual_deductions: Sequence[ManualDeduction] = (),
    today: Optional[date] = None,
) -> dict:
    """The manual bonus lands on the last line; deductions land on the line covering their date."""
    employee = _employee(db, employee_id)
    strategy = strategy_for(db, employee_id)
    lines, start, end = _resolve_lines(db, strategy, employee_id, start, end, today)

    skipped: list[dict] = []
    try:
        if manual_bonus is not None and _dec(manual_bonus) > 0:
            add_bonus(db, lines[-1], "MANUAL", manual_bonus, description="Manual bonus")
        for deduction in manual_deductions:
            line = strategy.match_line(lines, deduction.date)
            if line is None:
                logger.warning(
                    "[payroll] manual deduction skipped: employee_id=%s has no payroll on %s",
                    employee_id,
                    deduction.date.isoformat(),
                )
                skipped.append(
                    {
                        "date": deduction.date.isoformat(),
                        "amount": _dec(deduction.amount),
                        "description": deduction.description,
                        "reason": "no payroll line for this date",
                    }
                )
                continue
            add_deduction(
                db,
                line,
                deduction.type or "LOAN",
                deduction.amount,
                description=deduction.description,
                reference={"date": deduction.date.isoformat()},
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    detail = _detail(db, strategy, employee, strategy.unpaid_lines(db, employee_id, start, end))
    detail["skipped_deductions"] = skipped
    return detail


def _latest_batch(db: Session, employee_id: int) -> Optional[PaymentBatch]:
    return db.query(PaymentBatch).filter(
        PaymentBatch.employee_id == employee_id,
    ).order_by(PaymentBatch.created_at.desc(), PaymentBatch.id.desc()).first()


def _slip(
    db: Session,
    strategy: PayrollStrategy,
    employee: Employee,
    lines: Sequence[PayrollLine],
    status: str,
    batch: Optional[PaymentBatch] = None,
) -> dict:
    bonuses = strategy.bonuses(db, lines)
    deductions = strategy.deductions(db, lines)
    totals = _totals(lines)
    span_start, span_end = strategy.span(lines)
    return {
        "employee_id": employee.id,
        "employee_name": employee.name,
        "employee": {"name": employee.name, "nik": employee.nik, "position": employee.position},
        "employee_type": strategy.employee_type,
        "period": format_period(span_start, span_end),
        "start_period": span_start.isoformat(),
        "end_period": span_end.isoformat(),
        "payment_batch_id": batch.id if batch else None,
        "status": status,
        "paid_at": batch.paid_at.isoformat() if batch and batch.paid_at else None,
        **totals,
        "manual_bonus": _sum_amounts(bonuses, "MANUAL"),
        "total_salary_and_bonus": totals["total_base_salary"] + totals["total_bonus"],
        "total_deduction_loan": _sum_amounts(deductions, "LOAN"),
        "total_absent_deduction": _sum_amounts(deductions, "ABSENT"),
        "total_late_deduction": _sum_amounts(deductions, "LATE"),
        "total_amount": totals["total_base_salary"] + totals["total_bonus"] - totals["total_deduction"],
        "attendance_summary": attendance_summary(db, employee.id, span_start, span_end),
        "bonuses": _adjustment_rows(strategy, bonuses, lines),
        "deductions": _adjustment_rows(strategy, deductions, lines),
        "payroll_details": [
            {
                "date": strategy.line_date(line).isoformat(),
                "base_salary": _dec(line.base_salary),
                "bonus": _dec(line.total_bonus),
                "deduction": _dec(line.total_deduction),
                "final_salary": _dec(line.final_salary),
            }
            for line in lines
        ],
    }


def create_payment(
    db: Session,
    employee_id: int,
    payment_method: Optional[str] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
    today: Optional[date] = None,
) -> dict:
    employee = _employee(db, employee_id)
    strategy = strategy_for(db, employee_id)
    lines, _, _ = _resolve_lines(db, strategy, employee_id, None, None, today)
    totals = _totals(lines)
    span_start, span_end = strategy.span(lines)

    try:
        batch = PaymentBatch(
            employee_id=employee_id,
            period_start=span_start,
            period_end=span_end,
            total_base_salary=totals["total_base_salary"],
            total_bonus=totals["total_bonus"],
            total_deduction=totals["total_deduction"],
            final_amount=totals["final_amount"],
            status="PAID",
            paid_at=utcnow(),
            payment_method=payment_method,
            payment_reference=payment_reference,
            notes=notes,
        )
        db.add(batch)
        db.flush()
        linked = strategy.link_to_batch(db, lines, batch.id)
        if linked != len(lines):
            raise PaymentConflictError(employee_id)
        db.commit()
    except (SQLAlchemyError, PaymentConflictError):
        db.rollback()
        raise
    db.refresh(batch)
    logger.info(
        "[payroll] payment batch_id=%s employee_id=%s linked=%s final_amount=%s",
        batch.id,
        employee_id,
        linked,
        batch.final_amount,
    )
    return _slip(db, strategy, employee, strategy.lines_for_batch(db, batch.id), batch.status, batch)


def get_payment_slip(
    db: Session,
    employee_id: int,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> dict:
    employee = _employee(db, employee_id)
    strategy = strategy_for(db, employee_id)
    if not (start and end):
        start, end = strategy.default_period(_today(today))

    lines = strategy.unpaid_lines(db, employee_id, start, end)
    if lines:
        return _slip(db, strategy, employee, lines, "PREVIEW")

    batch = _latest_batch(db, employee_id)
    if batch:
        lines = strategy.lines_for_batch(db, batch.id)
    if not lines:
        raise NoPayrollDataError(employee_id)
    return _slip(db, strategy, employee, lines, batch.status, batch)


def list_payroll_summaries(
    db: Session,
    start: Optional[date] = None,
    end: Optional[date] = None,
    today: Optional[date] = None,
) -> list[dict]:
    """A payment batch inside the period wins over unpaid lines."""
    rows = []
    employees = db.query(Employee).filter(Employee.is_active.is_(True)).order_by(Employee.name).all()
    for employee in employees:
        strategy = strategy_for(db, employee.id)
        if start and end:
            lo, hi = start, end
        else:
            lo, hi = strategy.default_period(_today(today))
        batch = db.query(PaymentBatch).filter(
            PaymentBatch.employee_id == employee.id,
            PaymentBatch.period_start >= lo,
            PaymentBatch.period_end <= hi,
        ).order_by(PaymentBatch.created_at.desc(), PaymentBatch.id.desc()).first()
        if batch:
            period = (batch.period_start, batch.period_end)
            totals = {
                "total_base_salary": _dec(batch.total_base_salary),
                "total_bonus": _dec(batch.total_bonus),
                "total_deduction": _dec(batch.total_deduction),
                "final_amount": _dec(batch.final_amount),
            }
            status = batch.status
        else:
            lines = strategy.unpaid_lines(db, employee.id, lo, hi)
            if not lines:
                continue
            period = strategy.span(lines)
            totals = _totals(lines)
            status = "PENDING"
        rows.append(
            {
                "employee_id": employee.id,
                "employee_name": employee.name,
                "employee_type": strategy.employee_type,
                "period": format_period(*period),
                **totals,
                "status": status,
            }
        )
    return rows


def upsert_base_payroll(db: Session, employee_id: int, base_salary) -> BasePayroll:
    _employee(db, employee_id)
    base = db.query(BasePayroll).filter(BasePayroll.employee_id == employee_id).first()
    if base:
        base.base_salary = _dec(base_salary)
    else:
        base = BasePayroll(employee_id=employee_id, base_salary=_dec(base_salary))
        db.add(base)
    db.commit()
    db.refresh(base)
    return base
