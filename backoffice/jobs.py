"""Daily internal payroll rollover.

Run once a day from the system cron, for example::

    0 0 * * * cd /srv/backoffice && python -m backoffice.jobs
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from backoffice.config import configure_logging
from backoffice.db import SessionLocal
from backoffice.models import BasePayroll, InternalPayroll, OutletEmployee, PaymentBatch
from backoffice.periods import local_today, month_bounds, outlet_zone

logger = logging.getLogger(__name__)


def _has_assignment(db: Session, employee_id: int) -> bool:
    return db.query(OutletEmployee.id).filter(
        OutletEmployee.employee_id == employee_id,
        OutletEmployee.is_active.is_(True),
    ).first() is not None


def _roll_one(db: Session, base: BasePayroll, start: date, end: date) -> bool:
    overlapping = db.query(InternalPayroll.id).filter(
        InternalPayroll.employee_id == base.employee_id,
        InternalPayroll.is_active.is_(True),
        InternalPayroll.period_start <= end,
        InternalPayroll.period_end >= start,
    ).first()
    if overlapping:
        return False

    latest = db.query(InternalPayroll).filter(
        InternalPayroll.employee_id == base.employee_id,
        InternalPayroll.is_active.is_(True),
    ).order_by(InternalPayroll.period_end.desc()).first()
    if latest is not None:
        batch = db.get(PaymentBatch, latest.payment_batch_id) if latest.payment_batch_id else None
        if batch is None or batch.status != "PAID":
            return False

    db.add(
        InternalPayroll(
            employee_id=base.employee_id,
            base_payroll_id=base.id,
            base_salary=base.base_salary,
            total_bonus=Decimal(0),
            total_deduction=Decimal(0),
            final_salary=base.base_salary,
            period_start=start,
            period_end=end,
        )
    )
    db.commit()
    return True


def roll_internal_payrolls(db: Session, today: Optional[date] = None) -> dict:
    today = today or local_today(outlet_zone())
    start, end = month_bounds(today)
    counters = {"created": 0, "skipped": 0, "failed": 0}

    bases = db.query(BasePayroll).filter(BasePayroll.is_active.is_(True)).order_by(BasePayroll.id).all()
    for base in bases:
        if _has_assignment(db, base.employee_id):
            counters["skipped"] += 1
            continue
        try:
            created = _roll_one(db, base, start, end)
        except Exception:
            db.rollback()
            logger.exception("[payroll-cron] rollover failed for employee_id=%s", base.employee_id)
            counters["failed"] += 1
            continue
        counters["created" if created else "skipped"] += 1

    logger.info(
        "[payroll-cron] %s to %s: created=%s skipped=%s failed=%s",
        start.isoformat(),
        end.isoformat(),
        counters["created"],
        counters["skipped"],
        counters["failed"],
    )
    return counters


def main() -> None:
    configure_logging()
    db = SessionLocal()
    try:
        roll_internal_payrolls(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
