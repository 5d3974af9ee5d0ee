from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice.errors import (
    AttendanceNotFoundError,
    BackofficeError,
    DuplicateCheckinError,
    DuplicateCheckoutError,
    EmployeeNotFoundError,
    InvalidLateApprovalError,
    NoCheckinError,
    NoScheduleError,
    OutletNotFoundError,
    PayrollStepError,
)
from backoffice.models import Attendance, Employee, Outlet, OutletSetting, Payroll
from backoffice.payroll import create_payroll_for_attendance
from backoffice.periods import (
    as_utc,
    minutes_of_day,
    outlet_zone,
    to_local,
    utcnow,
    weekday_name,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    attendance: Attendance
    payroll: Optional[Payroll] = None
    payroll_error: Optional[BackofficeError] = None


def compute_late_minutes(checkin_local: time, scheduled: time) -> int:
    """Minutes past the scheduled check-in; arriving early or on time is 0."""
    return max(0, minutes_of_day(checkin_local) - minutes_of_day(scheduled))


def resolve_schedule(db: Session, outlet_id: int, weekday: str) -> OutletSetting:
    settings_rows = db.query(OutletSetting).filter(
        OutletSetting.outlet_id == outlet_id,
        OutletSetting.is_active.is_(True),
    ).all()
    matching = [row for row in settings_rows if weekday in (row.days or [])]
    if not matching:
        raise NoScheduleError(outlet_id, weekday)
    return min(matching, key=lambda row: (row.check_in_time, row.id))


def _attendance_on(db: Session, employee_id: int, work_date: date) -> Optional[Attendance]:
    return db.query(Attendance).filter(
        Attendance.employee_id == employee_id,
        Attendance.work_date == work_date,
        Attendance.is_active.is_(True),
    ).first()


def check_in(
    db: Session,
    employee_id: int,
    outlet_id: int,
    image_proof: Optional[str] = None,
    at: Optional[datetime] = None,
    late_notes: Optional[str] = None,
    late_present_proof: Optional[str] = None,
) -> Attendance:
    if not db.get(Employee, employee_id):
        raise EmployeeNotFoundError(employee_id)
    outlet = db.get(Outlet, outlet_id)
    if not outlet:
        raise OutletNotFoundError(outlet_id)

    checkin_at = as_utc(at or utcnow())
    local_at = to_local(checkin_at, outlet_zone(outlet))
    work_date = local_at.date()

    if _attendance_on(db, employee_id, work_date):
        raise DuplicateCheckinError(employee_id, work_date)

    schedule = resolve_schedule(db, outlet_id, weekday_name(work_date))
    late_minutes = compute_late_minutes(local_at.time(), schedule.check_in_time)

    attendance = Attendance(
        employee_id=employee_id,
        outlet_id=outlet_id,
        work_date=work_date,
        checkin_time=checkin_at,
        checkin_image_proof=image_proof,
        late_minutes=late_minutes,
        late_notes=late_notes,
        late_present_proof=late_present_proof,
        late_approval_status="PENDING" if late_minutes > 0 else None,
        attendance_status="PRESENT",
    )
    db.add(attendance)
    try:
        db.commit()
    except IntegrityError:
        # a concurrent check-in won the unique (employee_id, work_date) race
        db.rollback()
        raise DuplicateCheckinError(employee_id, work_date)
    db.refresh(attendance)
    logger.info(
        "[attendance] check-in employee_id=%s outlet_id=%s late_minutes=%s",
        employee_id,
        outlet_id,
        late_minutes,
    )
    return attendance


def check_out(
    db: Session,
    employee_id: int,
    image_proof: Optional[str] = None,
    at: Optional[datetime] = None,
) -> CheckoutResult:
    """Commits the checkout first; payroll failures come back in ``payroll_error``."""
    checkout_at = as_utc(at or utcnow())
    attendance = db.query(Attendance).filter(
        Attendance.employee_id == employee_id,
        Attendance.is_active.is_(True),
    ).order_by(Attendance.work_date.desc()).first()

    today = None
    if attendance:
        outlet = db.get(Outlet, attendance.outlet_id)
        today = to_local(checkout_at, outlet_zone(outlet)).date()
    if not attendance or attendance.work_date != today:
        raise NoCheckinError(employee_id, today or to_local(checkout_at, outlet_zone()).date())
    if attendance.checkout_time is not None:
        raise DuplicateCheckoutError(employee_id, attendance.work_date)

    attendance.checkout_time = checkout_at
    attendance.checkout_image_proof = image_proof
    db.commit()
    db.refresh(attendance)
    logger.info("[attendance] check-out employee_id=%s attendance_id=%s", employee_id, attendance.id)

    result = CheckoutResult(attendance=attendance)
    try:
        result.payroll = create_payroll_for_attendance(db, attendance.id)
    except BackofficeError as exc:
        db.rollback()
        logger.warning(
            "[attendance] payroll step failed for attendance_id=%s: %s",
            attendance.id,
            exc.message,
        )
        result.payroll_error = exc
    except SQLAlchemyError:
        db.rollback()
        logger.warning(
            "[attendance] payroll step could not be saved for attendance_id=%s",
            attendance.id,
            exc_info=True,
        )
        result.payroll_error = PayrollStepError(attendance.id)
    return result


def decide_late_arrival(
    db: Session,
    attendance_id: int,
    status: str,
    approver_id: Optional[int] = None,
) -> Attendance:
    attendance = db.get(Attendance, attendance_id)
    if not attendance:
        raise AttendanceNotFoundError(attendance_id)
    if status not in ("APPROVED", "REJECTED"):
        raise InvalidLateApprovalError(f"unsupported late approval status {status}")
    if attendance.late_minutes <= 0:
        raise InvalidLateApprovalError("attendance is not late")
    if attendance.late_approval_status != "PENDING":
        raise InvalidLateApprovalError(
            f"late arrival already {(attendance.late_approval_status or '').lower()}"
        )
    attendance.late_approval_status = status
    attendance.late_approved_by = approver_id
    db.commit()
    db.refresh(attendance)
    return attendance


def attendance_summary(db: Session, employee_id: int, start: date, end: date) -> dict:
    def _count(condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    row = db.query(
        _count(Attendance.attendance_status == "PRESENT"),
        _count(Attendance.attendance_status == "NOT_PRESENT"),
        _count(Attendance.attendance_status == "LEAVE"),
        _count(Attendance.attendance_status == "EXCUSED"),
        _count(Attendance.attendance_status == "SICK"),
        _count(Attendance.late_minutes > 0),
    ).filter(
        Attendance.employee_id == employee_id,
        Attendance.work_date >= start,
        Attendance.work_date <= end,
        Attendance.is_active.is_(True),
    ).one()
    keys = (
        "count_present",
        "count_not_present",
        "count_leave",
        "count_excused",
        "count_sick",
        "count_late",
    )
    return {key: int(value or 0) for key, value in zip(keys, row)}
