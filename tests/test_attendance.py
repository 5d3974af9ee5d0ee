from datetime import date, datetime, time, timezone

import pytest
from sqlalchemy.exc import OperationalError

from backoffice import attendance as attendance_module
from backoffice import payroll as payroll_module
from backoffice.attendance import (
    attendance_summary,
    check_in,
    check_out,
    compute_late_minutes,
    decide_late_arrival,
    resolve_schedule,
)
from backoffice.errors import (
    DuplicateCheckinError,
    DuplicateCheckoutError,
    EmployeeNotFoundError,
    InvalidLateApprovalError,
    NoCheckinError,
    NoScheduleError,
    OutletSettingsNotFoundError,
    PayrollStepError,
)
from backoffice.models import Payroll
from backoffice.payroll import create_payroll_for_attendance
from conftest import local


def test_late_minutes_zero_when_early_or_on_time() -> None:
    assert compute_late_minutes(time(8, 30), time(9, 0)) == 0
    assert compute_late_minutes(time(9, 0), time(9, 0)) == 0
    assert compute_late_minutes(time(9, 45), time(9, 0)) == 45


def test_late_minutes_never_decrease_with_later_checkin() -> None:
    previous = 0
    for minute in range(0, 24 * 60, 7):
        value = compute_late_minutes(time(minute // 60, minute % 60), time(9, 0))
        assert value >= previous
        previous = value


def test_resolve_schedule_prefers_earliest_check_in(seed, db) -> None:
    outlet = seed.outlet()
    seed.setting(outlet, check_in=time(10, 0), days=["TUESDAY"])
    early = seed.setting(outlet, check_in=time(8, 0), days=["TUESDAY", "WEDNESDAY"])
    seed.setting(outlet, check_in=time(7, 0), days=["MONDAY"])

    assert resolve_schedule(db, outlet.id, "TUESDAY").id == early.id


def test_check_in_without_schedule_for_weekday(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet, days=["MONDAY"])

    with pytest.raises(NoScheduleError) as excinfo:
        check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 8, 55))
    assert excinfo.value.weekday == "TUESDAY"


def test_check_in_unknown_employee(seed, db) -> None:
    outlet = seed.outlet()
    with pytest.raises(EmployeeNotFoundError):
        check_in(db, 999, outlet.id, at=local(2026, 10, 13, 9, 0))


def test_check_in_records_late_arrival(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet, check_in=time(8, 0))

    attendance = check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 8, 45), late_notes="flat tyre")

    assert attendance.work_date == date(2026, 10, 13)
    assert attendance.late_minutes == 45
    assert attendance.late_approval_status == "PENDING"
    assert attendance.late_notes == "flat tyre"


def test_work_date_follows_outlet_timezone(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)

    # 23:30 UTC on the 13th is 06:30 on the 14th in Jakarta
    attendance = check_in(
        db, employee.id, outlet.id, at=datetime(2026, 10, 13, 23, 30, tzinfo=timezone.utc)
    )

    assert attendance.work_date == date(2026, 10, 14)
    assert attendance.late_minutes == 0
    assert attendance.late_approval_status is None


def test_second_check_in_same_day_rejected(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 8, 50))

    with pytest.raises(DuplicateCheckinError):
        check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 12, 0))


def test_checkout_creates_payroll_with_late_deduction(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet, salary=100000)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 45))

    result = check_out(db, employee.id, at=local(2026, 10, 13, 17, 5))

    assert result.payroll_error is None
    assert result.attendance.checkout_time is not None
    payroll = result.payroll
    assert payroll.work_date == date(2026, 10, 13)
    assert payroll.base_salary == 100000
    assert payroll.total_deduction == 45000
    assert payroll.final_salary == 55000


def test_checkout_twice_keeps_single_payroll(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 0))
    first = check_out(db, employee.id, at=local(2026, 10, 13, 17, 0))

    with pytest.raises(DuplicateCheckoutError):
        check_out(db, employee.id, at=local(2026, 10, 13, 17, 30))

    again = create_payroll_for_attendance(db, first.attendance.id)
    assert again.id == first.payroll.id
    assert db.query(Payroll).filter(Payroll.attendance_id == first.attendance.id).count() == 1


def test_checkout_without_checkin_today(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 12, 9, 0))

    with pytest.raises(NoCheckinError):
        check_out(db, employee.id, at=local(2026, 10, 13, 17, 0))


def test_checkout_survives_payroll_failure_and_retry_succeeds(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    setting = seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 10))

    setting.is_active = False
    db.commit()
    result = check_out(db, employee.id, at=local(2026, 10, 13, 17, 0))

    assert result.payroll is None
    assert isinstance(result.payroll_error, OutletSettingsNotFoundError)
    db.refresh(result.attendance)
    assert result.attendance.checkout_time is not None

    setting.is_active = True
    db.commit()
    payroll = create_payroll_for_attendance(db, result.attendance.id)
    assert payroll.total_deduction == 10000


def test_late_arrival_decision(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    manager = seed.employee(name="Budi", nik="3174000002")
    seed.setting(outlet)
    late = check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 20))
    on_time = check_in(db, manager.id, outlet.id, at=local(2026, 10, 13, 8, 55))

    decided = decide_late_arrival(db, late.id, "APPROVED", approver_id=manager.id)
    assert decided.late_approval_status == "APPROVED"
    assert decided.late_approved_by == manager.id

    with pytest.raises(InvalidLateApprovalError):
        decide_late_arrival(db, late.id, "REJECTED")
    with pytest.raises(InvalidLateApprovalError):
        decide_late_arrival(db, on_time.id, "APPROVED")


def test_attendance_summary_counts(seed, db) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 12, 8, 55))
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 30))
    sick_day = check_in(db, employee.id, outlet.id, at=local(2026, 10, 14, 9, 0))
    sick_day.attendance_status = "SICK"
    db.commit()

    summary = attendance_summary(db, employee.id, date(2026, 10, 12), date(2026, 10, 18))

    assert summary == {
        "count_present": 2,
        "count_not_present": 0,
        "count_leave": 0,
        "count_excused": 0,
        "count_sick": 1,
        "count_late": 1,
    }


def test_checkout_survives_database_failure_in_payroll_step(seed, db, monkeypatch) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 0))

    def database_down(db, attendance_id):
        raise OperationalError("INSERT INTO payroll", {}, Exception("database is locked"))

    monkeypatch.setattr(attendance_module, "create_payroll_for_attendance", database_down)

    result = check_out(db, employee.id, at=local(2026, 10, 13, 17, 0))

    assert result.payroll is None
    assert isinstance(result.payroll_error, PayrollStepError)
    assert result.payroll_error.to_dict()["type"] == "payroll_failed"
    db.refresh(result.attendance)
    assert result.attendance.checkout_time is not None
    assert db.query(Payroll).count() == 0


def test_payroll_created_by_concurrent_request_is_returned(seed, db, session_factory, monkeypatch) -> None:
    outlet = seed.outlet()
    employee = seed.employee()
    seed.setting(outlet)
    attendance = check_in(db, employee.id, outlet.id, at=local(2026, 10, 13, 9, 15))
    orders_total = payroll_module.employee_orders_total

    def create_elsewhere_first(*args, **kwargs):
        monkeypatch.setattr(payroll_module, "employee_orders_total", orders_total)
        other = session_factory()
        try:
            create_payroll_for_attendance(other, attendance.id)
        finally:
            other.close()
        return orders_total(*args, **kwargs)

    monkeypatch.setattr(payroll_module, "employee_orders_total", create_elsewhere_first)

    payroll = create_payroll_for_attendance(db, attendance.id)

    assert payroll.attendance_id == attendance.id
    assert payroll.total_deduction == 15000
    assert db.query(Payroll).filter(Payroll.attendance_id == attendance.id).count() == 1
