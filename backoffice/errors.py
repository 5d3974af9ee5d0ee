from __future__ import annotations

from typing import Optional


class BackofficeError(Exception):
    status_code = 400
    error_type = "business_rule"
    field: Optional[str] = None

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if field is not None:
            self.field = field

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "type": self.error_type}


class NotFoundError(BackofficeError):
    status_code = 404
    error_type = "not_found"


class ConflictError(BackofficeError):
    status_code = 409
    error_type = "conflict"


class EmployeeNotFoundError(NotFoundError):
    field = "employee_id"

    def __init__(self, employee_id: int) -> None:
        super().__init__(f"employee {employee_id} not found")


class OutletNotFoundError(NotFoundError):
    field = "outlet_id"

    def __init__(self, outlet_id: int) -> None:
        super().__init__(f"outlet {outlet_id} not found")


class AttendanceNotFoundError(NotFoundError):
    field = "attendance_id"

    def __init__(self, attendance_id: int) -> None:
        super().__init__(f"attendance {attendance_id} not found")


class ProductNotFoundError(NotFoundError):
    field = "product_id"

    def __init__(self, product_id: int) -> None:
        super().__init__(f"product {product_id} not found")


class MaterialNotFoundError(NotFoundError):
    field = "material_id"

    def __init__(self, material_id: int) -> None:
        super().__init__(f"material {material_id} not found")


class RequestNotFoundError(NotFoundError):
    field = "request_id"

    def __init__(self, request_id: int) -> None:
        super().__init__(f"outlet request {request_id} not found")


class NoScheduleError(BackofficeError):
    status_code = 422
    error_type = "no_schedule"
    field = "outlet_id"

    def __init__(self, outlet_id: int, weekday: str) -> None:
        super().__init__(f"outlet {outlet_id} has no schedule for {weekday}")
        self.outlet_id = outlet_id
        self.weekday = weekday


class DuplicateCheckinError(ConflictError):
    error_type = "duplicate_checkin"
    field = "employee_id"

    def __init__(self, employee_id: int, work_date) -> None:
        super().__init__(f"employee {employee_id} already checked in on {work_date.isoformat()}")


class NoCheckinError(NotFoundError):
    error_type = "no_checkin"
    field = "employee_id"

    def __init__(self, employee_id: int, work_date) -> None:
        super().__init__(f"employee {employee_id} has no check-in on {work_date.isoformat()}")


class DuplicateCheckoutError(ConflictError):
    error_type = "duplicate_checkout"
    field = "employee_id"

    def __init__(self, employee_id: int, work_date) -> None:
        super().__init__(f"employee {employee_id} already checked out on {work_date.isoformat()}")


class InvalidLateApprovalError(ConflictError):
    error_type = "invalid_late_approval"
    field = "status"


class OutletSettingsNotFoundError(BackofficeError):
    status_code = 422
    error_type = "outlet_settings_not_found"
    field = "outlet_id"

    def __init__(self, outlet_id: int) -> None:
        super().__init__(f"outlet {outlet_id} has no settings")


class NoUnpaidPayrollError(NotFoundError):
    error_type = "no_unpaid_payroll"
    field = "employee_id"

    def __init__(self, employee_id: int) -> None:
        super().__init__(f"no unpaid payrolls found for employee {employee_id}")


class NoPayrollDataError(NotFoundError):
    error_type = "no_payroll_data"
    field = "employee_id"

    def __init__(self, employee_id: int) -> None:
        super().__init__(f"no payroll data found for employee {employee_id}")


class NoAssignedEmployeeError(BackofficeError):
    status_code = 422
    error_type = "no_assigned_employee"
    field = "outlet_id"

    def __init__(self, outlet_id: int) -> None:
        super().__init__(f"no employee is assigned to outlet {outlet_id} today")


class InvalidRequestStateError(ConflictError):
    error_type = "invalid_request_state"
    field = "status"


class PaymentConflictError(ConflictError):
    error_type = "payment_conflict"
    field = "employee_id"

    def __init__(self, employee_id: int) -> None:
        super().__init__(f"payroll lines of employee {employee_id} were paid by another batch")


class PayrollStepError(BackofficeError):
    status_code = 500
    error_type = "payroll_failed"
    field = "attendance_id"

    def __init__(self, attendance_id: int) -> None:
        super().__init__(f"payroll for attendance {attendance_id} could not be saved, retry later")
