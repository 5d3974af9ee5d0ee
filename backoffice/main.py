from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from backoffice import attendance as attendance_service
from backoffice import orders as order_service
from backoffice import payroll_periods
from backoffice import stock as stock_service
from backoffice.broadcast import StockEventBroadcaster, StockEventSink, WebSocketHub
from backoffice.config import configure_logging, settings
from backoffice.db import SessionLocal
from backoffice.errors import BackofficeError
from backoffice.models import Attendance, MaterialOut, Order, Payroll
from backoffice.payroll import DEDUCTION_TYPES, create_payroll_for_attendance

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)
stock_hub = WebSocketHub()


def _meta(request_id: Optional[str] = None, warnings: Optional[list[str]] = None) -> dict:
    return {
        "request_id": request_id or f"req_{uuid4().hex}",
        "warnings": warnings or [],
    }


def get_db() -> Session:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_stock_sink() -> StockEventSink:
    return stock_hub


def get_broadcaster(sink: StockEventSink = Depends(get_stock_sink)) -> StockEventBroadcaster:
    return StockEventBroadcaster(sink, enabled=settings.stock_broadcast_enabled)


@app.exception_handler(BackofficeError)
async def handle_backoffice_error(request: Request, exc: BackofficeError) -> JSONResponse:
    logger.info("[api] %s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"data": None, "errors": [exc.to_dict()], "meta": _meta()},
    )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def _plain(value):
    """Money fields leave the services as Decimal; responses carry floats."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_plain(item) for item in value]
    return value


def _attendance_dict(attendance: Attendance) -> dict:
    return {
        "attendance_id": attendance.id,
        "employee_id": attendance.employee_id,
        "outlet_id": attendance.outlet_id,
        "work_date": attendance.work_date.isoformat(),
        "checkin_time": _iso(attendance.checkin_time),
        "checkout_time": _iso(attendance.checkout_time),
        "late_minutes": attendance.late_minutes,
        "late_approval_status": attendance.late_approval_status,
        "late_approved_by": attendance.late_approved_by,
        "attendance_status": attendance.attendance_status,
    }


def _payroll_dict(payroll: Payroll) -> dict:
    return {
        "payroll_id": payroll.id,
        "employee_id": payroll.employee_id,
        "outlet_id": payroll.outlet_id,
        "attendance_id": payroll.attendance_id,
        "work_date": payroll.work_date.isoformat(),
        "base_salary": _money(payroll.base_salary),
        "total_bonus": _money(payroll.total_bonus),
        "total_deduction": _money(payroll.total_deduction),
        "final_salary": _money(payroll.final_salary),
        "payment_batch_id": payroll.payment_batch_id,
    }


@app.get("/", tags=["root"])
def read_root() -> dict:
    return {"status": "ok"}


@app.get("/health", tags=["health"])
def health_check() -> dict:
    return {"status": "healthy"}


class CheckinCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'employee_id': 7, 'outlet_id': 1, 'image_proof': 'uploads/checkin/7-20261014.jpg', 'late_notes': None}}}
    employee_id: int
    outlet_id: int
    image_proof: Optional[str] = None
    late_notes: Optional[str] = None
    late_present_proof: Optional[str] = None
    at: Optional[datetime] = None


class CheckoutCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'employee_id': 7, 'image_proof': 'uploads/checkout/7-20261014.jpg'}}}
    employee_id: int
    image_proof: Optional[str] = None
    at: Optional[datetime] = None


class LateApprovalUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'status': 'APPROVED', 'approver_id': 2}}}
    status: str
    approver_id: Optional[int] = None


@app.post("/api/v1/attendances/checkin", tags=["Attendances"])
def check_in(payload: CheckinCreate, db: Session = Depends(get_db)) -> dict:
    attendance = attendance_service.check_in(
        db,
        employee_id=payload.employee_id,
        outlet_id=payload.outlet_id,
        image_proof=payload.image_proof,
        at=payload.at,
        late_notes=payload.late_notes,
        late_present_proof=payload.late_present_proof,
    )
    return {"data": _attendance_dict(attendance), "meta": _meta()}


@app.post("/api/v1/attendances/checkout", tags=["Attendances"])
def check_out(payload: CheckoutCreate, db: Session = Depends(get_db)) -> dict:
    result = attendance_service.check_out(
        db,
        employee_id=payload.employee_id,
        image_proof=payload.image_proof,
        at=payload.at,
    )
    warnings = [result.payroll_error.message] if result.payroll_error else []
    return {
        "data": {
            "attendance": _attendance_dict(result.attendance),
            "payroll": _payroll_dict(result.payroll) if result.payroll else None,
            "payroll_error": result.payroll_error.to_dict() if result.payroll_error else None,
        },
        "meta": _meta(warnings=warnings),
    }


@app.patch("/api/v1/attendances/{attendance_id}/late-approval", tags=["Attendances"])
def decide_late_arrival(
    attendance_id: int, payload: LateApprovalUpdate, db: Session = Depends(get_db)
) -> dict:
    attendance = attendance_service.decide_late_arrival(
        db, attendance_id, payload.status.upper(), approver_id=payload.approver_id
    )
    return {"data": _attendance_dict(attendance), "meta": _meta()}


@app.post("/api/v1/payrolls/attendances/{attendance_id}", tags=["Payrolls"])
def retry_attendance_payroll(attendance_id: int, db: Session = Depends(get_db)) -> dict:
    payroll = create_payroll_for_attendance(db, attendance_id)
    return {"data": _payroll_dict(payroll), "meta": _meta()}


class ManualDeductionInput(BaseModel):
    model_config = {"populate_by_name": True}
    deduction_date: date = Field(alias="date")
    amount: Decimal = Field(gt=0)
    description: Optional[str] = None
    type: str = "LOAN"

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        value = value.upper()
        if value not in DEDUCTION_TYPES:
            raise ValueError(f"type must be one of {', '.join(DEDUCTION_TYPES)}")
        return value


class PayrollPeriodUpdate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'start_period': '2026-10-12', 'end_period': '2026-10-18', 'manual_bonus': 50000, 'manual_deductions': [{'date': '2026-10-14', 'amount': 20000, 'description': 'Cash advance'}]}}}
    start_period: Optional[date] = None
    end_period: Optional[date] = None
    manual_bonus: Optional[Decimal] = Field(default=None, ge=0)
    manual_deductions: list[ManualDeductionInput] = Field(default_factory=list)


class PaymentCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'payment_method': 'TRANSFER', 'payment_reference': 'TRX-88121', 'notes': 'weekly payroll'}}}
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None


class BasePayrollUpsert(BaseModel):
    model_config = {"json_schema_extra": {"example": {'base_salary': 6500000}}}
    base_salary: Decimal = Field(ge=0)


@app.get("/api/v1/payrolls", tags=["Payrolls"])
def list_payrolls(
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    rows = payroll_periods.list_payroll_summaries(db, start=start_date, end=end_date)
    return {"data": _plain(rows), "meta": _meta()}


@app.get("/api/v1/payrolls/{employee_id}", tags=["Payrolls"])
def get_payroll_detail(
    employee_id: int,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    detail = payroll_periods.get_payroll_detail(db, employee_id, start=start_date, end=end_date)
    return {"data": _plain(detail), "meta": _meta()}


@app.put("/api/v1/payrolls/{employee_id}", tags=["Payrolls"])
def update_payroll_period(
    employee_id: int, payload: PayrollPeriodUpdate, db: Session = Depends(get_db)
) -> dict:
    detail = payroll_periods.update_payroll_period(
        db,
        employee_id,
        start=payload.start_period,
        end=payload.end_period,
        manual_bonus=payload.manual_bonus,
        manual_deductions=[
            payroll_periods.ManualDeduction(
                date=item.deduction_date,
                amount=item.amount,
                description=item.description,
                type=item.type,
            )
            for item in payload.manual_deductions
        ],
    )
    warnings = [
        f"deduction on {item['date']} skipped: {item['reason']}"
        for item in detail["skipped_deductions"]
    ]
    return {"data": _plain(detail), "meta": _meta(warnings=warnings)}


@app.post("/api/v1/payrolls/{employee_id}", tags=["Payrolls"])
def create_payment(
    employee_id: int,
    payload: Optional[PaymentCreate] = None,
    db: Session = Depends(get_db),
) -> dict:
    payload = payload or PaymentCreate()
    slip = payroll_periods.create_payment(
        db,
        employee_id,
        payment_method=payload.payment_method,
        payment_reference=payload.payment_reference,
        notes=payload.notes,
    )
    return {"data": _plain(slip), "meta": _meta()}


@app.get("/api/v1/payrolls/{employee_id}/slip", tags=["Payrolls"])
def get_payment_slip(
    employee_id: int,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    db: Session = Depends(get_db),
) -> dict:
    slip = payroll_periods.get_payment_slip(db, employee_id, start=start_date, end=end_date)
    return {"data": _plain(slip), "meta": _meta()}


@app.put("/api/v1/payrolls/{employee_id}/base", tags=["Payrolls"])
def upsert_base_payroll(
    employee_id: int, payload: BasePayrollUpsert, db: Session = Depends(get_db)
) -> dict:
    base = payroll_periods.upsert_base_payroll(db, employee_id, payload.base_salary)
    return {
        "data": {
            "base_payroll_id": base.id,
            "employee_id": base.employee_id,
            "base_salary": _money(base.base_salary),
            "is_active": base.is_active,
        },
        "meta": _meta(),
    }


class OrderItemInput(BaseModel):
    product_id: int
    quantity: int = Field(gt=0)


class OrderCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'outlet_id': 1, 'payment_method': 'CASH', 'items': [{'product_id': 3, 'quantity': 2}]}}}
    outlet_id: int
    payment_method: str
    items: list[OrderItemInput] = Field(min_length=1)
    at: Optional[datetime] = None


class ProductRequestApproval(BaseModel):
    model_config = {"json_schema_extra": {"example": {'approval_quantity': 40}}}
    approval_quantity: Optional[int] = Field(default=None, ge=0)


class MaterialRequestApproval(BaseModel):
    model_config = {"json_schema_extra": {"example": {'approval_quantity': 2500.5}}}
    approval_quantity: Optional[Decimal] = Field(default=None, ge=0)


class MaterialOutCreate(BaseModel):
    model_config = {"json_schema_extra": {"example": {'outlet_id': 1, 'material_id': 4, 'quantity': 2.5}}}
    outlet_id: int
    material_id: int
    quantity: Decimal = Field(gt=0)
    used_at: Optional[datetime] = None


def _order_dict(order: Order) -> dict:
    return {
        "order_id": order.id,
        "outlet_id": order.outlet_id,
        "employee_id": order.employee_id,
        "invoice_number": order.invoice_number,
        "payment_method": order.payment_method,
        "total_amount": _money(order.total_amount),
        "status": order.status,
        "created_at": _iso(order.created_at),
    }


def _request_dict(request, item_key: str) -> dict:
    return {
        "request_id": request.id,
        "outlet_id": request.outlet_id,
        item_key: getattr(request, item_key),
        "quantity": _plain(request.quantity),
        "approval_quantity": _plain(request.approval_quantity),
        "status": request.status,
    }


def _material_out_dict(material_out: MaterialOut) -> dict:
    return {
        "material_out_id": material_out.id,
        "outlet_id": material_out.outlet_id,
        "material_id": material_out.material_id,
        "quantity": _money(material_out.quantity),
        "used_at": _iso(material_out.used_at),
    }


@app.post("/api/v1/orders", tags=["Orders"])
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    broadcaster: StockEventBroadcaster = Depends(get_broadcaster),
) -> dict:
    order = order_service.create_order(
        db,
        outlet_id=payload.outlet_id,
        payment_method=payload.payment_method,
        items=[order_service.OrderLine(item.product_id, item.quantity) for item in payload.items],
        at=payload.at,
    )
    broadcaster.broadcast_order(db, order)
    return {"data": _order_dict(order), "meta": _meta()}


@app.post("/api/v1/outlet-requests/products/{request_id}:approve", tags=["Outlet Requests"])
def approve_product_request(
    request_id: int,
    payload: Optional[ProductRequestApproval] = None,
    db: Session = Depends(get_db),
    broadcaster: StockEventBroadcaster = Depends(get_broadcaster),
) -> dict:
    quantity = payload.approval_quantity if payload else None
    request = order_service.approve_product_request(db, request_id, quantity)
    broadcaster.broadcast_products(db, request.outlet_id, [request.product_id])
    return {"data": _request_dict(request, "product_id"), "meta": _meta()}


@app.post("/api/v1/outlet-requests/materials/{request_id}:approve", tags=["Outlet Requests"])
def approve_material_request(
    request_id: int,
    payload: Optional[MaterialRequestApproval] = None,
    db: Session = Depends(get_db),
    broadcaster: StockEventBroadcaster = Depends(get_broadcaster),
) -> dict:
    quantity = payload.approval_quantity if payload else None
    request = order_service.approve_material_request(db, request_id, quantity)
    broadcaster.broadcast_materials(db, request.outlet_id, [request.material_id])
    return {"data": _request_dict(request, "material_id"), "meta": _meta()}


@app.post("/api/v1/material-outs", tags=["Material Outs"])
def record_material_out(
    payload: MaterialOutCreate,
    db: Session = Depends(get_db),
    broadcaster: StockEventBroadcaster = Depends(get_broadcaster),
) -> dict:
    material_out = order_service.record_material_out(
        db,
        outlet_id=payload.outlet_id,
        material_id=payload.material_id,
        quantity=payload.quantity,
        used_at=payload.used_at,
    )
    broadcaster.broadcast_materials(db, material_out.outlet_id, [material_out.material_id])
    return {"data": _material_out_dict(material_out), "meta": _meta()}


@app.get("/api/v1/outlets/{outlet_id}/stocks/products/{product_id}", tags=["Stocks"])
def get_product_stock(
    outlet_id: int,
    product_id: int,
    on: Optional[date] = Query(default=None, alias="date"),
    cumulative: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> dict:
    calculate = stock_service.product_availability if cumulative else stock_service.calculate_product_stock
    snapshot = calculate(db, outlet_id, product_id, on)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="product not found")
    return {"data": snapshot.to_payload(), "meta": _meta()}


@app.get("/api/v1/outlets/{outlet_id}/stocks/materials/{material_id}", tags=["Stocks"])
def get_material_stock(
    outlet_id: int,
    material_id: int,
    on: Optional[date] = Query(default=None, alias="date"),
    cumulative: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> dict:
    calculate = stock_service.material_availability if cumulative else stock_service.calculate_material_stock
    snapshot = calculate(db, outlet_id, material_id, on)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="material not found")
    return {"data": snapshot.to_payload(), "meta": _meta()}


@app.websocket("/ws/stocks")
async def stock_socket(websocket: WebSocket, room: str = Query(...)) -> None:
    await stock_hub.connect(websocket, room)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        stock_hub.disconnect(websocket, room)
