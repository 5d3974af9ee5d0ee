from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.errors import (
    InvalidRequestStateError,
    MaterialNotFoundError,
    NoAssignedEmployeeError,
    OutletNotFoundError,
    ProductNotFoundError,
    RequestNotFoundError,
)
from backoffice.models import (
    Material,
    MaterialOut,
    Order,
    OrderItem,
    Outlet,
    OutletEmployee,
    OutletMaterialRequest,
    OutletProductRequest,
    Product,
)
from backoffice.periods import as_utc, day_bounds, outlet_zone, to_local, utcnow

logger = logging.getLogger(__name__)


@dataclass
class OrderLine:
    product_id: int
    quantity: int


def _outlet(db: Session, outlet_id: int) -> Outlet:
    outlet = db.get(Outlet, outlet_id)
    if not outlet:
        raise OutletNotFoundError(outlet_id)
    return outlet


def employee_assigned_on(db: Session, outlet: Outlet, at: datetime) -> Optional[int]:
    """Employee with the latest active assignment to the outlet on the local day of ``at``."""
    tz = outlet_zone(outlet)
    starts_at, ends_at = day_bounds(to_local(at, tz).date(), tz)
    assignment = db.query(OutletEmployee).filter(
        OutletEmployee.outlet_id == outlet.id,
        OutletEmployee.is_active.is_(True),
        OutletEmployee.assigned_at >= starts_at,
        OutletEmployee.assigned_at < ends_at,
    ).order_by(OutletEmployee.assigned_at.desc(), OutletEmployee.id.desc()).first()
    return assignment.employee_id if assignment else None


def next_invoice_number(db: Session, outlet: Outlet) -> str:
    sequence = db.query(func.count(Order.id)).filter(Order.outlet_id == outlet.id).scalar() + 1
    return f"TR_{outlet.code}_{sequence:05d}"


def create_order(
    db: Session,
    outlet_id: int,
    payment_method: str,
    items: Sequence[OrderLine],
    at: Optional[datetime] = None,
) -> Order:
    outlet = _outlet(db, outlet_id)
    created_at = as_utc(at or utcnow())

    employee_id = employee_assigned_on(db, outlet, created_at)
    if employee_id is None:
        raise NoAssignedEmployeeError(outlet_id)

    priced = []
    total = Decimal(0)
    for item in items:
        product = db.get(Product, item.product_id)
        if not product or not product.is_active:
            raise ProductNotFoundError(item.product_id)
        line_total = Decimal(item.quantity) * Decimal(product.price or 0)
        priced.append((item, line_total))
        total += line_total

    order = Order(
        outlet_id=outlet.id,
        employee_id=employee_id,
        invoice_number=next_invoice_number(db, outlet),
        payment_method=payment_method,
        total_amount=total,
        status="SUCCESS",
        created_at=created_at,
    )
    db.add(order)
    db.flush()
    for item, line_total in priced:
        db.add(
            OrderItem(
                order_id=order.id,
                product_id=item.product_id,
                quantity=item.quantity,
                price=line_total,
            )
        )
    db.commit()
    db.refresh(order)
    logger.info(
        "[stock] order %s created outlet_id=%s employee_id=%s total=%s",
        order.invoice_number,
        outlet.id,
        employee_id,
        order.total_amount,
    )
    return order


def approve_product_request(
    db: Session, request_id: int, approval_quantity: Optional[int] = None
) -> OutletProductRequest:
    request = db.get(OutletProductRequest, request_id)
    if not request or not request.is_active:
        raise RequestNotFoundError(request_id)
    if request.status != "PENDING":
        raise InvalidRequestStateError(f"outlet request {request_id} is already {request.status.lower()}")
    request.approval_quantity = request.quantity if approval_quantity is None else approval_quantity
    request.status = "APPROVED"
    db.commit()
    db.refresh(request)
    return request


def approve_material_request(
    db: Session, request_id: int, approval_quantity=None
) -> OutletMaterialRequest:
    request = db.get(OutletMaterialRequest, request_id)
    if not request or not request.is_active:
        raise RequestNotFoundError(request_id)
    if request.status != "PENDING":
        raise InvalidRequestStateError(f"outlet request {request_id} is already {request.status.lower()}")
    request.approval_quantity = request.quantity if approval_quantity is None else Decimal(str(approval_quantity))
    request.status = "APPROVED"
    db.commit()
    db.refresh(request)
    return request


def record_material_out(
    db: Session,
    outlet_id: int,
    material_id: int,
    quantity,
    used_at: Optional[datetime] = None,
) -> MaterialOut:
    _outlet(db, outlet_id)
    if not db.get(Material, material_id):
        raise MaterialNotFoundError(material_id)
    material_out = MaterialOut(
        outlet_id=outlet_id,
        material_id=material_id,
        quantity=Decimal(str(quantity)),
        used_at=as_utc(used_at or utcnow()),
    )
    db.add(material_out)
    db.commit()
    db.refresh(material_out)
    return material_out
