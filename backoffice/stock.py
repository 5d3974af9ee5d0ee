from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backoffice.models import (
    Material,
    MaterialOut,
    Order,
    OrderItem,
    Outlet,
    OutletMaterialRequest,
    OutletProductRequest,
    Product,
)
from backoffice.periods import day_bounds, local_today, outlet_zone


def _number(value: Decimal):
    value = Decimal(value or 0)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


@dataclass(frozen=True)
class StockSnapshot:
    kind: str
    date: date
    outlet_id: int
    item_id: int
    item_name: str
    first_stock: Decimal
    stock_in: Decimal
    consumed: Decimal

    @property
    def remaining_stock(self) -> Decimal:
        return self.first_stock + self.stock_in - self.consumed

    def to_payload(self) -> dict:
        consumed_key = "sold_stock" if self.kind == "product" else "used_stock"
        return {
            "date": self.date.isoformat(),
            "outlet_id": self.outlet_id,
            f"{self.kind}_id": self.item_id,
            f"{self.kind}_name": self.item_name,
            "first_stock": _number(self.first_stock),
            "stock_in": _number(self.stock_in),
            consumed_key: _number(self.consumed),
            "remaining_stock": _number(self.remaining_stock),
        }


def _scalar_sum(query) -> Decimal:
    return Decimal(str(query.scalar() or 0))


def _between(column, starts_at: Optional[datetime], ends_at: datetime) -> list:
    filters = [column < ends_at]
    if starts_at is not None:
        filters.append(column >= starts_at)
    return filters


def _product_in(db: Session, outlet_id: int, product_id: int, starts_at, ends_at) -> Decimal:
    return _scalar_sum(
        db.query(func.sum(OutletProductRequest.approval_quantity)).filter(
            OutletProductRequest.outlet_id == outlet_id,
            OutletProductRequest.product_id == product_id,
            OutletProductRequest.status == "APPROVED",
            OutletProductRequest.is_active.is_(True),
            *_between(OutletProductRequest.created_at, starts_at, ends_at),
        )
    )


def _product_sold(db: Session, outlet_id: int, product_id: int, starts_at, ends_at) -> Decimal:
    return _scalar_sum(
        db.query(func.sum(OrderItem.quantity))
        .join(Order, Order.id == OrderItem.order_id)
        .filter(
            Order.outlet_id == outlet_id,
            OrderItem.product_id == product_id,
            Order.is_active.is_(True),
            OrderItem.is_active.is_(True),
            *_between(Order.created_at, starts_at, ends_at),
        )
    )


def _material_in(db: Session, outlet_id: int, material_id: int, starts_at, ends_at) -> Decimal:
    return _scalar_sum(
        db.query(func.sum(OutletMaterialRequest.approval_quantity)).filter(
            OutletMaterialRequest.outlet_id == outlet_id,
            OutletMaterialRequest.material_id == material_id,
            OutletMaterialRequest.status == "APPROVED",
            OutletMaterialRequest.is_active.is_(True),
            *_between(OutletMaterialRequest.created_at, starts_at, ends_at),
        )
    )


def _material_used(db: Session, outlet_id: int, material_id: int, starts_at, ends_at) -> Decimal:
    return _scalar_sum(
        db.query(func.sum(MaterialOut.quantity)).filter(
            MaterialOut.outlet_id == outlet_id,
            MaterialOut.material_id == material_id,
            MaterialOut.is_active.is_(True),
            *_between(MaterialOut.used_at, starts_at, ends_at),
        )
    )


_SOURCES = {
    "product": (Product, _product_in, _product_sold),
    "material": (Material, _material_in, _material_used),
}


def _snapshot(
    db: Session,
    kind: str,
    outlet_id: int,
    item_id: int,
    on: Optional[date],
    cumulative: bool,
) -> Optional[StockSnapshot]:
    model, inbound, consumption = _SOURCES[kind]
    item = db.get(model, item_id)
    if not item:
        return None

    tz = outlet_zone(db.get(Outlet, outlet_id))
    on = on or local_today(tz)
    starts_at, ends_at = day_bounds(on, tz)

    if cumulative:
        first_stock = inbound(db, outlet_id, item_id, None, starts_at) - consumption(
            db, outlet_id, item_id, None, starts_at
        )
    else:
        # previous day only, not the running balance
        prev_starts_at, prev_ends_at = day_bounds(on - timedelta(days=1), tz)
        first_stock = inbound(db, outlet_id, item_id, prev_starts_at, prev_ends_at) - consumption(
            db, outlet_id, item_id, prev_starts_at, prev_ends_at
        )

    return StockSnapshot(
        kind=kind,
        date=on,
        outlet_id=outlet_id,
        item_id=item.id,
        item_name=item.name,
        first_stock=first_stock,
        stock_in=inbound(db, outlet_id, item_id, starts_at, ends_at),
        consumed=consumption(db, outlet_id, item_id, starts_at, ends_at),
    )


def calculate_product_stock(
    db: Session, outlet_id: int, product_id: int, on: Optional[date] = None
) -> Optional[StockSnapshot]:
    return _snapshot(db, "product", outlet_id, product_id, on, cumulative=False)


def calculate_material_stock(
    db: Session, outlet_id: int, material_id: int, on: Optional[date] = None
) -> Optional[StockSnapshot]:
    return _snapshot(db, "material", outlet_id, material_id, on, cumulative=False)


def product_availability(
    db: Session, outlet_id: int, product_id: int, on: Optional[date] = None
) -> Optional[StockSnapshot]:
    return _snapshot(db, "product", outlet_id, product_id, on, cumulative=True)


def material_availability(
    db: Session, outlet_id: int, material_id: int, on: Optional[date] = None
) -> Optional[StockSnapshot]:
    return _snapshot(db, "material", outlet_id, material_id, on, cumulative=True)
