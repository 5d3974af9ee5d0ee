from datetime import date, datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backoffice.db import Base
from backoffice.main import app, get_db, get_stock_sink
from backoffice.models import (
    BasePayroll,
    Employee,
    InternalPayroll,
    Material,
    Order,
    OrderItem,
    Outlet,
    OutletEmployee,
    OutletMaterialRequest,
    OutletProductRequest,
    OutletSetting,
    Payroll,
    Product,
    ProductMaterial,
    Tenant,
)
from backoffice.periods import WEEKDAYS, as_utc

JAKARTA = ZoneInfo("Asia/Jakarta")


def local(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=JAKARTA)


class RecordingSink:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str, dict]] = []

    def publish(self, room: str, event: str, payload: dict) -> None:
        self.messages.append((room, event, payload))

    def rooms(self) -> list[str]:
        return [room for room, _, _ in self.messages]


class Seeder:
    def __init__(self, db) -> None:
        self.db = db
        self._tenant = None

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def tenant(self) -> Tenant:
        if self._tenant is None:
            self._tenant = self._save(Tenant(name="Kopi Senja"))
        return self._tenant

    def outlet(self, code: str = "BLU", income_target=500000, timezone: str = "Asia/Jakarta") -> Outlet:
        return self._save(
            Outlet(
                tenant_id=self.tenant().id,
                name=f"Outlet {code}",
                code=code,
                timezone=timezone,
                income_target=Decimal(income_target),
            )
        )

    def setting(
        self,
        outlet: Outlet,
        check_in=time(9, 0),
        check_out=time(17, 0),
        days=WEEKDAYS,
        salary=100000,
    ) -> OutletSetting:
        return self._save(
            OutletSetting(
                outlet_id=outlet.id,
                check_in_time=check_in,
                check_out_time=check_out,
                days=list(days),
                salary=Decimal(salary),
            )
        )

    def employee(self, name: str = "Rina", nik: str = "3174000001") -> Employee:
        return self._save(Employee(tenant_id=self.tenant().id, name=name, nik=nik, position="Barista"))

    def assign(self, employee: Employee, outlet: Outlet, assigned_at: datetime) -> OutletEmployee:
        return self._save(
            OutletEmployee(outlet_id=outlet.id, employee_id=employee.id, assigned_at=as_utc(assigned_at))
        )

    def product(self, name: str = "Es Kopi Susu", price=25000) -> Product:
        return self._save(Product(name=name, price=Decimal(price)))

    def material(self, name: str = "Espresso Beans", uom: str = "gram") -> Material:
        return self._save(Material(name=name, uom=uom))

    def bom(self, product: Product, material: Material, quantity=18) -> ProductMaterial:
        return self._save(
            ProductMaterial(product_id=product.id, material_id=material.id, quantity=Decimal(quantity))
        )

    def order(self, outlet: Outlet, employee: Employee, created_at: datetime, total=0, items=()) -> Order:
        order = self._save(
            Order(
                outlet_id=outlet.id,
                employee_id=employee.id,
                invoice_number=f"TR_{outlet.code}_SEED",
                payment_method="CASH",
                total_amount=Decimal(total),
                created_at=as_utc(created_at),
            )
        )
        for product, quantity in items:
            self._save(
                OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    quantity=quantity,
                    price=Decimal(product.price) * quantity,
                )
            )
        return order

    def product_request(
        self, outlet: Outlet, product: Product, quantity: int, created_at: datetime, status: str = "APPROVED"
    ) -> OutletProductRequest:
        return self._save(
            OutletProductRequest(
                outlet_id=outlet.id,
                product_id=product.id,
                quantity=quantity,
                approval_quantity=quantity if status == "APPROVED" else None,
                status=status,
                created_at=as_utc(created_at),
            )
        )

    def material_request(
        self, outlet: Outlet, material: Material, quantity, created_at: datetime, status: str = "APPROVED"
    ) -> OutletMaterialRequest:
        return self._save(
            OutletMaterialRequest(
                outlet_id=outlet.id,
                material_id=material.id,
                quantity=Decimal(quantity),
                approval_quantity=Decimal(quantity) if status == "APPROVED" else None,
                status=status,
                created_at=as_utc(created_at),
            )
        )

    def payroll(self, employee: Employee, outlet: Outlet, work_date: date, base_salary=100000) -> Payroll:
        return self._save(
            Payroll(
                employee_id=employee.id,
                outlet_id=outlet.id,
                base_salary=Decimal(base_salary),
                total_bonus=Decimal(0),
                total_deduction=Decimal(0),
                final_salary=Decimal(base_salary),
                work_date=work_date,
            )
        )

    def base_payroll(self, employee: Employee, base_salary=6000000) -> BasePayroll:
        return self._save(BasePayroll(employee_id=employee.id, base_salary=Decimal(base_salary)))

    def internal_payroll(self, base: BasePayroll, start: date, end: date, payment_batch_id=None) -> InternalPayroll:
        return self._save(
            InternalPayroll(
                employee_id=base.employee_id,
                base_payroll_id=base.id,
                base_salary=base.base_salary,
                total_bonus=Decimal(0),
                total_deduction=Decimal(0),
                final_salary=base.base_salary,
                period_start=start,
                period_end=end,
                payment_batch_id=payment_batch_id,
            )
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db) -> Seeder:
    return Seeder(db)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client(session_factory, sink):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stock_sink] = lambda: sink
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
