from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.db import Base
from backoffice.periods import utcnow

ID_TYPE = BigInteger().with_variant(Integer, "sqlite")
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")
MONEY = Numeric(14, 2)


class Tenant(Base):
    __tablename__ = "tenant"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Outlet(Base):
    __tablename__ = "outlet"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("tenant.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    code: Mapped[str] = mapped_column(String(32), nullable=False)
    location: Mapped[str | None] = mapped_column(Text)
    timezone: Mapped[str | None] = mapped_column(Text)
    income_target: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class OutletSetting(Base):
    __tablename__ = "outlet_setting"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    check_in_time: Mapped[time] = mapped_column(Time, nullable=False)
    check_out_time: Mapped[time] = mapped_column(Time, nullable=False)
    days: Mapped[list] = mapped_column(JSON_TYPE, nullable=False, default=list)
    salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Employee(Base):
    __tablename__ = "employee"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey("tenant.id"))
    name: Mapped[str] = mapped_column(Text, nullable=False)
    nik: Mapped[str | None] = mapped_column(Text)
    position: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class OutletEmployee(Base):
    __tablename__ = "outlet_employee"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, index=True
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_employee_day"),
        CheckConstraint("late_minutes >= 0", name="attendance_late_minutes"),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False
    )
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    checkin_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    checkout_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    checkin_image_proof: Mapped[str | None] = mapped_column(Text)
    checkout_image_proof: Mapped[str | None] = mapped_column(Text)
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_notes: Mapped[str | None] = mapped_column(Text)
    late_present_proof: Mapped[str | None] = mapped_column(Text)
    late_approval_status: Mapped[str | None] = mapped_column(Text)
    late_approved_by: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("employee.id")
    )
    attendance_status: Mapped[str] = mapped_column(Text, nullable=False, default="PRESENT")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Product(Base):
    __tablename__ = "product"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Material(Base):
    __tablename__ = "material"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    uom: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ProductMaterial(Base):
    """Bill of materials: quantity of a material consumed by one product unit."""

    __tablename__ = "product_material"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material.id"), nullable=False
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class OutletProductRequest(Base):
    __tablename__ = "outlet_product_request"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    approval_quantity: Mapped[int | None] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class OutletMaterialRequest(Base):
    __tablename__ = "outlet_material_request"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material.id"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    approval_quantity: Mapped[Decimal | None] = mapped_column(Numeric)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class MaterialOut(Base):
    __tablename__ = "material_out"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("material.id"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric, nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False, index=True
    )
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, index=True
    )
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False)
    payment_method: Mapped[str] = mapped_column(Text, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="SUCCESS")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class OrderItem(Base):
    __tablename__ = "order_item"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("orders.id"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("product.id"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class PaymentBatch(Base):
    __tablename__ = "payment_batch"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, index=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_bonus: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    final_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING")
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    payment_method: Mapped[str | None] = mapped_column(Text)
    payment_reference: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Payroll(Base):
    __tablename__ = "payroll"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, index=True
    )
    outlet_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("outlet.id"), nullable=False
    )
    attendance_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("attendance.id"), unique=True
    )
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_bonus: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    final_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_batch_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("payment_batch.id"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class BasePayroll(Base):
    __tablename__ = "base_payroll"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, unique=True
    )
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class InternalPayroll(Base):
    __tablename__ = "internal_payroll"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("employee.id"), nullable=False, index=True
    )
    base_payroll_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("base_payroll.id"), nullable=False
    )
    base_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_bonus: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_deduction: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    final_salary: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    payment_batch_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("payment_batch.id"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PayrollBonus(Base):
    __tablename__ = "payroll_bonus"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="payroll_bonus_amount"),
        CheckConstraint(
            "(payroll_id IS NULL) <> (internal_payroll_id IS NULL)",
            name="payroll_bonus_owner",
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    payroll_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("payroll.id"), index=True
    )
    internal_payroll_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("internal_payroll.id"), index=True
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    reference: Mapped[dict | None] = mapped_column(JSON_TYPE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PayrollDeduction(Base):
    __tablename__ = "payroll_deduction"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="payroll_deduction_amount"),
        CheckConstraint(
            "(payroll_id IS NULL) <> (internal_payroll_id IS NULL)",
            name="payroll_deduction_owner",
        ),
    )

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    payroll_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("payroll.id"), index=True
    )
    internal_payroll_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("internal_payroll.id"), index=True
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    reference: Mapped[dict | None] = mapped_column(JSON_TYPE)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
