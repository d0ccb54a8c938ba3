from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy import (
    String, Integer, Numeric, Boolean, ForeignKey, DateTime, JSON, Index, text, func,
)
from sqlalchemy.types import TypeDecorator

from clock import as_utc
from pricing import resolve_price


ROLES = ("admin", "chef", "waiter", "customer")
STAFF_ROLES = ("admin", "chef", "waiter")

DIETARY_TAGS = ("vegetarian", "vegan", "gluten-free", "dairy-free", "nut-free", "halal", "kosher")

ITEM_STATUSES = (
    "pending", "accepted", "declined", "preparing", "ready",
    "cancelled", "cancellation_requested",
)
# Items that count toward the order total and the bill
ACCEPTED_LINEAGE = frozenset({"accepted", "preparing", "ready"})

ORDER_STATUSES = ("pending", "preparing", "ready", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "refunded")
RESERVATION_STATUSES = ("pending", "confirmed", "seated", "cancelled", "completed")
ACTIVE_RESERVATION_STATUSES = ("pending", "confirmed", "seated")

CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT)


def _num(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value is not None else None


class UTCDateTime(TypeDecorator):
    """Stored as naive UTC, returned timezone-aware."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="customer", nullable=False)

    # sha256 of the token handed to the user; cleared once used
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role}


class Dish(Base):
    __tablename__ = "dishes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="", nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    dietary_restrictions: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    is_special: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    special_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    special_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    special_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    def to_dict(self, at: datetime | None = None) -> dict:
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": _num(self.price),
            "is_available": self.is_available,
            "dietary_restrictions": list(self.dietary_restrictions or []),
            "is_special": self.is_special,
            "special_price": _num(self.special_price),
            "special_from": _iso(self.special_from),
            "special_until": _iso(self.special_until),
        }
        if at is not None:
            d["current_price"] = _num(resolve_price(self, at))
        return d


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_number: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    waiter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    ordered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    is_billed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # {"pending": iso, "preparing": iso, ...}, first transition only
    status_timestamps: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    waiter = relationship("User", lazy="joined")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    def item(self, item_id: int):
        for it in self.items:
            if it.id == item_id:
                return it
        return None

    def accepted_items(self):
        return [it for it in self.items if it.status in ACCEPTED_LINEAGE]

    def set_status(self, status: str, now: datetime):
        self.status = status
        if status not in (self.status_timestamps or {}):
            # new dict so the JSON column is flagged dirty
            stamps = dict(self.status_timestamps or {})
            stamps[status] = as_utc(now).isoformat()
            self.status_timestamps = stamps

    def derived_status(self) -> str:
        """
        Kitchen-driven status. completed/cancelled are only reached explicitly
        and are never overwritten here.
        """
        if self.status in ("completed", "cancelled"):
            return self.status
        statuses = [it.status for it in self.items]
        if "pending" in statuses:
            return "pending"
        lineage = [s for s in statuses if s in ACCEPTED_LINEAGE]
        if lineage and all(s == "ready" for s in lineage):
            return "ready"
        return "preparing"

    def recompute(self, now: datetime):
        """Re-sum the accepted items and re-derive the aggregate status."""
        self.total_amount = money(sum((it.line_total for it in self.accepted_items()), Decimal("0")))
        status = self.derived_status()
        if status != self.status:
            self.set_status(status, now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "waiter": self.waiter.to_dict() if self.waiter else {"id": self.waiter_id},
            "ordered_at": _iso(self.ordered_at),
            "status": self.status,
            "total_amount": _num(self.total_amount),
            "is_billed": self.is_billed,
            "status_timestamps": dict(self.status_timestamps or {}),
            "items": [it.to_dict() for it in self.items],
        }


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False)
    dish_id: Mapped[int | None] = mapped_column(ForeignKey("dishes.id", ondelete="SET NULL"), nullable=True)

    # snapshot of the dish when ordered
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(String(30), default="pending", nullable=False)
    # status held before a cancellation request, restored on rejection
    previous_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    notes: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    order = relationship("Order", back_populates="items")
    dish = relationship("Dish", lazy="joined")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "dish_id": self.dish_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": _num(self.unit_price),
            "quantity": self.quantity,
            "status": self.status,
            "notes": self.notes,
        }


class Bill(Base):
    __tablename__ = "bills"
    __table_args__ = (
        # at most one unsplit bill per order
        Index(
            "uq_bills_order_unsplit",
            "order_id",
            unique=True,
            sqlite_where=text("is_split = 0"),
            postgresql_where=text("is_split = false"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    billed_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    billed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    is_split: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    split_group_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    customer_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    original_order_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)

    order = relationship("Order", lazy="joined")
    billed_by = relationship("User", lazy="joined")
    items = relationship(
        "BillItem",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillItem.id",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "table_number": self.order.table_number if self.order else None,
            "billed_by": self.billed_by.to_dict() if self.billed_by else {"id": self.billed_by_id},
            "billed_at": _iso(self.billed_at),
            "items": [it.to_dict() for it in self.items],
            "total_amount": _num(self.total_amount),
            "payment_status": self.payment_status,
            "paid_at": _iso(self.paid_at),
            "is_split": self.is_split,
            "split_group_id": self.split_group_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "original_order_total": _num(self.original_order_total),
        }


class BillItem(Base):
    __tablename__ = "bill_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), nullable=False)
    dish_id: Mapped[int | None] = mapped_column(ForeignKey("dishes.id", ondelete="SET NULL"), nullable=True)
    dish_name: Mapped[str] = mapped_column(String(120), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    # price at the time of billing
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    bill = relationship("Bill", back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity

    def to_dict(self) -> dict:
        return {
            "dish_id": self.dish_id,
            "dish_name": self.dish_name,
            "quantity": self.quantity,
            "price": _num(self.unit_price),
        }


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_table_time", "table_number", "reservation_time"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    table_number: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    reservation_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    is_customer_reservation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    approved_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reserved_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    notes: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, server_default=func.now())

    reserved_by = relationship("User", foreign_keys=[reserved_by_id], lazy="joined")
    approved_by = relationship("User", foreign_keys=[approved_by_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "number_of_guests": self.number_of_guests,
            "reservation_time": _iso(self.reservation_time),
            "status": self.status,
            "is_customer_reservation": self.is_customer_reservation,
            "approved_by": self.approved_by.to_dict() if self.approved_by else None,
            "approved_at": _iso(self.approved_at),
            "reserved_by": self.reserved_by.to_dict() if self.reserved_by else {"id": self.reserved_by_id},
            "notes": self.notes,
        }
