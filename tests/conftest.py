from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import orders
from auth import hash_password
from models import Base, Dish, User

NOW = datetime(2025, 1, 3, 12, 0, tzinfo=timezone.utc)

TABLES = {f"T-{n}": 4 for n in range(1, 6)}
TABLES["T-6"] = 8


class RecordingNotifier:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def send(self, phone, text):
        self.sent.append((phone, text))
        return self.ok


class ExplodingNotifier:
    def send(self, phone, text):
        raise RuntimeError("gateway down")


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def s(engine):
    Session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with Session() as session:
        yield session


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def make_user(s):
    counter = {"n": 0}

    def _make(role="waiter", name=None):
        counter["n"] += 1
        u = User(
            name=name or f"{role.title()} {counter['n']}",
            email=f"{role}{counter['n']}@example.com",
            password_hash=hash_password("secret123"),
            role=role,
        )
        s.add(u)
        s.commit()
        return u

    return _make


@pytest.fixture()
def admin(make_user):
    return make_user("admin", "Ada Admin")


@pytest.fixture()
def chef(make_user):
    return make_user("chef", "Carl Chef")


@pytest.fixture()
def waiter(make_user):
    return make_user("waiter", "Wendy Waiter")


@pytest.fixture()
def customer(make_user):
    return make_user("customer", "Cora Customer")


@pytest.fixture()
def make_dish(s):
    def _make(name, price, **kw):
        d = Dish(
            name=name,
            description=kw.pop("description", ""),
            category=kw.pop("category", "Main"),
            price=Decimal(str(price)),
            is_available=kw.pop("is_available", True),
            dietary_restrictions=kw.pop("dietary_restrictions", []),
            is_special=kw.pop("is_special", False),
            **kw,
        )
        s.add(d)
        s.commit()
        return d

    return _make


@pytest.fixture()
def place_order(s, waiter):
    """Place an order for [(dish, quantity), ...] at NOW unless told otherwise."""
    def _place(lines, actor=None, now=NOW, phone="+15551234567"):
        return orders.create_order(
            s,
            actor or waiter,
            {
                "table_number": "T-1",
                "customer_name": "Sam Guest",
                "customer_phone": phone,
                "items": [{"dish_id": d.id, "quantity": q} for d, q in lines],
            },
            now=now,
        )

    return _place


def expected_total(order):
    return sum(
        (Decimal(it.unit_price) * it.quantity for it in order.items if it.status in ("accepted", "preparing", "ready")),
        Decimal("0"),
    )
