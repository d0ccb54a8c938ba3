from datetime import timedelta

import pytest

import billing
import orders
import reports
from conftest import NOW
from errors import ValidationError


@pytest.fixture()
def sales(s, make_dish, place_order, chef, admin):
    """Two paid bills on 2025-01-03, one unpaid, one paid the next day."""
    curry = make_dish("Curry", "12.00")
    naan = make_dish("Naan", "2.00")

    def _sell(lines, billed_at, pay=True):
        order = place_order(lines, now=billed_at)
        for item in order.items:
            orders.update_item_status(s, order.id, item.id, "accepted", chef, now=billed_at)
        bill = billing.generate_bill(s, order.id, admin, now=billed_at)
        if pay:
            billing.update_payment_status(s, bill.id, "paid", admin, now=billed_at)
        return bill

    _sell([(curry, 1), (naan, 2)], NOW)
    _sell([(naan, 3)], NOW + timedelta(hours=2))
    _sell([(curry, 5)], NOW + timedelta(hours=3), pay=False)
    _sell([(curry, 2)], NOW + timedelta(days=1))
    return curry, naan


def test_daily_sales_counts_paid_bills_only(s, sales):
    assert reports.daily_sales(s, "2025-01-03") == {"total_sales": 22.0, "total_bills": 2, "date": "2025-01-03"}
    assert reports.daily_sales(s, "2025-01-05")["total_bills"] == 0


def test_monthly_sales(s, sales):
    data = reports.monthly_sales(s, 2025, 1)
    assert (data["total_sales"], data["total_bills"]) == (46.0, 3)
    with pytest.raises(ValidationError):
        reports.monthly_sales(s, 2025, 13)


def test_most_ordered_dishes(s, sales):
    curry, naan = sales
    assert reports.most_ordered_dishes(s) == [
        {"dish_id": naan.id, "dish_name": "Naan", "total_quantity": 5},
        {"dish_id": curry.id, "dish_name": "Curry", "total_quantity": 3},
    ]
    assert reports.most_ordered_dishes(s, start_day="2025-01-04", end_day="2025-01-04") == [
        {"dish_id": curry.id, "dish_name": "Curry", "total_quantity": 2},
    ]


def test_bad_day(s):
    with pytest.raises(ValidationError):
        reports.daily_sales(s, "03-01-2025")
