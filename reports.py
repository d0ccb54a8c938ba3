"""Sales figures aggregated over paid bills, computed on request."""
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func, select

from errors import ValidationError
from models import Bill, BillItem


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def parse_day(value) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("Invalid date format. Please use ISO 8601 YYYY-MM-DD.")


def _sales_between(s, start: datetime, end: datetime) -> dict:
    total, count = s.execute(
        select(func.coalesce(func.sum(Bill.total_amount), 0), func.count(Bill.id)).where(
            Bill.payment_status == "paid",
            Bill.billed_at >= start,
            Bill.billed_at < end,
        )
    ).one()
    return {"total_sales": float(total or 0), "total_bills": int(count or 0)}


def daily_sales(s, day) -> dict:
    day = parse_day(day)
    start = _day_start(day)
    data = _sales_between(s, start, start + timedelta(days=1))
    data["date"] = day.isoformat()
    return data


def monthly_sales(s, year: int, month: int) -> dict:
    if not (1 <= month <= 12) or year < 1:
        raise ValidationError("Invalid year or month. Month must be 1-12.")
    start = _day_start(date(year, month, 1))
    nxt = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    data = _sales_between(s, start, _day_start(nxt))
    data["year"] = year
    data["month"] = month
    return data


def most_ordered_dishes(s, start_day=None, end_day=None, limit: int = 10) -> list:
    """Top dishes by quantity across paid bills, optionally within [start_day, end_day]."""
    qty = func.sum(BillItem.quantity).label("total_quantity")
    q = (
        select(BillItem.dish_id, func.max(BillItem.dish_name), qty)
        .join(Bill, Bill.id == BillItem.bill_id)
        .where(Bill.payment_status == "paid")
        .group_by(BillItem.dish_id)
        .order_by(qty.desc())
        .limit(limit)
    )
    if start_day:
        q = q.where(Bill.billed_at >= _day_start(parse_day(start_day)))
    if end_day:
        q = q.where(Bill.billed_at < _day_start(parse_day(end_day)) + timedelta(days=1))

    return [
        {"dish_id": dish_id, "dish_name": name, "total_quantity": int(total)}
        for dish_id, name, total in s.execute(q).all()
    ]
