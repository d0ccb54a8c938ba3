from flask import Blueprint, current_app, jsonify, request, session

import billing
import catalog
import orders
import reports
from auth import current_user, roles_required
from clock import utc_now
from errors import ValidationError
from firestore_db import record_event
from sql_db import SessionLocal
from validation import parse_bool

api = Blueprint("api", __name__, url_prefix="/api")


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body.")
    return data


def _notifier():
    return current_app.extensions.get("notifier")


def _event(order_id, event, payload=None):
    record_event(current_app.config.get("FIRESTORE_EVENTS", False), order_id, session.get("email", ""), event, payload)


# -----------------------
# Menu
# -----------------------
@api.get("/dishes")
def dish_list():
    available = request.args.get("available")
    with SessionLocal() as s:
        items = catalog.list_dishes(
            s,
            category=request.args.get("category", "").strip() or None,
            available=parse_bool(available, "available") if available is not None else None,
            dietary=request.args.get("dietary", "").strip().lower() or None,
        )
        now = utc_now()
        return jsonify([d.to_dict(at=now) for d in items])


@api.get("/dishes/<int:dish_id>")
def dish_detail(dish_id: int):
    with SessionLocal() as s:
        return jsonify(catalog.get_dish(s, dish_id).to_dict(at=utc_now()))


@api.post("/dishes")
@roles_required("admin", "chef")
def dish_create():
    with SessionLocal() as s:
        dish = catalog.create_dish(s, _body())
        return jsonify(dish.to_dict(at=utc_now())), 201


@api.put("/dishes/<int:dish_id>")
@roles_required("admin", "chef")
def dish_update(dish_id: int):
    with SessionLocal() as s:
        dish = catalog.update_dish(s, dish_id, _body())
        return jsonify(dish.to_dict(at=utc_now()))


@api.put("/dishes/<int:dish_id>/special")
@roles_required("admin")
def dish_set_special(dish_id: int):
    with SessionLocal() as s:
        dish = catalog.set_special(s, dish_id, _body())
        return jsonify(dish.to_dict(at=utc_now()))


@api.delete("/dishes/<int:dish_id>/special")
@roles_required("admin")
def dish_clear_special(dish_id: int):
    with SessionLocal() as s:
        dish = catalog.clear_special(s, dish_id)
        return jsonify(dish.to_dict(at=utc_now()))


@api.delete("/dishes/<int:dish_id>")
@roles_required("admin", "chef")
def dish_delete(dish_id: int):
    with SessionLocal() as s:
        catalog.delete_dish(s, dish_id)
    return jsonify({"message": "Dish removed"})


# -----------------------
# Orders
# -----------------------
@api.post("/orders")
@roles_required("waiter", "admin")
def order_create():
    with SessionLocal() as s:
        order = orders.create_order(s, current_user(s), _body())
        body = order.to_dict()
    _event(body["id"], "ORDER_CREATED", {"table_number": body["table_number"], "items": len(body["items"])})
    return jsonify(body), 201


@api.get("/orders")
@roles_required("admin", "chef", "waiter")
def order_list():
    with SessionLocal() as s:
        return jsonify([o.to_dict() for o in orders.list_orders(s, current_user(s))])


@api.get("/orders/<int:order_id>")
@roles_required("admin", "chef", "waiter")
def order_detail(order_id: int):
    with SessionLocal() as s:
        return jsonify(orders.get_order(s, order_id, current_user(s)).to_dict())


@api.put("/orders/<int:order_id>/items/<int:item_id>/status")
@roles_required("chef")
def order_item_status(order_id: int, item_id: int):
    status = _body().get("status")
    with SessionLocal() as s:
        body = orders.update_item_status(s, order_id, item_id, status, current_user(s)).to_dict()
    _event(order_id, "ITEM_STATUS_CHANGED", {"item_id": item_id, "status": status})
    return jsonify(body)


@api.put("/orders/<int:order_id>/status")
@roles_required("admin", "chef", "waiter")
def order_status(order_id: int):
    status = _body().get("status")
    with SessionLocal() as s:
        body = orders.update_order_status(s, order_id, status, current_user(s)).to_dict()
    if status == "cancelled":
        _event(order_id, "ORDER_CANCELLED")
    return jsonify(body)


@api.put("/orders/<int:order_id>/cancel")
@roles_required("waiter", "admin")
def order_cancel(order_id: int):
    with SessionLocal() as s:
        body = orders.cancel_order(s, order_id, current_user(s)).to_dict()
    _event(order_id, "ORDER_CANCELLED")
    return jsonify(body)


@api.put("/orders/<int:order_id>/items/<int:item_id>/request-cancellation")
@roles_required("waiter", "admin")
def order_item_request_cancellation(order_id: int, item_id: int):
    with SessionLocal() as s:
        body = orders.request_item_cancellation(s, order_id, item_id, current_user(s)).to_dict()
    _event(order_id, "ITEM_STATUS_CHANGED", {"item_id": item_id, "status": "cancellation_requested"})
    return jsonify(body)


@api.put("/orders/<int:order_id>/items/<int:item_id>/manage-cancellation")
@roles_required("admin")
def order_item_manage_cancellation(order_id: int, item_id: int):
    action = _body().get("action")
    with SessionLocal() as s:
        order = orders.resolve_item_cancellation(s, order_id, item_id, action, current_user(s), notifier=_notifier())
        body = order.to_dict()
    _event(order_id, "ITEM_STATUS_CHANGED", {"item_id": item_id, "cancellation": action})
    return jsonify(body)


# -----------------------
# Bills
# -----------------------
@api.post("/bills/<int:order_id>")
@roles_required("admin")
def bill_generate(order_id: int):
    with SessionLocal() as s:
        body = billing.generate_bill(s, order_id, current_user(s)).to_dict()
    _event(order_id, "BILL_GENERATED", {"bill_id": body["id"], "total": body["total_amount"]})
    return jsonify(body), 201


@api.post("/bills/<int:order_id>/split")
@roles_required("admin")
def bill_split(order_id: int):
    splits = _body().get("splits")
    with SessionLocal() as s:
        bills = billing.split_bill(s, order_id, splits, current_user(s))
        body = [b.to_dict() for b in bills]
    _event(order_id, "BILL_SPLIT", {"bill_ids": [b["id"] for b in body], "split_group_id": body[0]["split_group_id"]})
    return jsonify({"message": "Bill successfully split into multiple portions.", "split_bills": body}), 201


@api.get("/bills")
@roles_required("admin")
def bill_list():
    order_id = request.args.get("order_id", type=int)
    with SessionLocal() as s:
        items = billing.list_bills(
            s,
            order_id=order_id,
            payment_status=request.args.get("payment_status") or None,
            split_group_id=request.args.get("split_group_id") or None,
        )
        return jsonify([b.to_dict() for b in items])


@api.get("/bills/<int:bill_id>")
@roles_required("admin")
def bill_detail(bill_id: int):
    with SessionLocal() as s:
        return jsonify(billing.get_bill(s, bill_id).to_dict())


@api.put("/bills/<int:bill_id>/pay")
@roles_required("admin")
def bill_pay(bill_id: int):
    status = _body().get("payment_status")
    with SessionLocal() as s:
        bill = billing.update_payment_status(
            s, bill_id, status, current_user(s),
            notifier=_notifier(),
            currency=current_app.config["CURRENCY_LABEL"],
        )
        body = bill.to_dict()
    if status == "paid":
        _event(body["order_id"], "BILL_PAID", {"bill_id": bill_id})
    return jsonify(body)


# -----------------------
# Reports
# -----------------------
@api.get("/reports/sales/daily")
@roles_required("admin")
def report_daily():
    day = request.args.get("date") or utc_now().date()
    with SessionLocal() as s:
        return jsonify(reports.daily_sales(s, day))


@api.get("/reports/sales/monthly")
@roles_required("admin")
def report_monthly():
    today = utc_now().date()
    year = request.args.get("year", default=today.year, type=int)
    month = request.args.get("month", default=today.month, type=int)
    with SessionLocal() as s:
        return jsonify(reports.monthly_sales(s, year, month))


@api.get("/reports/dishes/most-ordered")
@roles_required("admin")
def report_most_ordered():
    with SessionLocal() as s:
        return jsonify(
            reports.most_ordered_dishes(
                s,
                start_day=request.args.get("start_date") or None,
                end_day=request.args.get("end_date") or None,
            )
        )
