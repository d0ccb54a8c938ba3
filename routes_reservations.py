from flask import Blueprint, current_app, jsonify, request

import reservations
from auth import current_user, roles_required
from errors import ValidationError
from sql_db import SessionLocal
from validation import parse_datetime, parse_positive_int

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api")


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body.")
    return data


def _tables() -> dict:
    return current_app.config["TABLES"]


def _hours() -> float:
    return current_app.config["RESERVATION_WINDOW_HOURS"]


def _availability():
    at = parse_datetime(request.args.get("reservation_time"), "reservation time")
    guests = request.args.get("number_of_guests")
    guests = parse_positive_int(guests, "Number of guests") if guests else None
    with SessionLocal() as s:
        free = reservations.available_tables(s, at, _tables(), _hours(), guests)
    return jsonify({"requested_time": at.isoformat(), "available_tables": free})


# -----------------------
# Public availability
# -----------------------
@reservations_bp.get("/reservations/available")
def reservation_availability():
    return _availability()


# -----------------------
# Staff
# -----------------------
@reservations_bp.post("/reservations")
@roles_required("admin", "waiter")
def reservation_create():
    with SessionLocal() as s:
        r = reservations.create_reservation(s, current_user(s), _body(), _tables(), _hours())
        return jsonify(r.to_dict()), 201


@reservations_bp.get("/reservations")
@roles_required("admin")
def reservation_list():
    with SessionLocal() as s:
        items = reservations.list_reservations(
            s,
            status=request.args.get("status") or None,
            day=request.args.get("date") or None,
            table_number=request.args.get("table_number") or None,
        )
        return jsonify([r.to_dict() for r in items])


@reservations_bp.get("/reservations/pending-customer")
@roles_required("admin")
def reservation_pending_customer():
    with SessionLocal() as s:
        return jsonify([r.to_dict() for r in reservations.pending_customer_reservations(s)])


@reservations_bp.get("/reservations/<int:reservation_id>")
@roles_required("admin")
def reservation_detail(reservation_id: int):
    with SessionLocal() as s:
        return jsonify(reservations.get_reservation(s, reservation_id).to_dict())


@reservations_bp.put("/reservations/<int:reservation_id>/status")
@roles_required("admin")
def reservation_status(reservation_id: int):
    status = _body().get("status")
    with SessionLocal() as s:
        r = reservations.update_reservation_status(
            s, reservation_id, status, current_user(s),
            notifier=current_app.extensions.get("notifier"),
            restaurant=current_app.config["RESTAURANT_NAME"],
        )
        return jsonify(r.to_dict())


@reservations_bp.put("/reservations/<int:reservation_id>/approve")
@roles_required("admin")
def reservation_approve(reservation_id: int):
    action = _body().get("action")
    with SessionLocal() as s:
        r = reservations.approve_customer_reservation(
            s, reservation_id, action, current_user(s),
            notifier=current_app.extensions.get("notifier"),
            restaurant=current_app.config["RESTAURANT_NAME"],
        )
        return jsonify({"message": f"Reservation {action}d successfully", "reservation": r.to_dict()})


@reservations_bp.delete("/reservations/<int:reservation_id>")
@roles_required("admin")
def reservation_delete(reservation_id: int):
    with SessionLocal() as s:
        reservations.delete_reservation(s, reservation_id)
    return jsonify({"message": "Reservation removed successfully"})


# -----------------------
# Customer self-service
# -----------------------
@reservations_bp.get("/customer/reservations/available")
@roles_required("customer")
def customer_availability():
    return _availability()


@reservations_bp.post("/customer/reservations")
@roles_required("customer")
def customer_reservation_create():
    with SessionLocal() as s:
        r = reservations.create_customer_reservation(s, current_user(s), _body(), _tables(), _hours())
        body = r.to_dict()
    body["message"] = (
        "Reservation created successfully. It will be reviewed by admin "
        "and you will be notified once approved."
    )
    return jsonify(body), 201


@reservations_bp.get("/customer/reservations")
@roles_required("customer")
def customer_reservation_list():
    with SessionLocal() as s:
        items = reservations.list_customer_reservations(s, current_user(s), request.args.get("status") or None)
        return jsonify([r.to_dict() for r in items])


@reservations_bp.get("/customer/reservations/<int:reservation_id>")
@roles_required("customer")
def customer_reservation_detail(reservation_id: int):
    with SessionLocal() as s:
        return jsonify(reservations.get_customer_reservation(s, reservation_id, current_user(s)).to_dict())


@reservations_bp.put("/customer/reservations/<int:reservation_id>")
@roles_required("customer")
def customer_reservation_update(reservation_id: int):
    with SessionLocal() as s:
        r = reservations.update_customer_reservation(
            s, reservation_id, current_user(s), _body(), _tables(), _hours()
        )
        return jsonify(r.to_dict())


@reservations_bp.delete("/customer/reservations/<int:reservation_id>")
@roles_required("customer")
def customer_reservation_cancel(reservation_id: int):
    with SessionLocal() as s:
        r = reservations.cancel_customer_reservation(s, reservation_id, current_user(s))
        return jsonify({"message": "Reservation cancelled successfully", "reservation": r.to_dict()})
