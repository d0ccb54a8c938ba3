"""
Table reservations.

A table is double-booked when another active reservation (pending, confirmed
or seated) for it falls within +/- RESERVATION_WINDOW_HOURS of the requested
time. Creation, customer updates and the availability query all use
`find_conflicts`.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import select

from clock import utc_now
from errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from models import ACTIVE_RESERVATION_STATUSES, RESERVATION_STATUSES, Reservation
from notifier import notify
from validation import parse_datetime, parse_phone, parse_positive_int, require

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 2
TERMINAL_STATUSES = ("cancelled", "completed")


def conflict_window(at: datetime, hours: float = DEFAULT_WINDOW_HOURS):
    span = timedelta(hours=hours)
    return at - span, at + span


def find_conflicts(s, at: datetime, table_number=None, hours: float = DEFAULT_WINDOW_HOURS, exclude_id=None) -> list:
    start, end = conflict_window(at, hours)
    q = select(Reservation).where(
        Reservation.reservation_time >= start,
        Reservation.reservation_time <= end,
        Reservation.status.in_(ACTIVE_RESERVATION_STATUSES),
    )
    if table_number is not None:
        q = q.where(Reservation.table_number == table_number)
    if exclude_id is not None:
        q = q.where(Reservation.id != exclude_id)
    return s.scalars(q).all()


def _ensure_free(s, table_number: str, at: datetime, hours: float, exclude_id=None):
    if find_conflicts(s, at, table_number, hours, exclude_id):
        raise ConflictError(
            f"Table {table_number} is already reserved or unavailable around "
            f"{at.strftime('%H:%M')} on {at.strftime('%Y-%m-%d')} (UTC)."
        )


def available_tables(s, at: datetime, tables: dict, hours: float = DEFAULT_WINDOW_HOURS, guests=None) -> list:
    """
    Tables with no active reservation in the window. With `guests`, tables
    whose configured capacity is smaller are left out.
    """
    reserved = {r.table_number for r in find_conflicts(s, at, None, hours)}
    free = []
    for table, capacity in tables.items():
        if table in reserved:
            continue
        if guests is not None and capacity is not None and capacity < guests:
            continue
        free.append(table)
    return free


def _check_table(table_number: str, tables: dict, guests: int):
    if table_number not in tables:
        raise ValidationError(
            f"Invalid table number: {table_number}. Please choose from {', '.join(tables)}."
        )
    capacity = tables[table_number]
    if capacity is not None and guests > capacity:
        raise ValidationError(f"Table {table_number} seats at most {capacity} guests.")


def _create(s, actor, data: dict, tables: dict, hours: float, customer: bool) -> Reservation:
    require(data, "table_number", "customer_name", "customer_phone", "number_of_guests", "reservation_time")
    table_number = str(data["table_number"]).strip()
    guests = parse_positive_int(data["number_of_guests"], "Number of guests")
    at = parse_datetime(data["reservation_time"], "reservation time")
    _check_table(table_number, tables, guests)
    _ensure_free(s, table_number, at, hours)

    reservation = Reservation(
        table_number=table_number,
        customer_name=str(data["customer_name"]).strip(),
        customer_phone=parse_phone(data["customer_phone"]),
        number_of_guests=guests,
        reservation_time=at,
        notes=str(data.get("notes") or "").strip(),
        reserved_by_id=actor.id,
        is_customer_reservation=customer,
        # customer bookings wait for an admin, staff bookings are confirmed
        status="pending" if customer else "confirmed",
    )
    s.add(reservation)
    s.commit()
    logger.info(
        "Reservation %s (%s) for table %s at %s by user %s",
        reservation.id, reservation.status, table_number, at.isoformat(), actor.id,
    )
    return reservation


def create_reservation(s, actor, data: dict, tables: dict, hours: float = DEFAULT_WINDOW_HOURS) -> Reservation:
    """Staff booking, confirmed immediately."""
    if actor is None or actor.role not in ("admin", "waiter"):
        raise AuthorizationError("Requires role: admin, waiter.")
    return _create(s, actor, data, tables, hours, customer=False)


def create_customer_reservation(s, actor, data: dict, tables: dict, hours: float = DEFAULT_WINDOW_HOURS) -> Reservation:
    """Self-service booking, pending until an admin approves it."""
    if actor is None or actor.role != "customer":
        raise AuthorizationError("Requires role: customer.")
    return _create(s, actor, data, tables, hours, customer=True)


# -----------------------
# Staff queries / admin workflow
# -----------------------
def get_reservation(s, reservation_id: int) -> Reservation:
    reservation = s.get(Reservation, reservation_id)
    if not reservation:
        raise NotFoundError("Reservation not found.")
    return reservation


def list_reservations(s, status=None, day=None, table_number=None) -> list:
    q = select(Reservation)
    if status:
        q = q.where(Reservation.status == status)
    if table_number:
        q = q.where(Reservation.table_number == table_number)
    if day:
        if isinstance(day, str):
            try:
                day = date.fromisoformat(day)
            except ValueError:
                raise ValidationError("Invalid date format. Please use ISO 8601 YYYY-MM-DD.")
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        q = q.where(Reservation.reservation_time >= start, Reservation.reservation_time < start + timedelta(days=1))
    return s.scalars(q.order_by(Reservation.reservation_time.asc())).all()


def pending_customer_reservations(s) -> list:
    return s.scalars(
        select(Reservation)
        .where(Reservation.is_customer_reservation.is_(True), Reservation.status == "pending")
        .order_by(Reservation.created_at.asc(), Reservation.id.asc())
    ).all()


def confirmation_message(reservation: Reservation, admin_name: str, verb: str, restaurant: str) -> str:
    when = reservation.reservation_time.strftime("%Y-%m-%d %H:%M UTC")
    return (
        f"Hello {reservation.customer_name}!\n\n"
        f"Your reservation for Table {reservation.table_number} "
        f"at {when} for {reservation.number_of_guests} guests "
        f"has been *{verb}* by {admin_name}.\n\n"
        f"We look forward to seeing you!\n"
        f"{restaurant}"
    )


def _notify_confirmed(notifier, reservation: Reservation, actor, verb: str, restaurant: str):
    text = confirmation_message(reservation, actor.name, verb, restaurant)
    if not notify(notifier, reservation.customer_phone, text):
        logger.warning("Reservation %s %s notice was not delivered", reservation.id, verb.lower())


def update_reservation_status(s, reservation_id: int, status: str, actor, notifier=None, now=None, restaurant="") -> Reservation:
    if actor is None or actor.role != "admin":
        raise AuthorizationError("Requires role: admin.")
    if status not in RESERVATION_STATUSES:
        raise ValidationError("Invalid status provided.")

    reservation = s.scalars(
        select(Reservation).where(Reservation.id == reservation_id).with_for_update(of=Reservation)
    ).first()
    if not reservation:
        raise NotFoundError("Reservation not found.")
    old = reservation.status
    if old == status:
        return reservation
    if old in TERMINAL_STATUSES:
        raise StateError(f"Reservation is already {old}.")

    reservation.status = status
    if status == "confirmed" and reservation.is_customer_reservation and old == "pending":
        reservation.approved_by_id = actor.id
        reservation.approved_at = now or utc_now()
    s.commit()
    logger.info("Reservation %s: %s -> %s", reservation.id, old, status)

    if status == "confirmed":
        _notify_confirmed(notifier, reservation, actor, "CONFIRMED", restaurant)
    return reservation


def approve_customer_reservation(s, reservation_id: int, action: str, actor, notifier=None, now=None, restaurant="") -> Reservation:
    if actor is None or actor.role != "admin":
        raise AuthorizationError("Requires role: admin.")
    if action not in ("approve", "reject"):
        raise ValidationError('Action must be either "approve" or "reject".')

    reservation = s.scalars(
        select(Reservation).where(Reservation.id == reservation_id).with_for_update(of=Reservation)
    ).first()
    if not reservation:
        raise NotFoundError("Reservation not found.")
    if not reservation.is_customer_reservation:
        raise StateError("This is not a customer reservation.")
    if reservation.status != "pending":
        raise StateError("Reservation is not in pending status.")

    if action == "approve":
        reservation.status = "confirmed"
        reservation.approved_by_id = actor.id
        reservation.approved_at = now or utc_now()
    else:
        reservation.status = "cancelled"
    s.commit()
    logger.info("Customer reservation %s %sd by user %s", reservation.id, action, actor.id)

    if action == "approve":
        _notify_confirmed(notifier, reservation, actor, "APPROVED", restaurant)
    return reservation


def delete_reservation(s, reservation_id: int):
    reservation = get_reservation(s, reservation_id)
    s.delete(reservation)
    s.commit()
    logger.info("Reservation %s deleted", reservation_id)


# -----------------------
# Customer self-service
# -----------------------
def _own(s, reservation_id: int, actor) -> Reservation:
    reservation = get_reservation(s, reservation_id)
    if actor is None or reservation.reserved_by_id != actor.id:
        raise AuthorizationError("You do not have permission to access this reservation.")
    return reservation


def list_customer_reservations(s, actor, status=None) -> list:
    if actor is None or actor.role != "customer":
        raise AuthorizationError("Requires role: customer.")
    q = select(Reservation).where(Reservation.reserved_by_id == actor.id)
    if status:
        q = q.where(Reservation.status == status)
    return s.scalars(q.order_by(Reservation.reservation_time.asc())).all()


def get_customer_reservation(s, reservation_id: int, actor) -> Reservation:
    return _own(s, reservation_id, actor)


def update_customer_reservation(s, reservation_id: int, actor, data: dict, tables: dict, hours: float = DEFAULT_WINDOW_HOURS) -> Reservation:
    """Edit a still-pending booking; a new table or time is conflict-checked against the others."""
    reservation = _own(s, reservation_id, actor)
    if reservation.status != "pending":
        raise StateError("Cannot update reservation that is not in pending status.")

    table_number = str(data["table_number"]).strip() if data.get("table_number") else reservation.table_number
    guests = (
        parse_positive_int(data["number_of_guests"], "Number of guests")
        if data.get("number_of_guests") is not None
        else reservation.number_of_guests
    )
    at = (
        parse_datetime(data["reservation_time"], "reservation time")
        if data.get("reservation_time")
        else reservation.reservation_time
    )
    _check_table(table_number, tables, guests)
    if table_number != reservation.table_number or at != reservation.reservation_time:
        _ensure_free(s, table_number, at, hours, exclude_id=reservation.id)

    reservation.table_number = table_number
    reservation.number_of_guests = guests
    reservation.reservation_time = at
    if data.get("customer_name"):
        reservation.customer_name = str(data["customer_name"]).strip()
    if data.get("customer_phone"):
        reservation.customer_phone = parse_phone(data["customer_phone"])
    if "notes" in data:
        reservation.notes = str(data["notes"] or "").strip()
    s.commit()
    logger.info("Customer reservation %s updated", reservation.id)
    return reservation


def cancel_customer_reservation(s, reservation_id: int, actor) -> Reservation:
    reservation = _own(s, reservation_id, actor)
    if reservation.status not in ("pending", "confirmed"):
        raise StateError("Cannot cancel reservation that is already seated, completed, or cancelled.")
    reservation.status = "cancelled"
    s.commit()
    logger.info("Customer reservation %s cancelled", reservation.id)
    return reservation
