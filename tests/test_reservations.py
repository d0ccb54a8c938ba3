from datetime import datetime, timedelta, timezone

import pytest

import reservations
from conftest import TABLES, RecordingNotifier
from errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError

EVENING = datetime(2025, 2, 14, 19, 0, tzinfo=timezone.utc)


def _booking(**overrides):
    data = {
        "table_number": "T-1",
        "customer_name": "Riya",
        "customer_phone": "+919876543210",
        "number_of_guests": 2,
        "reservation_time": EVENING.isoformat(),
    }
    data.update(overrides)
    return data


@pytest.fixture()
def book(s, waiter):
    def _book(actor=None, **overrides):
        return reservations.create_reservation(s, actor or waiter, _booking(**overrides), TABLES)

    return _book


@pytest.fixture()
def book_customer(s, customer):
    def _book(actor=None, **overrides):
        return reservations.create_customer_reservation(s, actor or customer, _booking(**overrides), TABLES)

    return _book


# -----------------------
# conflicts
# -----------------------
def test_staff_booking_is_confirmed(book, waiter):
    r = book(notes="  window seat ")
    assert r.status == "confirmed"
    assert r.is_customer_reservation is False
    assert r.reserved_by_id == waiter.id
    assert r.reservation_time == EVENING
    assert r.notes == "window seat"


@pytest.mark.parametrize("delta", [timedelta(0), timedelta(hours=2), timedelta(hours=-2), timedelta(minutes=61)])
def test_booking_inside_window_conflicts(book, delta):
    book()
    with pytest.raises(ConflictError):
        book(reservation_time=(EVENING + delta).isoformat())


@pytest.mark.parametrize("delta", [timedelta(hours=2, minutes=1), timedelta(hours=-2, minutes=-1)])
def test_booking_outside_window_is_free(book, delta):
    book()
    r = book(reservation_time=(EVENING + delta).isoformat())
    assert r.status == "confirmed"


def test_other_table_is_free(book):
    book()
    assert book(table_number="T-2").table_number == "T-2"


def test_cancelled_reservation_frees_the_table(s, book, admin):
    first = book()
    reservations.update_reservation_status(s, first.id, "cancelled", admin)
    assert book().status == "confirmed"


def test_wider_window_from_config(s, waiter):
    reservations.create_reservation(s, waiter, _booking(), TABLES, hours=4)
    with pytest.raises(ConflictError):
        reservations.create_reservation(
            s, waiter, _booking(reservation_time=(EVENING + timedelta(hours=4)).isoformat()), TABLES, hours=4
        )


def test_zulu_time_accepted(book):
    r = book(reservation_time="2025-02-14T19:00:00Z")
    assert r.reservation_time == EVENING


@pytest.mark.parametrize(
    "overrides",
    [
        {"table_number": "T-99"},
        {"number_of_guests": 5},
        {"number_of_guests": 0},
        {"reservation_time": "tomorrow evening"},
        {"customer_phone": "98765"},
        {"customer_name": ""},
    ],
)
def test_booking_validation(book, overrides):
    with pytest.raises(ValidationError):
        book(**overrides)


def test_large_party_fits_large_table(book):
    assert book(table_number="T-6", number_of_guests=8).number_of_guests == 8


def test_chef_and_customer_cannot_use_staff_booking(s, chef, customer):
    for actor in (chef, customer):
        with pytest.raises(AuthorizationError):
            reservations.create_reservation(s, actor, _booking(), TABLES)


# -----------------------
# availability
# -----------------------
def test_available_tables(s, book, book_customer):
    book(table_number="T-1")
    book_customer(table_number="T-2", reservation_time=(EVENING + timedelta(hours=1)).isoformat())
    book(table_number="T-3", reservation_time=(EVENING + timedelta(hours=3)).isoformat())

    free = reservations.available_tables(s, EVENING, TABLES)
    assert free == ["T-3", "T-4", "T-5", "T-6"]

    assert reservations.available_tables(s, EVENING, TABLES, guests=6) == ["T-6"]


# -----------------------
# customer workflow
# -----------------------
def test_customer_booking_waits_for_approval(s, book_customer, admin):
    notifier = RecordingNotifier()
    r = book_customer()
    assert r.status == "pending"
    assert r.is_customer_reservation is True
    assert [p.id for p in reservations.pending_customer_reservations(s)] == [r.id]

    at = EVENING - timedelta(days=1)
    reservations.approve_customer_reservation(
        s, r.id, "approve", admin, notifier=notifier, now=at, restaurant="Spice Route"
    )
    assert r.status == "confirmed"
    assert r.approved_by_id == admin.id
    assert r.approved_at == at
    assert reservations.pending_customer_reservations(s) == []

    phone, text = notifier.sent[0]
    assert phone == "+919876543210"
    assert "Table T-1 at 2025-02-14 19:00 UTC for 2 guests" in text
    assert "*APPROVED* by Ada Admin" in text
    assert text.endswith("Spice Route")


def test_pending_customer_booking_blocks_the_table(book, book_customer):
    book_customer()
    with pytest.raises(ConflictError):
        book()


def test_reject_cancels_without_notice(s, book_customer, admin):
    notifier = RecordingNotifier()
    r = book_customer()
    reservations.approve_customer_reservation(s, r.id, "reject", admin, notifier=notifier)
    assert r.status == "cancelled"
    assert r.approved_by_id is None
    assert notifier.sent == []


def test_approve_only_pending_customer_bookings(s, book, book_customer, admin, customer):
    staff = book()
    with pytest.raises(StateError):
        reservations.approve_customer_reservation(s, staff.id, "approve", admin)

    r = book_customer(table_number="T-2")
    reservations.approve_customer_reservation(s, r.id, "approve", admin)
    with pytest.raises(StateError):
        reservations.approve_customer_reservation(s, r.id, "approve", admin)
    with pytest.raises(ValidationError):
        reservations.approve_customer_reservation(s, r.id, "later", admin)
    with pytest.raises(AuthorizationError):
        reservations.approve_customer_reservation(s, r.id, "approve", customer)


def test_status_update_to_confirmed_notifies(s, book_customer, admin):
    notifier = RecordingNotifier()
    r = book_customer()
    reservations.update_reservation_status(s, r.id, "confirmed", admin, notifier=notifier, now=EVENING)
    assert r.approved_by_id == admin.id
    assert "*CONFIRMED* by Ada Admin" in notifier.sent[0][1]

    reservations.update_reservation_status(s, r.id, "seated", admin, notifier=notifier)
    reservations.update_reservation_status(s, r.id, "completed", admin, notifier=notifier)
    assert len(notifier.sent) == 1
    with pytest.raises(StateError):
        reservations.update_reservation_status(s, r.id, "confirmed", admin, notifier=notifier)


def test_status_update_validation(s, book, admin, waiter):
    r = book()
    with pytest.raises(ValidationError):
        reservations.update_reservation_status(s, r.id, "no-show", admin)
    with pytest.raises(AuthorizationError):
        reservations.update_reservation_status(s, r.id, "seated", waiter)
    with pytest.raises(NotFoundError):
        reservations.update_reservation_status(s, 4040, "seated", admin)


def test_customer_update_excludes_itself_from_conflicts(s, book_customer, customer):
    r = book_customer()
    later = EVENING + timedelta(hours=1)
    updated = reservations.update_customer_reservation(
        s, r.id, customer, {"reservation_time": later.isoformat(), "number_of_guests": 3}, TABLES
    )
    assert updated.reservation_time == later
    assert updated.number_of_guests == 3


def test_customer_update_conflicts_with_others(s, book, book_customer, customer):
    book(table_number="T-2")
    r = book_customer()
    with pytest.raises(ConflictError):
        reservations.update_customer_reservation(s, r.id, customer, {"table_number": "T-2"}, TABLES)
    assert r.table_number == "T-1"


def test_customer_update_only_while_pending(s, book_customer, customer, admin):
    r = book_customer()
    reservations.approve_customer_reservation(s, r.id, "approve", admin)
    with pytest.raises(StateError):
        reservations.update_customer_reservation(s, r.id, customer, {"notes": "late"}, TABLES)


def test_customer_sees_only_own_bookings(s, book_customer, make_user, customer):
    mine = book_customer()
    other = make_user("customer")
    theirs = book_customer(actor=other, table_number="T-2")

    assert [r.id for r in reservations.list_customer_reservations(s, customer)] == [mine.id]
    assert reservations.get_customer_reservation(s, theirs.id, other).id == theirs.id
    with pytest.raises(AuthorizationError):
        reservations.get_customer_reservation(s, theirs.id, customer)
    with pytest.raises(AuthorizationError):
        reservations.cancel_customer_reservation(s, theirs.id, customer)


@pytest.mark.parametrize("role", [None, "waiter", "admin"])
def test_customer_listing_requires_customer(s, make_user, role):
    actor = make_user(role) if role else None
    with pytest.raises(AuthorizationError):
        reservations.list_customer_reservations(s, actor)


def test_customer_cancel(s, book_customer, customer, admin):
    r = book_customer()
    reservations.approve_customer_reservation(s, r.id, "approve", admin)
    assert reservations.cancel_customer_reservation(s, r.id, customer).status == "cancelled"
    with pytest.raises(StateError):
        reservations.cancel_customer_reservation(s, r.id, customer)


# -----------------------
# admin queries
# -----------------------
def test_list_filters(s, book, admin):
    first = book()
    second = book(table_number="T-2", reservation_time=(EVENING + timedelta(days=1)).isoformat())
    reservations.update_reservation_status(s, second.id, "seated", admin)

    assert [r.id for r in reservations.list_reservations(s)] == [first.id, second.id]
    assert [r.id for r in reservations.list_reservations(s, day="2025-02-15")] == [second.id]
    assert [r.id for r in reservations.list_reservations(s, status="confirmed")] == [first.id]
    assert [r.id for r in reservations.list_reservations(s, table_number="T-2")] == [second.id]
    with pytest.raises(ValidationError):
        reservations.list_reservations(s, day="15/02/2025")


def test_delete(s, book):
    r = book()
    reservations.delete_reservation(s, r.id)
    with pytest.raises(NotFoundError):
        reservations.get_reservation(s, r.id)
