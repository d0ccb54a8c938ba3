"""
Billing engine.

Bills are priced when they are generated, not from the order-time snapshot:
each billed line re-resolves its dish's effective price at bill time, so a
special that started or ended after the order was placed is honoured.

An order is billed exactly once, either by one unsplit bill or by a group of
split bills that together cover every billable item.
"""
import logging
import uuid
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from clock import utc_now
from errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from models import Bill, BillItem, Order, money
from notifier import notify
from pricing import resolve_price
from validation import parse_positive_int

logger = logging.getLogger(__name__)

PAYMENT_TARGETS = ("paid", "refunded")
PAYMENT_TRANSITIONS = {
    "pending": {"paid", "refunded"},
    "paid": {"refunded"},
    "refunded": set(),
}


def _require_admin(actor):
    if actor is None or actor.role != "admin":
        raise AuthorizationError("Requires role: admin.")


def _load_billable_order(s, order_id: int) -> Order:
    order = s.scalars(select(Order).where(Order.id == order_id).with_for_update(of=Order)).first()
    if not order:
        raise NotFoundError("Order not found.")
    if order.is_billed:
        raise ConflictError("This order has already been billed.")
    if order.status == "cancelled":
        raise StateError("A cancelled order cannot be billed.")
    if any(it.status == "cancellation_requested" for it in order.items):
        raise StateError("Resolve the pending item cancellation requests before billing.")
    return order


def _bill_price(item, at):
    # the dish can only be gone once the order is billed; fall back to the snapshot
    if item.dish is None:
        return Decimal(item.unit_price)
    return resolve_price(item.dish, at)


def _close_order(order: Order, now):
    order.is_billed = True
    if order.status != "completed":
        order.set_status("completed", now)


def _commit_bills(s, order: Order):
    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        raise ConflictError(f"Order {order.id} already has a bill.")


# -----------------------
# Generate
# -----------------------
def generate_bill(s, order_id: int, actor, now=None) -> Bill:
    _require_admin(actor)
    now = now or utc_now()
    order = _load_billable_order(s, order_id)

    lines = []
    for item in order.accepted_items():
        lines.append(
            BillItem(
                dish_id=item.dish_id,
                dish_name=item.name,
                quantity=item.quantity,
                unit_price=money(_bill_price(item, now)),
            )
        )
    if not lines:
        raise StateError("No accepted dishes in this order to bill. Please accept items first.")

    bill = Bill(
        order_id=order.id,
        billed_by_id=actor.id,
        billed_at=now,
        items=lines,
        total_amount=money(sum((l.line_total for l in lines), Decimal("0"))),
        payment_status="pending",
        is_split=False,
        customer_name=order.customer_name,
        customer_phone=order.customer_phone,
        original_order_total=order.total_amount,
    )
    s.add(bill)
    _close_order(order, now)
    _commit_bills(s, order)
    logger.info("Bill %s generated for order %s: %s", bill.id, order.id, bill.total_amount)
    return bill


# -----------------------
# Split
# -----------------------
def _availability(order: Order) -> dict:
    """{dish_id: {"item", "name", "quantity"}} over the billable items."""
    available = {}
    for item in order.accepted_items():
        entry = available.setdefault(
            item.dish_id, {"item": item, "name": item.name, "quantity": 0}
        )
        entry["quantity"] += item.quantity
    return available


def split_bill(s, order_id: int, splits, actor, now=None) -> list:
    """
    Partition the order's billable items across two or more bills.

    Every group is validated and priced against the remaining quantities
    before anything is written; the whole order must be allocated or no bill
    is created.
    """
    _require_admin(actor)
    if not isinstance(splits, list) or len(splits) < 2:
        raise ValidationError("Splits array is required and must contain at least 2 split portions.")

    now = now or utc_now()
    order = _load_billable_order(s, order_id)
    available = _availability(order)
    if not available:
        raise StateError("No accepted items in the original order to split.")

    group_id = str(uuid.uuid4())
    bills = []
    for index, split in enumerate(splits, start=1):
        entries = split.get("items") if isinstance(split, dict) else None
        if not isinstance(entries, list) or not entries:
            raise ValidationError(f"Split portion {index} must contain at least one item.")

        seen = set()
        lines = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("dish_id") is None:
                raise ValidationError(
                    f"Invalid item details in split portion {index}. "
                    "Each item must have a valid dish ID and positive quantity."
                )
            dish_id = parse_positive_int(entry["dish_id"], "dish_id")
            quantity = parse_positive_int(entry.get("quantity"), f"Quantity in split portion {index}")

            if dish_id in seen:
                raise ValidationError(
                    f"Duplicate dish {dish_id} found within split portion {index}. "
                    "Each item should appear once per split."
                )
            seen.add(dish_id)

            info = available.get(dish_id)
            if info is None:
                raise ConflictError(
                    f"Dish ID {dish_id} in split portion {index} is not part of the "
                    "remaining accepted order items."
                )
            if quantity > info["quantity"]:
                raise ConflictError(
                    f'Quantity {quantity} for dish "{info["name"]}" in split portion {index} '
                    f"exceeds available quantity in original order ({info['quantity']})."
                )

            lines.append(
                BillItem(
                    dish_id=dish_id,
                    dish_name=info["name"],
                    quantity=quantity,
                    unit_price=money(_bill_price(info["item"], now)),
                )
            )
            info["quantity"] -= quantity
            if info["quantity"] == 0:
                del available[dish_id]

        bills.append(
            Bill(
                order_id=order.id,
                billed_by_id=actor.id,
                billed_at=now,
                items=lines,
                total_amount=money(sum((l.line_total for l in lines), Decimal("0"))),
                payment_status="pending",
                is_split=True,
                split_group_id=group_id,
                customer_name=str(split.get("customer_name") or f"Split Customer {index}"),
                customer_phone=order.customer_phone,
                original_order_total=order.total_amount,
            )
        )

    if available:
        leftover = ", ".join(f"{v['name']} (Qty: {v['quantity']})" for v in available.values())
        raise ConflictError(
            f"Not all original accepted order items were allocated in the splits. Unallocated: {leftover}"
        )

    s.add_all(bills)
    _close_order(order, now)
    _commit_bills(s, order)
    logger.info("Order %s split into %d bills (group %s)", order.id, len(bills), group_id)
    return bills


# -----------------------
# Read
# -----------------------
def get_bill(s, bill_id: int) -> Bill:
    bill = s.get(Bill, bill_id)
    if not bill:
        raise NotFoundError("Bill not found.")
    return bill


def list_bills(s, order_id=None, payment_status=None, split_group_id=None) -> list:
    q = select(Bill)
    if order_id is not None:
        q = q.where(Bill.order_id == order_id)
    if payment_status:
        q = q.where(Bill.payment_status == payment_status)
    if split_group_id:
        q = q.where(Bill.split_group_id == split_group_id)
    return s.scalars(q.order_by(Bill.billed_at.desc(), Bill.id.desc())).all()


# -----------------------
# Payment
# -----------------------
def paid_message(bill: Bill, currency: str = "Rs.") -> str:
    order = bill.order
    billed_by = bill.billed_by.name if bill.billed_by else "Admin"
    lines = [
        f"Hello {bill.customer_name or order.customer_name or 'customer'}!",
        f"Your bill for Table {order.table_number} (Order ID: {order.id}) has been PAID.",
        "",
        "--- Your Bill Summary ---",
    ]
    for item in bill.items:
        lines.append(f"{item.quantity}x {item.dish_name} @ {currency}{Decimal(item.unit_price):.2f}")
    lines += [
        "------------------------",
        f"Total Amount: {currency} {Decimal(bill.total_amount):.2f}",
        "Payment Status: PAID",
        f"Billed by: {billed_by}",
        "Thank you for your business!",
    ]
    return "\n".join(lines)


def update_payment_status(s, bill_id: int, status: str, actor, notifier=None, now=None, currency="Rs.") -> Bill:
    """
    pending -> paid | refunded, paid -> refunded. Setting the current status
    again changes nothing. Only the edge into `paid` notifies the customer.
    """
    _require_admin(actor)
    if status not in PAYMENT_TARGETS:
        raise ValidationError('Invalid payment status. Must be "paid" or "refunded".')

    bill = s.scalars(select(Bill).where(Bill.id == bill_id).with_for_update(of=Bill)).first()
    if not bill:
        raise NotFoundError("Bill not found.")

    old = bill.payment_status
    if old == status:
        return bill
    if status not in PAYMENT_TRANSITIONS[old]:
        raise StateError(f'Invalid payment status transition from "{old}" to "{status}".')

    bill.payment_status = status
    if status == "paid":
        bill.paid_at = now or utc_now()
    s.commit()
    logger.info("Bill %s payment %s -> %s", bill.id, old, status)

    if status == "paid":
        if not notify(notifier, bill.customer_phone, paid_message(bill, currency)):
            logger.warning("Payment notice for bill %s was not delivered", bill.id)
    return bill
