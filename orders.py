"""
Order engine.

An order is created with every item `pending`. The kitchen moves items along
the item state machine below, staff can ask for an item to be cancelled, and an
admin resolves those requests. After every mutation the order calls
`Order.recompute()` so that `total_amount` and the aggregate status always
reflect the items before anything is written.

Each operation loads one order, mutates it, and commits once.
"""
import logging

from sqlalchemy import select

from clock import utc_now
from errors import AuthorizationError, NotFoundError, StateError, ValidationError
from models import ITEM_STATUSES, Dish, Order, OrderItem
from notifier import notify
from pricing import resolve_price
from validation import parse_phone, parse_positive_int, require

logger = logging.getLogger(__name__)

ITEM_TRANSITIONS = {
    "pending": {"accepted", "declined", "cancellation_requested"},
    "accepted": {"preparing", "ready", "cancelled", "cancellation_requested"},
    "preparing": {"ready", "cancellation_requested"},
    "cancellation_requested": {"cancelled", "pending", "accepted", "preparing"},
    "ready": set(),
    "declined": set(),
    "cancelled": set(),
}

# Targets the kitchen may set through update_item_status
KITCHEN_TARGETS = ("accepted", "declined", "preparing", "ready", "cancelled")

CLOSED_ORDER_STATUSES = ("completed", "cancelled")

CHEF_VISIBLE_STATUSES = ("pending", "preparing", "ready")


def _require_role(actor, *roles):
    if actor is None or actor.role not in roles:
        raise AuthorizationError(f"Requires role: {', '.join(roles)}.")


def _require_owner_or_admin(actor, order: Order, what: str):
    if actor.role == "admin":
        return
    if actor.role == "waiter" and order.waiter_id == actor.id:
        return
    raise AuthorizationError(f"Not authorized to {what} this order.")


def _ensure_open(order: Order):
    if order.status in CLOSED_ORDER_STATUSES or order.is_billed:
        state = "billed" if order.is_billed else order.status
        raise StateError(f"Cannot change items of an order that is {state}.")


def _load_for_update(s, order_id: int) -> Order:
    order = s.scalars(
        select(Order).where(Order.id == order_id).with_for_update(of=Order)
    ).first()
    if not order:
        raise NotFoundError("Order not found.")
    return order


def _find_item(order: Order, item_id: int) -> OrderItem:
    item = order.item(item_id)
    if not item:
        raise NotFoundError("Order item not found.")
    return item


def _move_item(item: OrderItem, status: str):
    if status not in ITEM_TRANSITIONS[item.status]:
        raise StateError(f'Invalid item status transition from "{item.status}" to "{status}".')
    item.status = status


# -----------------------
# Create / read
# -----------------------
def create_order(s, actor, data: dict, now=None) -> Order:
    """
    Snapshot each requested dish at its current effective price. The order
    starts `pending` with a total of 0; nothing counts until the kitchen
    accepts it.
    """
    _require_role(actor, "waiter", "admin")
    require(data, "table_number", "customer_name", "customer_phone")
    lines = data.get("items")
    if not isinstance(lines, list) or not lines:
        raise ValidationError("Please provide at least one item.")

    now = now or utc_now()
    items = []
    for line in lines:
        if not isinstance(line, dict) or line.get("dish_id") is None:
            raise ValidationError("Each item needs a dish_id.")
        dish = s.get(Dish, line["dish_id"])
        if not dish:
            raise NotFoundError(f"Dish with ID {line['dish_id']} not found.")
        if not dish.is_available:
            raise ValidationError(f"Dish {dish.name} is not available.")
        quantity = parse_positive_int(line.get("quantity"), f"Quantity for dish {dish.name}")

        items.append(
            OrderItem(
                dish_id=dish.id,
                name=dish.name,
                description=dish.description,
                category=dish.category,
                unit_price=resolve_price(dish, now),
                quantity=quantity,
                status="pending",
                notes=str(line.get("notes") or ""),
            )
        )

    order = Order(
        table_number=str(data["table_number"]).strip(),
        customer_name=str(data["customer_name"]).strip(),
        customer_phone=parse_phone(data["customer_phone"]),
        waiter_id=actor.id,
        ordered_at=now,
        status="pending",
        is_billed=False,
        status_timestamps={},
        items=items,
    )
    order.set_status("pending", now)
    order.recompute(now)
    s.add(order)
    s.commit()
    logger.info("Order %s created for table %s with %d item(s)", order.id, order.table_number, len(items))
    return order


def get_order(s, order_id: int, actor=None) -> Order:
    order = s.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found.")
    if actor is not None and actor.role == "waiter" and order.waiter_id != actor.id:
        raise AuthorizationError("Not authorized to view this order.")
    return order


def list_orders(s, actor) -> list:
    """Admin sees everything, chefs the kitchen queue, waiters their own orders."""
    _require_role(actor, "admin", "chef", "waiter")
    q = select(Order)
    if actor.role == "chef":
        q = q.where(Order.status.in_(CHEF_VISIBLE_STATUSES))
    elif actor.role == "waiter":
        q = q.where(Order.waiter_id == actor.id)
    return s.scalars(q.order_by(Order.ordered_at.desc(), Order.id.desc())).all()


# -----------------------
# Kitchen
# -----------------------
def update_item_status(s, order_id: int, item_id: int, status: str, actor, now=None) -> Order:
    _require_role(actor, "chef")
    if status not in ITEM_STATUSES:
        raise ValidationError("Invalid item status provided.")
    if status not in KITCHEN_TARGETS:
        raise ValidationError(f'The kitchen cannot set an item to "{status}".')

    order = _load_for_update(s, order_id)
    item = _find_item(order, item_id)
    _ensure_open(order)
    if item.status == "cancellation_requested":
        raise StateError("Item has a pending cancellation request; an admin must resolve it first.")

    now = now or utc_now()
    old = item.status
    _move_item(item, status)
    order.recompute(now)
    s.commit()
    logger.info(
        "Order %s item %s: %s -> %s (order %s, total %s)",
        order.id, item.id, old, status, order.status, order.total_amount,
    )
    return order


def update_order_status(s, order_id: int, status: str, actor, now=None) -> Order:
    """
    Only the closing statuses can be set by hand; the others follow the items.
    """
    if status == "cancelled":
        return cancel_order(s, order_id, actor, now=now)
    if status != "completed":
        raise StateError(f'Order status "{status}" is derived from its items and cannot be set directly.')

    _require_role(actor, "admin", "chef")
    order = _load_for_update(s, order_id)
    if order.is_billed or order.status in CLOSED_ORDER_STATUSES:
        raise StateError("Cannot change status for an order that is already billed, completed, or cancelled.")
    if order.status != "ready":
        raise StateError(f'Invalid status transition from "{order.status}" to "completed".')
    if any(it.status == "cancellation_requested" for it in order.items):
        raise StateError("An item cancellation request is still awaiting review.")

    order.set_status("completed", now or utc_now())
    s.commit()
    logger.info("Order %s completed", order.id)
    return order


def cancel_order(s, order_id: int, actor, now=None) -> Order:
    _require_role(actor, "waiter", "admin")
    order = _load_for_update(s, order_id)
    if order.is_billed or order.status == "completed":
        raise StateError("Cannot cancel an order that is already billed or completed.")
    if order.status == "cancelled":
        raise StateError("Order is already cancelled.")
    _require_owner_or_admin(actor, order, "cancel")

    now = now or utc_now()
    for item in order.items:
        if item.status != "declined":
            item.status = "cancelled"
            item.previous_status = None
    order.set_status("cancelled", now)
    order.recompute(now)
    s.commit()
    logger.info("Order %s cancelled by user %s", order.id, actor.id)
    return order


# -----------------------
# Item cancellation requests
# -----------------------
def request_item_cancellation(s, order_id: int, item_id: int, actor, now=None) -> Order:
    _require_role(actor, "waiter", "admin")
    order = _load_for_update(s, order_id)
    item = _find_item(order, item_id)
    if order.status in CLOSED_ORDER_STATUSES or order.is_billed or item.status in ("cancelled", "ready"):
        raise StateError(
            f'Cannot request cancellation for item in "{item.status}" status '
            f"or for a {'billed' if order.is_billed else order.status} order."
        )
    _require_owner_or_admin(actor, order, "request cancellations for")

    previous = item.status
    _move_item(item, "cancellation_requested")
    item.previous_status = previous
    order.recompute(now or utc_now())
    s.commit()
    logger.info("Order %s item %s cancellation requested (was %s)", order.id, item.id, previous)
    return order


def _cancellation_message(order: Order, item: OrderItem, admin_name: str, approved: bool) -> str:
    head = (
        f"Hello {order.customer_name}!\n\n"
        f'Your request to cancel "{item.name}" (Quantity: {item.quantity}) '
        f"from your order for Table {order.table_number} "
    )
    if approved:
        return head + (
            f"has been *APPROVED* by {admin_name}.\n\n"
            "Your order total will be adjusted accordingly."
        )
    return head + (
        f"has been *REJECTED* by {admin_name}.\n\n"
        "The item will remain part of your order. Please contact staff for further assistance."
    )


def resolve_item_cancellation(s, order_id: int, item_id: int, action: str, actor, notifier=None, now=None) -> Order:
    """
    approve: the item becomes `cancelled`.
    reject: the item goes back to the status it had before the request.
    The customer is notified either way; delivery failure is only logged.
    """
    _require_role(actor, "admin")
    if action not in ("approve", "reject"):
        raise ValidationError('Invalid action. Must be "approve" or "reject".')

    order = _load_for_update(s, order_id)
    item = _find_item(order, item_id)
    if item.status != "cancellation_requested":
        raise StateError(f"Item is not in 'cancellation_requested' status. Current status: {item.status}.")
    _ensure_open(order)

    approved = action == "approve"
    if approved:
        _move_item(item, "cancelled")
    else:
        _move_item(item, item.previous_status or "accepted")
    item.previous_status = None
    order.recompute(now or utc_now())
    s.commit()
    logger.info("Order %s item %s cancellation %sd -> %s", order.id, item.id, action, item.status)

    sent = notify(notifier, order.customer_phone, _cancellation_message(order, item, actor.name, approved))
    if not sent:
        logger.warning("Cancellation %s notice for order %s was not delivered", action, order.id)
    return order
