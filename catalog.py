import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from errors import ConflictError, NotFoundError, ValidationError
from models import DIETARY_TAGS, Dish, Order, OrderItem
from validation import parse_bool, parse_datetime, parse_money, require

logger = logging.getLogger(__name__)


def _parse_dietary(value) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        value = [v for v in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise ValidationError("dietary_restrictions must be a list.")
    tags = []
    for v in value:
        tag = str(v).strip().lower()
        if not tag:
            continue
        if tag not in DIETARY_TAGS:
            raise ValidationError(
                f"Unknown dietary restriction '{tag}'. Use: {', '.join(DIETARY_TAGS)}."
            )
        if tag not in tags:
            tags.append(tag)
    return tags


def _commit_unique_name(s, dish: Dish):
    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        raise ConflictError(f"Dish with name '{dish.name}' already exists.")


def _name_taken(s, name: str, exclude_id=None) -> bool:
    q = select(Dish.id).where(Dish.name == name)
    if exclude_id is not None:
        q = q.where(Dish.id != exclude_id)
    return s.scalar(q) is not None


def get_dish(s, dish_id: int) -> Dish:
    dish = s.get(Dish, dish_id)
    if not dish:
        raise NotFoundError("Dish not found.")
    return dish


def list_dishes(s, category=None, available=None, dietary=None) -> list:
    q = select(Dish)
    if category:
        q = q.where(Dish.category == category)
    if available is not None:
        q = q.where(Dish.is_available == available)
    dishes = s.scalars(q.order_by(Dish.category, Dish.name)).all()
    if dietary:
        # JSON containment differs per backend, filter here
        dishes = [d for d in dishes if dietary in (d.dietary_restrictions or [])]
    return dishes


def create_dish(s, data: dict) -> Dish:
    require(data, "name", "category")
    if data.get("price") is None:
        raise ValidationError("price is required.")

    name = str(data["name"]).strip()
    if _name_taken(s, name):
        raise ConflictError(f"Dish with name '{name}' already exists.")

    dish = Dish(
        name=name,
        description=str(data.get("description") or "").strip(),
        category=str(data["category"]).strip(),
        price=parse_money(data["price"]),
        is_available=parse_bool(data.get("is_available", True), "is_available"),
        dietary_restrictions=_parse_dietary(data.get("dietary_restrictions")),
    )
    s.add(dish)
    _commit_unique_name(s, dish)
    logger.info("Dish %s created: %s @ %s", dish.id, dish.name, dish.price)
    return dish


def update_dish(s, dish_id: int, data: dict) -> Dish:
    """Partial update; only keys present in `data` change."""
    dish = get_dish(s, dish_id)

    if "name" in data:
        name = str(data["name"] or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty.")
        if _name_taken(s, name, exclude_id=dish.id):
            raise ConflictError(f"Dish with name '{name}' already exists.")
        dish.name = name
    if "description" in data:
        dish.description = str(data["description"] or "").strip()
    if "category" in data:
        category = str(data["category"] or "").strip()
        if not category:
            raise ValidationError("Category cannot be empty.")
        dish.category = category
    if "price" in data:
        dish.price = parse_money(data["price"])
    if "is_available" in data:
        dish.is_available = parse_bool(data["is_available"], "is_available")
    if "dietary_restrictions" in data:
        dish.dietary_restrictions = _parse_dietary(data["dietary_restrictions"])

    _commit_unique_name(s, dish)
    logger.info("Dish %s updated", dish.id)
    return dish


def set_special(s, dish_id: int, data: dict) -> Dish:
    require(data, "special_from", "special_until")
    if data.get("special_price") is None:
        raise ValidationError("special_price is required.")

    dish = get_dish(s, dish_id)
    special_price = parse_money(data["special_price"], "special_price")
    active_from = parse_datetime(data["special_from"], "special_from")
    active_until = parse_datetime(data["special_until"], "special_until")
    if active_from > active_until:
        raise ValidationError("special_from must not be after special_until.")

    dish.is_special = True
    dish.special_price = special_price
    dish.special_from = active_from
    dish.special_until = active_until
    s.commit()
    logger.info(
        "Dish %s special %s active %s .. %s",
        dish.id, special_price, active_from.isoformat(), active_until.isoformat(),
    )
    return dish


def clear_special(s, dish_id: int) -> Dish:
    dish = get_dish(s, dish_id)
    dish.is_special = False
    dish.special_price = None
    dish.special_from = None
    dish.special_until = None
    s.commit()
    return dish


def delete_dish(s, dish_id: int):
    dish = get_dish(s, dish_id)

    # unbilled orders still need the dish to price their bill
    in_use = s.scalar(
        select(OrderItem.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(OrderItem.dish_id == dish.id, Order.is_billed.is_(False), Order.status != "cancelled")
        .limit(1)
    )
    if in_use is not None:
        raise ConflictError("Dish is part of an open order and cannot be deleted.")

    s.delete(dish)
    s.commit()
    logger.info("Dish %s deleted", dish_id)
