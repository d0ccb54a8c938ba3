from datetime import datetime
from decimal import Decimal

from clock import as_utc


def special_active(dish, at: datetime) -> bool:
    """
    True when the dish is flagged special, the special price and both window
    bounds are set, and `at` falls inside [special_from, special_until].
    Both bounds are inclusive.
    """
    if not dish.is_special:
        return False
    if dish.special_price is None or dish.special_from is None or dish.special_until is None:
        return False
    at = as_utc(at)
    return as_utc(dish.special_from) <= at <= as_utc(dish.special_until)


def resolve_price(dish, at: datetime) -> Decimal:
    """Effective unit price of `dish` at instant `at`."""
    if special_active(dish, at):
        return Decimal(dish.special_price)
    return Decimal(dish.price)
