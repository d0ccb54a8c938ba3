"""Parsing helpers for request payloads. Every failure is a ValidationError."""
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation

from clock import as_utc
from errors import ValidationError

E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")
EMAIL_RE = re.compile(r"^[\w.+-]+@(?:[\w-]+\.)+[a-zA-Z]{2,}$")


def is_valid_phone(phone: str) -> bool:
    return bool(E164_RE.match((phone or "").strip()))


def require(data: dict, *fields: str):
    missing = [f for f in fields if data.get(f) in (None, "", [])]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}.")


def parse_phone(value) -> str:
    phone = (value or "").strip() if isinstance(value, str) else ""
    if not is_valid_phone(phone):
        raise ValidationError(
            "Please enter a valid phone number in E.164 format (e.g., +1234567890)."
        )
    return phone


def parse_email(value) -> str:
    email = (value or "").strip().lower() if isinstance(value, str) else ""
    if not EMAIL_RE.match(email):
        raise ValidationError("Please add a valid email.")
    return email


def parse_money(value, field: str = "price") -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number.")
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number like 9.99.")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be zero or more.")
    return amount.quantize(Decimal("0.01"))


def parse_positive_int(value, field: str) -> int:
    # bools are ints in Python, reject them explicitly
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive whole number.")
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive whole number.")
    if n != value and not isinstance(value, str):
        raise ValidationError(f"{field} must be a positive whole number.")
    if n < 1:
        raise ValidationError(f"{field} must be at least 1.")
    return n


def parse_datetime(value, field: str = "time") -> datetime:
    """ISO-8601 string (a trailing Z is accepted) or datetime, returned as aware UTC."""
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required (ISO 8601).")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ValidationError(
            f"Invalid {field} format. Please provide a valid date/time (e.g., ISO 8601)."
        )


def parse_bool(value, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no"):
        return False
    raise ValidationError(f"{field} must be true or false.")
