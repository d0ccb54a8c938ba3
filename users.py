import hashlib
import logging
import secrets
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from auth import hash_password, verify_password
from clock import utc_now
from errors import AuthenticationError, AuthorizationError, ConflictError, DeliveryError, NotFoundError, ValidationError
from models import ROLES, User
from notifier import send_email
from validation import parse_email, require

logger = logging.getLogger(__name__)

MIN_PASSWORD = 6
RESET_SUBJECT = "Password Reset Request"


def _check_password(pw) -> str:
    if not isinstance(pw, str) or len(pw) < MIN_PASSWORD:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD} characters.")
    return pw


def _check_role(role) -> str:
    if role not in ROLES:
        raise ValidationError(f"Role must be one of: {', '.join(ROLES)}.")
    return role


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_user(s, data: dict, default_role: str = "customer") -> User:
    require(data, "name", "email", "password")
    email = parse_email(data["email"])
    if s.scalar(select(User.id).where(User.email == email)) is not None:
        raise ConflictError("Email already exists.")

    user = User(
        name=str(data["name"]).strip(),
        email=email,
        password_hash=hash_password(_check_password(data["password"])),
        role=_check_role(data.get("role") or default_role),
    )
    s.add(user)
    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        raise ConflictError("Email already exists.")
    logger.info("User %s created (%s)", user.id, user.role)
    return user


def authenticate(s, email: str, pw: str) -> User:
    u = s.scalars(select(User).where(User.email == (email or "").strip().lower())).first()
    if not u or not verify_password(pw or "", u.password_hash):
        raise AuthenticationError("Invalid login.")
    return u


def get_user(s, user_id: int) -> User:
    u = s.get(User, user_id)
    if not u:
        raise NotFoundError("User not found.")
    return u


def list_users(s) -> list:
    return s.scalars(select(User).order_by(User.id)).all()


def update_user(s, user_id: int, data: dict) -> User:
    u = get_user(s, user_id)
    if "name" in data:
        name = str(data["name"] or "").strip()
        if not name:
            raise ValidationError("Name cannot be empty.")
        u.name = name
    if "email" in data:
        email = parse_email(data["email"])
        if s.scalar(select(User.id).where(User.email == email, User.id != u.id)) is not None:
            raise ConflictError("Email already exists.")
        u.email = email
    if "role" in data:
        u.role = _check_role(data["role"])
    if "password" in data:
        u.password_hash = hash_password(_check_password(data["password"]))
    s.commit()
    return u


def delete_user(s, user_id: int):
    u = get_user(s, user_id)
    s.delete(u)
    try:
        s.commit()
    except IntegrityError:
        s.rollback()
        raise ConflictError("User still owns orders, bills or reservations and cannot be deleted.")
    logger.info("User %s deleted", user_id)


def change_password(s, user_id: int, current: str, new: str) -> User:
    u = get_user(s, user_id)
    if not verify_password(current or "", u.password_hash):
        raise AuthorizationError("Current password is incorrect.")
    u.password_hash = hash_password(_check_password(new))
    s.commit()
    return u


# -----------------------
# Password reset
# -----------------------
def issue_reset_token(s, email: str, minutes: int = 10, now=None) -> str | None:
    """
    Store a hashed reset token and return the raw one for delivery.
    Returns None for an unknown email. A new token replaces any earlier one.
    """
    u = s.scalars(select(User).where(User.email == (email or "").strip().lower())).first()
    if not u:
        return None
    token = secrets.token_hex(20)
    u.reset_token_hash = _hash_token(token)
    u.reset_token_expires_at = (now or utc_now()) + timedelta(minutes=minutes)
    s.commit()
    logger.info("Password reset token issued for user %s", u.id)
    return token


def reset_message(user: User, reset_url: str, minutes: int) -> str:
    return (
        f"Hello {user.name},\n\n"
        "You have requested a password reset. Please use this link to choose a new password:\n"
        f"{reset_url}\n\n"
        f"This link is valid for {minutes} minutes only.\n"
        "If you did not request this, please ignore this email."
    )


def request_password_reset(s, email: str, reset_base_url: str, minutes: int = 10, now=None, timeout: float = 10) -> str | None:
    """
    Issue a reset token and email the reset link to the account holder.

    Returns the raw token, or None for an unknown email. When the email
    cannot be sent the token is withdrawn and DeliveryError is raised.
    """
    token = issue_reset_token(s, email, minutes, now)
    if token is None:
        return None

    u = s.scalars(select(User).where(User.reset_token_hash == _hash_token(token))).one()
    link = f"{reset_base_url}?token={token}"
    if not send_email(u.email, RESET_SUBJECT, reset_message(u, link, minutes), timeout=timeout):
        u.reset_token_hash = None
        u.reset_token_expires_at = None
        s.commit()
        logger.warning("Password reset email for user %s not sent; token withdrawn", u.id)
        raise DeliveryError("Email could not be sent. Please try again later.")
    return token


def reset_password(s, token: str, new_password: str, now=None) -> User:
    _check_password(new_password)
    u = s.scalars(select(User).where(User.reset_token_hash == _hash_token(token or ""))).first()
    if not u or u.reset_token_expires_at is None or u.reset_token_expires_at < (now or utc_now()):
        raise ValidationError("Invalid or expired reset token.")
    u.password_hash = hash_password(new_password)
    u.reset_token_hash = None
    u.reset_token_expires_at = None
    s.commit()
    logger.info("Password reset for user %s", u.id)
    return u
