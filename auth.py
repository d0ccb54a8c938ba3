from functools import wraps
from flask import session, jsonify
from werkzeug.security import generate_password_hash, check_password_hash

from models import User

def hash_password(pw: str) -> str:
    return generate_password_hash(pw)

def verify_password(pw: str, pw_hash: str) -> bool:
    return check_password_hash(pw_hash, pw)

def login_user(user):
    session.clear()
    session["user_id"] = user.id
    session["email"] = user.email
    session["role"] = user.role

def current_user(s):
    """The logged-in User, loaded in session `s`."""
    user_id = session.get("user_id")
    return s.get(User, user_id) if user_id else None

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not session.get("user_id"):
            return jsonify({"success": False, "error": "Please login first."}), 401
        return fn(*args, **kwargs)
    return wrapper

def roles_required(*roles):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not session.get("user_id"):
                return jsonify({"success": False, "error": "Please login first."}), 401
            if session.get("role") not in roles:
                return jsonify({"success": False, "error": f"Requires role: {', '.join(roles)}."}), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def admin_required(fn):
    return roles_required("admin")(fn)
