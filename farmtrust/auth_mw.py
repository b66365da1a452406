from datetime import datetime, timedelta
from functools import wraps
from flask import request, jsonify, current_app, g
import jwt
from farmtrust.db import db
from farmtrust.models import User, Role


def make_token(u: User) -> str:
    cfg = current_app.config
    payload = {
        "sub": str(u.id),
        "username": u.username,
        "role": u.role.value,
        "exp": datetime.utcnow() + timedelta(hours=cfg["JWT_EXP_HOURS"]),
    }
    return jwt.encode(payload, cfg["JWT_SECRET"], algorithm=cfg["JWT_ALGO"])


def _token_from_request() -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth.split(" ", 1)[1].strip() or None
    return request.cookies.get(current_app.config["AUTH_COOKIE_NAME"])


def current_user():
    """Resolve the caller. Returns (user, None) or (None, (body, status))."""
    token = _token_from_request()
    if not token:
        return None, ({"error": "missing_token"}, 401)
    cfg = current_app.config
    try:
        payload = jwt.decode(token, cfg["JWT_SECRET"], algorithms=[cfg["JWT_ALGO"]])
    except jwt.PyJWTError:
        return None, ({"error": "invalid_token"}, 401)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return None, ({"error": "invalid_token"}, 401)
    u = db.session.get(User, user_id)
    if not u:
        return None, ({"error": "user_not_found"}, 401)
    if u.locked:
        return None, ({"error": "locked"}, 403)
    return u, None


def require_auth(*roles: Role):
    """Authenticate the caller into g.user; restrict to roles when given."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            u, error = current_user()
            if error:
                body, code = error
                return jsonify(body), code
            if roles and u.role not in roles:
                return jsonify({"error": "forbidden"}), 403
            g.user = u
            return func(*args, **kwargs)

        return wrapper

    return decorator


require_admin = require_auth(Role.ADMIN)
