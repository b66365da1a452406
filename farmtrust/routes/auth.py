from flask import Blueprint, current_app, g
from sqlalchemy import or_
from werkzeug.security import check_password_hash, generate_password_hash
from farmtrust.auth_mw import make_token, require_auth
from farmtrust.db import db
from farmtrust.models import Role, User
from farmtrust.utils.parsing import json_body, normalize_phone
from farmtrust.utils.responses import commit_or_rollback, err, ok

bp = Blueprint("auth", __name__, url_prefix="/auth")

SELF_SIGNUP_ROLES = {Role.BUYER.value, Role.VENDOR.value}


def normalize_email(s: str | None) -> str | None:
    if not s:
        return None
    return s.strip().lower()


@bp.get("/")
def health():
    return {"service": "auth", "status": "ok", "prefix": "/auth"}


@bp.post("/register")
def register():
    d = json_body()
    username = (d.get("username") or "").strip()
    email = normalize_email(d.get("email"))
    password = d.get("password") or ""
    if not username or not email or not password:
        return {"error": "missing_fields", "hint": "username, email, password required"}, 400
    if len(password) < 6:
        return err("password_too_short", 400)

    role = (d.get("role") or Role.BUYER.value).strip().lower()
    if role not in SELF_SIGNUP_ROLES:
        return err("invalid_role", 400)

    phone = None
    if d.get("phone"):
        phone = normalize_phone(str(d["phone"]))
        if not phone:
            return err("invalid_phone", 400)

    existed = User.query.filter(or_(User.username == username, User.email == email)).first()
    if existed:
        if existed.username == username:
            return err("username_exists", 409)
        return err("email_exists", 409)

    u = User(
        username=username,
        email=email,
        password=generate_password_hash(password),
        role=Role(role),
        phone=phone,
        locked=False,
    )
    db.session.add(u)
    commit_or_rollback()
    current_app.logger.info("Registered %s %s", u.role.value, u.username)
    return ok({"id": u.id, "username": u.username, "role": u.role.value}, 201)


@bp.post("/login")
def login():
    d = json_body()
    identifier = (d.get("identifier") or d.get("username") or d.get("email") or "").strip()
    password = d.get("password") or ""
    if not identifier or not password:
        return err("missing_fields", 400)

    if "@" in identifier:
        u = User.query.filter_by(email=identifier.lower()).first()
    else:
        u = User.query.filter_by(username=identifier).first()

    if not u or not check_password_hash(u.password, password):
        return err("invalid_credentials", 401)
    if u.locked:
        return err("locked", 403)

    token = make_token(u)
    cfg = current_app.config
    resp, code = ok({"access_token": token, "role": u.role.value, "user": u.to_dict_basic()})
    resp.set_cookie(
        cfg["AUTH_COOKIE_NAME"],
        token,
        max_age=cfg["JWT_EXP_HOURS"] * 3600,
        httponly=True,
        secure=cfg["AUTH_COOKIE_SECURE"],
        samesite="Lax",
    )
    return resp, code


@bp.get("/me")
@require_auth()
def me():
    return ok(g.user.to_dict_basic())


@bp.post("/logout")
def logout():
    resp, code = ok({"message": "Logged out"})
    resp.delete_cookie(current_app.config["AUTH_COOKIE_NAME"])
    return resp, code
