import re
from flask import request

SL_PHONE_RE = re.compile(r"^\+232\d{8}$")


def coerce_int(v):
    try:
        return int(v)
    except Exception:
        return None


def coerce_amount(v):
    try:
        return round(float(str(v).replace(",", "").strip()), 2)
    except Exception:
        return None


def normalize_phone(s: str | None) -> str | None:
    """Return a +232XXXXXXXX number, accepting 0XX... local and 232... forms."""
    if not s:
        return None
    digits = re.sub(r"\D", "", s)
    if digits.startswith("232"):
        digits = digits[3:]
    elif digits.startswith("0"):
        digits = digits[1:]
    phone = f"+232{digits}"
    return phone if SL_PHONE_RE.match(phone) else None


def page_args(default_limit: int = 10, max_limit: int = 100):
    page = max(request.args.get("page", 1, type=int) or 1, 1)
    limit = request.args.get("limit", default_limit, type=int) or default_limit
    return page, min(max(limit, 1), max_limit)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_enum(enum_cls, raw):
    """Member of enum_cls for a value string, None when raw is empty, ValueError when unknown."""
    if raw in (None, ""):
        return None
    return enum_cls(str(raw).strip().lower())
