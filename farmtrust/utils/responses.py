from flask import jsonify
from farmtrust.db import db


def ok(data=None, code=200):  return jsonify(data or {}), code
def err(msg, code=400):       return jsonify({"error": msg}), code


def commit_or_rollback():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def paginated(pagination, serializer, page: int, limit: int) -> dict:
    return {
        "data": [serializer(x) for x in pagination.items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": pagination.total,
            "pages": pagination.pages,
        },
    }
