from flask import Blueprint, g, request
from farmtrust.auth_mw import require_auth
from farmtrust.services import notification_service
from farmtrust.utils.parsing import page_args
from farmtrust.utils.responses import ok, paginated

bp = Blueprint("notifications", __name__, url_prefix="/notifications")


@bp.get("")
@require_auth()
def list_notifications():
    page, limit = page_args(default_limit=20)
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    pagination = notification_service.list_for(g.user, unread_only, page, limit)
    return ok(paginated(pagination, lambda n: n.to_dict(), page, limit))


@bp.post("/<int:notification_id>/read")
@require_auth()
def mark_read(notification_id: int):
    return ok(notification_service.mark_read(notification_id, g.user).to_dict())
