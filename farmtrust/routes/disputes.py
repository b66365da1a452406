from flask import Blueprint, g, request
from farmtrust.auth_mw import require_auth
from farmtrust.models import DisputeStatus, Role
from farmtrust.services import dispute_service
from farmtrust.utils.parsing import json_body, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp = Blueprint("disputes", __name__, url_prefix="/disputes")


@bp.post("")
@require_auth(Role.BUYER, Role.VENDOR)
def open_dispute():
    dispute = dispute_service.open_dispute(g.user, json_body())
    return ok({"message": "Dispute opened", "dispute": dispute.to_dict()}, 201)


@bp.get("")
@require_auth()
def list_disputes():
    page, limit = page_args()
    try:
        status = parse_enum(DisputeStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    pagination = dispute_service.list_for_user(g.user, page, limit, status=status)
    return ok(paginated(pagination, lambda d: d.to_dict(), page, limit))


@bp.get("/<int:dispute_id>")
@require_auth()
def get_dispute(dispute_id: int):
    return ok(dispute_service.get_for_user(dispute_id, g.user).to_dict())


@bp.post("/<int:dispute_id>/respond")
@require_auth(Role.BUYER, Role.VENDOR)
def respond(dispute_id: int):
    dispute = dispute_service.respond(dispute_id, g.user, json_body())
    return ok({"message": "Response submitted", "dispute": dispute.to_dict()})
