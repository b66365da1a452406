from flask import Blueprint, g, request
from farmtrust.auth_mw import require_admin
from farmtrust.models import DisputePriority, DisputeStatus
from farmtrust.services import dispute_service
from farmtrust.utils.parsing import json_body, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp_disputes = Blueprint("admin_disputes", __name__, url_prefix="/admin/disputes")


@bp_disputes.get("")
@require_admin
def list_disputes():
    page, limit = page_args(default_limit=20)
    try:
        status = parse_enum(DisputeStatus, request.args.get("status"))
        priority = parse_enum(DisputePriority, request.args.get("priority"))
    except ValueError:
        return err("invalid_filter", 400)
    pagination = dispute_service.list_all(page, limit, status=status, priority=priority)
    return ok(paginated(pagination, lambda d: d.to_dict(), page, limit))


@bp_disputes.get("/stats")
@require_admin
def stats():
    return ok(dispute_service.stats())


@bp_disputes.get("/<int:dispute_id>")
@require_admin
def get_dispute(dispute_id: int):
    return ok(dispute_service.get_for_user(dispute_id, g.user).to_dict())


@bp_disputes.patch("/<int:dispute_id>")
@require_admin
def review(dispute_id: int):
    dispute = dispute_service.review(dispute_id, g.user, json_body())
    return ok({"message": "Dispute updated", "dispute": dispute.to_dict()})


@bp_disputes.post("/<int:dispute_id>/resolve")
@require_admin
def resolve(dispute_id: int):
    dispute = dispute_service.resolve(dispute_id, g.user, json_body())
    return ok({"message": "Dispute resolved", "dispute": dispute.to_dict()})


@bp_disputes.post("/<int:dispute_id>/escalate")
@require_admin
def escalate(dispute_id: int):
    dispute = dispute_service.escalate(dispute_id, g.user, json_body().get("escalation_reason"))
    return ok({"message": "Dispute escalated", "dispute": dispute.to_dict()})


@bp_disputes.post("/<int:dispute_id>/close")
@require_admin
def close(dispute_id: int):
    dispute = dispute_service.close(dispute_id, g.user, json_body().get("closure_reason"))
    return ok({"message": "Dispute closed", "dispute": dispute.to_dict()})
