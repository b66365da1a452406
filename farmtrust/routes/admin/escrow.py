from flask import Blueprint, g, request
from farmtrust.auth_mw import require_admin
from farmtrust.models import EscrowStatus
from farmtrust.services import escrow_service
from farmtrust.utils.parsing import coerce_amount, json_body, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp_escrow = Blueprint("admin_escrow", __name__, url_prefix="/admin/escrow")


@bp_escrow.get("")
@require_admin
def list_escrows():
    page, limit = page_args(default_limit=20)
    try:
        status = parse_enum(EscrowStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    pagination = escrow_service.list_escrows(status, page, limit)
    body = paginated(pagination, lambda e: e.to_dict(), page, limit)
    body["analytics"] = escrow_service.analytics()
    return ok(body)


@bp_escrow.post("/auto-release")
@require_admin
def auto_release():
    results = escrow_service.process_auto_release()
    successful = sum(1 for r in results if r["success"])
    return ok({
        "message": "Auto-release processing completed",
        "total_processed": len(results),
        "successful_releases": successful,
        "failed_releases": len(results) - successful,
        "details": results,
    })


@bp_escrow.post("/<int:order_id>/release")
@require_admin
def release(order_id: int):
    escrow = escrow_service.release_for_order(order_id, g.user, json_body().get("reason"))
    return ok({"message": "Escrow released to vendor", "escrow": escrow.to_dict()})


@bp_escrow.post("/<int:order_id>/refund")
@require_admin
def refund(order_id: int):
    data = json_body()
    amount = None
    if data.get("amount") not in (None, ""):
        amount = coerce_amount(data["amount"])
        if amount is None:
            return err("invalid amount", 400)
    reason = (data.get("reason") or "").strip() or "Refunded by admin"
    escrow = escrow_service.refund_for_order(order_id, g.user, reason, amount)
    return ok({"message": "Escrow refunded to buyer", "escrow": escrow.to_dict()})
