from flask import Blueprint, current_app, g, request
from farmtrust.auth_mw import require_auth
from farmtrust.models import Role, TransactionStatus
from farmtrust.services import escrow_service, payment_service
from farmtrust.utils.parsing import coerce_amount, coerce_int, json_body, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp = Blueprint("payments", __name__, url_prefix="/payments")


# ---------- Mobile money ----------
@bp.post("/submit-transaction")
@require_auth(Role.BUYER)
def submit_transaction():
    txn = payment_service.submit_transaction(g.user, json_body())
    return ok({
        "message": "Transaction submitted for verification",
        "transaction_id": txn.transaction_id,
        "status": txn.status.value,
        "merchant_code": txn.merchant_code,
        "order_id": txn.order_id,
    }, 201)


@bp.post("/verify")
@require_auth()
def verify_payment():
    data = json_body()
    if not data.get("transaction_id"):
        return err("transaction_id is required", 400)
    if not isinstance(data.get("approve", True), bool):
        return err("approve must be a boolean", 400)
    result = payment_service.verify_payment(
        data["transaction_id"],
        g.user,
        admin_notes=data.get("admin_notes"),
        approve=data.get("approve", True),
    )
    return ok(result)


@bp.get("/history")
@require_auth()
def history():
    page, limit = page_args()
    try:
        status = parse_enum(TransactionStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    order_id = coerce_int(request.args.get("order_id"))
    pagination = payment_service.history(g.user, page, limit, status=status, order_id=order_id)
    return ok(paginated(pagination, lambda t: t.to_dict(), page, limit))


# ---------- Escrow settlement ----------
@bp.post("/release/<int:order_id>")
@require_auth(Role.BUYER, Role.ADMIN)
def release(order_id: int):
    escrow = escrow_service.release_for_order(order_id, g.user, json_body().get("release_reason"))
    return ok({"message": "Payment released to vendor", "escrow": escrow.to_dict()})


@bp.post("/refund/<int:order_id>")
@require_auth(Role.VENDOR, Role.ADMIN)
def refund(order_id: int):
    data = json_body()
    reason = (data.get("refund_reason") or "").strip()
    if not reason:
        return err("refund_reason is required", 400)
    amount = None
    if data.get("refund_amount") not in (None, ""):
        amount = coerce_amount(data["refund_amount"])
        if amount is None:
            return err("invalid refund_amount", 400)
    escrow = escrow_service.refund_for_order(order_id, g.user, reason, amount)
    return ok({"message": "Payment refunded to buyer", "escrow": escrow.to_dict()})


# ---------- Monime ----------
@bp.post("/monime/webhook")
def monime_webhook():
    raw = request.get_data()
    signature = request.headers.get("X-Monime-Signature", "")
    current_app.logger.info("Monime webhook received (%d bytes)", len(raw))
    return ok(payment_service.handle_webhook(raw, signature))
