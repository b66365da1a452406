from flask import Blueprint, g, request
from farmtrust.auth_mw import require_admin
from farmtrust.models import OrderStatus, TransactionStatus
from farmtrust.services import order_service, payment_service
from farmtrust.utils.parsing import coerce_int, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp_orders = Blueprint("admin_orders", __name__, url_prefix="/admin/orders")
bp_payments = Blueprint("admin_payments", __name__, url_prefix="/admin/payments")


@bp_orders.get("")
@require_admin
def list_orders():
    page, limit = page_args(default_limit=20)
    try:
        status = parse_enum(OrderStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    q = (request.args.get("q") or "").strip() or None
    pagination = order_service.list_orders_for(g.user, page, limit, status=status, q=q)
    return ok(paginated(pagination, lambda o: o.to_dict(), page, limit))


@bp_payments.get("")
@require_admin
def list_payments():
    page, limit = page_args(default_limit=20)
    try:
        status = parse_enum(TransactionStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    order_id = coerce_int(request.args.get("order_id"))
    pagination = payment_service.history(g.user, page, limit, status=status, order_id=order_id)
    return ok(paginated(pagination, lambda t: t.to_dict(), page, limit))
