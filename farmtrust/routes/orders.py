from flask import Blueprint, g, request
from farmtrust.auth_mw import require_auth
from farmtrust.models import OrderStatus, Role
from farmtrust.services import escrow_service, order_service
from farmtrust.utils.parsing import json_body, page_args, parse_enum
from farmtrust.utils.responses import err, ok, paginated

bp = Blueprint("orders", __name__, url_prefix="/orders")


# ---------- Create ----------
@bp.post("")
@require_auth(Role.BUYER)
def create_order():
    order = order_service.create_order(g.user, json_body())
    return ok({"message": "Order created", "order": order.to_dict()}, 201)


# ---------- Get / List ----------
@bp.get("")
@require_auth()
def list_orders():
    page, limit = page_args()
    try:
        status = parse_enum(OrderStatus, request.args.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    pagination = order_service.list_orders_for(g.user, page, limit, status=status)
    return ok(paginated(pagination, lambda o: o.to_dict(), page, limit))


@bp.get("/<int:order_id>")
@require_auth()
def get_order(order_id: int):
    order = order_service.get_order_for(order_id, g.user)
    return ok(order.to_dict(with_timeline=True))


@bp.get("/<int:order_id>/escrow-status")
@require_auth()
def escrow_status(order_id: int):
    return ok(escrow_service.status_for(order_id, g.user))


# ---------- Lifecycle ----------
@bp.patch("/<int:order_id>/status")
@require_auth(Role.VENDOR, Role.ADMIN)
def update_status(order_id: int):
    data = json_body()
    try:
        status = parse_enum(OrderStatus, data.get("status"))
    except ValueError:
        return err("invalid_status", 400)
    if status is None:
        return err("status is required", 400)
    order = order_service.update_status(order_id, g.user, status, data.get("note"),
                                        data.get("tracking_number"))
    return ok({"message": "Order status updated", "order": order.to_dict()})


@bp.post("/<int:order_id>/cancel")
@require_auth(Role.BUYER)
def cancel_order(order_id: int):
    order = order_service.cancel_order(order_id, g.user, json_body().get("reason"))
    return ok({"message": "Order cancelled", "order": order.to_dict()})


@bp.post("/<int:order_id>/confirm-delivery")
@require_auth(Role.BUYER)
def confirm_delivery(order_id: int):
    order = order_service.confirm_delivery(order_id, g.user)
    return ok({
        "message": "Delivery confirmed, payment released to vendor",
        "order": order.to_dict(),
        "escrow": order.escrow.to_dict(),
    })
