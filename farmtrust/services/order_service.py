import random
import string
from datetime import datetime
from flask import current_app
from sqlalchemy import or_
from farmtrust.db import db
from farmtrust.models import (
    EscrowStatus,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    ReleaseReason,
    Role,
    User,
)
from farmtrust.services import escrow_service, notification_service
from farmtrust.services.errors import Forbidden, InvalidState, NotFound, ValidationError
from farmtrust.services.timeline import add_event
from farmtrust.utils.parsing import coerce_amount, coerce_int
from farmtrust.utils.responses import commit_or_rollback

# Manual transitions (vendor/admin). Payment, delivery confirmation, release,
# refund and disputes move orders through the remaining states.
TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CANCELLED},
    OrderStatus.PENDING_PAYMENT: {OrderStatus.CANCELLED},
    OrderStatus.PAYMENT_FAILED: {OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
    OrderStatus.DISPUTED: set(),
}

BUYER_CANCELLABLE = {OrderStatus.PENDING, OrderStatus.PENDING_PAYMENT, OrderStatus.CONFIRMED}
ADDRESS_FIELDS = ("street", "city", "district", "phone")
CHECKOUT_METHODS = {m.value for m in PaymentMethod}


def generate_order_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
    return f"FT-{int(datetime.utcnow().timestamp() * 1000)}-{suffix}"


def _parse_items(raw_items) -> tuple[list[OrderItem], int, float]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one item")
    items, vendor_ids, total = [], set(), 0.0
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid order item")
        product_id = raw.get("product_id")
        name = (raw.get("product_name") or "").strip()
        quantity = coerce_int(raw.get("quantity"))
        price = coerce_amount(raw.get("unit_price"))
        vendor_id = coerce_int(raw.get("vendor_id"))
        if not product_id or not name or quantity is None or price is None or vendor_id is None:
            raise ValidationError("Each order item must have product_id, product_name, vendor_id, quantity and unit_price")
        if quantity < 1 or price <= 0:
            raise ValidationError("Quantity and price must be positive numbers")
        line_total = round(price * quantity, 2)
        total += line_total
        vendor_ids.add(vendor_id)
        items.append(OrderItem(
            product_id=str(product_id),
            product_name=name,
            quantity=quantity,
            unit_price=price,
            total_price=line_total,
        ))
    if len(vendor_ids) != 1:
        raise ValidationError("All items in an order must come from a single vendor")
    return items, vendor_ids.pop(), round(total, 2)


def create_order(buyer: User, data: dict) -> Order:
    if buyer.role != Role.BUYER:
        raise Forbidden("Only buyers can place orders")
    items, vendor_id, total = _parse_items(data.get("items"))

    vendor = db.session.get(User, vendor_id)
    if not vendor or vendor.role != Role.VENDOR:
        raise ValidationError("Vendor not found")
    if vendor.locked:
        raise ValidationError("Vendor is not accepting orders")

    address = data.get("shipping_address") or {}
    if not isinstance(address, dict):
        raise ValidationError("Delivery information is required")
    missing = [f for f in ADDRESS_FIELDS if not str(address.get(f) or "").strip()]
    if missing:
        raise ValidationError(f"Missing delivery fields: {', '.join(missing)}")

    method = (data.get("payment_method") or "").strip().lower()
    if method not in CHECKOUT_METHODS:
        raise ValidationError("Invalid payment method")

    order = Order(
        order_number=generate_order_number(),
        buyer_id=buyer.id,
        vendor_id=vendor.id,
        status=OrderStatus.PENDING,
        payment_method=PaymentMethod(method),
        total_amount=total,
        currency=current_app.config["CURRENCY"],
        shipping_address={f: str(address.get(f)).strip() for f in ADDRESS_FIELDS},
        notes=data.get("notes"),
        items=items,
    )
    db.session.add(order)
    escrow_service.create_for_order(order)
    add_event(order, "created", buyer, "Order placed", total=total)
    notification_service.notify(vendor.id, "New Order Received",
                                f"New order {order.order_number} received - payment pending",
                                "order")
    commit_or_rollback()
    current_app.logger.info("Order %s created by buyer %s", order.order_number, buyer.id)
    return order


def _can_view(order: Order, user: User) -> bool:
    return user.role == Role.ADMIN or user.id in (order.buyer_id, order.vendor_id)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_for(order_id: int, user: User) -> Order:
    order = get_order(order_id)
    if not _can_view(order, user):
        raise Forbidden("Unauthorized to view this order")
    return order


def list_orders_for(user: User, page: int, limit: int, status: OrderStatus | None = None,
                    q: str | None = None):
    query = Order.query
    if user.role == Role.BUYER:
        query = query.filter(Order.buyer_id == user.id)
    elif user.role == Role.VENDOR:
        query = query.filter(Order.vendor_id == user.id)
    if status is not None:
        query = query.filter(Order.status == status)
    if q:
        query = query.filter(or_(Order.order_number.ilike(f"%{q}%"), Order.notes.ilike(f"%{q}%")))
    return query.order_by(Order.created_at.desc(), Order.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)


def update_status(order_id: int, user: User, new_status: OrderStatus, note: str | None = None,
                  tracking_number: str | None = None) -> Order:
    order = get_order(order_id)
    if user.role == Role.VENDOR:
        if order.vendor_id != user.id:
            raise Forbidden("You can only update your own orders")
    elif user.role != Role.ADMIN:
        raise Forbidden("Insufficient permissions")

    old = order.status
    if new_status not in TRANSITIONS.get(old, set()):
        raise InvalidState(f"Invalid status transition from {old.value} to {new_status.value}")

    escrow = order.escrow
    if new_status == OrderStatus.CANCELLED:
        escrow_service.apply_cancel(escrow, note or f"Cancelled by {user.role.value}", user)
        order.cancellation_reason = note
    elif new_status == OrderStatus.DELIVERED:
        escrow_service.apply_mark_delivered(escrow, user)
        order.status = OrderStatus.DELIVERED
        order.delivered_at = escrow.delivered_at
    else:
        order.status = new_status
    if tracking_number:
        order.tracking_number = tracking_number

    add_event(order, "status_changed", user, note or f"Status changed to {new_status.value}",
              previous=old.value, status=new_status.value)
    if new_status not in (OrderStatus.CANCELLED, OrderStatus.DELIVERED):
        notification_service.notify(order.buyer_id, "Order Update",
                                    f"Order {order.order_number} is now {new_status.value}.",
                                    "order", related=("order", order.id))
    commit_or_rollback()
    current_app.logger.info("Order %s: %s -> %s by %s", order.id, old.value, new_status.value, user.id)
    return order


def cancel_order(order_id: int, buyer: User, reason: str | None = None) -> Order:
    order = get_order(order_id)
    if order.buyer_id != buyer.id:
        raise Forbidden("Unauthorized to cancel this order")
    if order.status not in BUYER_CANCELLABLE:
        raise InvalidState("Order cannot be cancelled at this stage")
    escrow_service.apply_cancel(order.escrow, reason or "Cancelled by buyer", buyer)
    order.cancellation_reason = reason
    commit_or_rollback()
    return order


def confirm_delivery(order_id: int, buyer: User) -> Order:
    order = get_order(order_id)
    escrow = order.escrow
    if order.buyer_id != buyer.id:
        raise Forbidden("Unauthorized to confirm this delivery")
    if escrow is None or escrow.status != EscrowStatus.PENDING_CONFIRMATION:
        raise InvalidState("Order is not in confirmation period")
    escrow_service.apply_release(escrow, ReleaseReason.BUYER_APPROVAL, buyer,
                                 "Buyer confirmed delivery")
    commit_or_rollback()
    return order
