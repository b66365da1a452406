"""Escrow state machine.

An escrow is created together with its order (one per order), funded when
the buyer's payment is verified, moved to ``pending_confirmation`` when the
vendor marks the order delivered, and finally either released to the vendor
(buyer approval, auto-release, admin override or dispute resolution) or
refunded to the buyer. Released and refunded escrows are terminal.

Helpers prefixed with ``apply_`` mutate the session without committing so
that order and dispute operations can combine them into one transaction.
"""
from datetime import datetime, timedelta
from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from farmtrust.db import db
from farmtrust.models import (
    Dispute,
    DisputeStatus,
    Escrow,
    EscrowStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    ReleaseReason,
    Role,
    User,
)
from farmtrust.services import notification_service
from farmtrust.services.errors import Forbidden, InvalidState, NotFound, ValidationError
from farmtrust.services.timeline import add_event
from farmtrust.utils.responses import commit_or_rollback

RELEASABLE = {EscrowStatus.FUNDED, EscrowStatus.PENDING_CONFIRMATION}
REFUNDABLE = {EscrowStatus.FUNDED, EscrowStatus.PENDING_CONFIRMATION}


def _fee(amount: float) -> float:
    pct = current_app.config["ESCROW_FEE_PCT"]
    return round(amount * pct / 100.0, 2)


def _notify_parties(escrow: Escrow, buyer_msg: tuple[str, str], vendor_msg: tuple[str, str],
                    type_: str = "payment", priority: str = "medium"):
    notification_service.notify(escrow.buyer_id, buyer_msg[0], buyer_msg[1], type_,
                                priority, ("order", escrow.order_id))
    notification_service.notify(escrow.vendor_id, vendor_msg[0], vendor_msg[1], type_,
                                priority, ("order", escrow.order_id))


# ---------- Lookups ----------
def get_by_order(order_id: int) -> Escrow:
    escrow = Escrow.query.filter_by(order_id=order_id).first()
    if not escrow:
        raise NotFound("Escrow not found for this order")
    return escrow


def status_for(order_id: int, user: User) -> dict:
    escrow = get_by_order(order_id)
    if user.role != Role.ADMIN and user.id not in (escrow.buyer_id, escrow.vendor_id):
        raise Forbidden("Unauthorized to view this escrow")
    return escrow.to_dict()


def list_escrows(status: EscrowStatus | None, page: int, limit: int):
    q = Escrow.query
    if status is not None:
        q = q.filter(Escrow.status == status)
    return q.order_by(Escrow.created_at.desc(), Escrow.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)


def analytics() -> dict:
    rows = (
        db.session.query(Escrow.status, func.count(Escrow.id), func.coalesce(func.sum(Escrow.amount), 0))
        .group_by(Escrow.status)
        .all()
    )
    by_status = {s.value: {"count": 0, "amount": 0.0} for s in EscrowStatus}
    for status, count, amount in rows:
        by_status[status.value] = {"count": count, "amount": round(float(amount), 2)}
    held = (EscrowStatus.FUNDED, EscrowStatus.PENDING_CONFIRMATION, EscrowStatus.DISPUTED)
    return {
        "total": sum(v["count"] for v in by_status.values()),
        "amount_held": round(sum(by_status[s.value]["amount"] for s in held), 2),
        "by_status": by_status,
    }


# ---------- Transitions (no commit) ----------
def create_for_order(order: Order) -> Escrow:
    escrow = Escrow(
        order=order,
        buyer_id=order.buyer_id,
        vendor_id=order.vendor_id,
        amount=order.total_amount,
        currency=order.currency,
        status=EscrowStatus.PENDING,
    )
    db.session.add(escrow)
    return escrow


def apply_fund(escrow: Escrow, reference: str | None, actor: User | None = None) -> Escrow:
    if escrow.status != EscrowStatus.PENDING:
        raise InvalidState("Escrow is not in pending status")
    now = datetime.utcnow()
    escrow.status = EscrowStatus.FUNDED
    escrow.payment_reference = reference
    escrow.funded_at = now

    order = escrow.order
    order.status = OrderStatus.CONFIRMED
    order.payment_status = PaymentStatus.PAID
    add_event(order, "escrow_funded", actor, "Payment verified, funds held in escrow",
              reference=reference, amount=escrow.amount)
    _notify_parties(
        escrow,
        ("Payment Confirmed", f"Payment for order {order.order_number} confirmed and held in escrow."),
        ("Payment Received", f"Payment for order {order.order_number} is in escrow. Please process the order."),
    )
    current_app.logger.info("Escrow %s funded for order %s", escrow.id, order.id)
    return escrow


def apply_mark_delivered(escrow: Escrow, actor: User | None = None) -> Escrow:
    if escrow.status != EscrowStatus.FUNDED:
        raise InvalidState("Escrow is not funded")
    now = datetime.utcnow()
    days = current_app.config["AUTO_RELEASE_DAYS"]
    escrow.status = EscrowStatus.PENDING_CONFIRMATION
    escrow.delivered_at = now
    escrow.auto_release_date = now + timedelta(days=days)
    notification_service.notify(
        escrow.buyer_id,
        "Order Delivered",
        f"Please confirm delivery within {days} days, otherwise payment is released to the vendor automatically.",
        "order",
        related=("order", escrow.order_id),
    )
    return escrow


def apply_release(escrow: Escrow, reason: ReleaseReason, actor: User | None = None,
                  notes: str | None = None) -> Escrow:
    allowed = set(RELEASABLE)
    if reason == ReleaseReason.DISPUTE_RESOLUTION:
        allowed = {EscrowStatus.DISPUTED}
    elif escrow.status == EscrowStatus.DISPUTED:
        raise InvalidState("Escrow is under dispute; resolve the dispute instead")
    if escrow.status not in allowed:
        raise InvalidState(f"Escrow cannot be released from status {escrow.status.value}")

    now = datetime.utcnow()
    fee = _fee(escrow.amount)
    escrow.status = EscrowStatus.RELEASED
    escrow.release_reason = reason
    escrow.released_at = now
    escrow.transaction_fee = fee
    escrow.vendor_payout_amount = round(escrow.amount - fee, 2)
    escrow.status_before_dispute = None
    if reason == ReleaseReason.BUYER_APPROVAL:
        escrow.buyer_confirmed_at = now
    if notes:
        escrow.admin_notes = notes

    order = escrow.order
    order.status = OrderStatus.COMPLETED
    order.completed_at = now
    add_event(order, "escrow_released", actor, notes or "Payment released to vendor",
              reason=reason.value, payout=escrow.vendor_payout_amount, fee=fee)
    _notify_parties(
        escrow,
        ("Order Completed", f"Order {order.order_number} completed. Payment released to the vendor."),
        ("Payment Released", f"{escrow.vendor_payout_amount:,.2f} {escrow.currency} released for order {order.order_number}."),
    )
    current_app.logger.info("Escrow %s released (%s)", escrow.id, reason.value)
    return escrow


def apply_refund(escrow: Escrow, reason: str, actor: User | None = None, amount: float | None = None,
                 order_status: OrderStatus = OrderStatus.REFUNDED, via_dispute: bool = False) -> Escrow:
    allowed = {EscrowStatus.DISPUTED} if via_dispute else REFUNDABLE
    if escrow.status == EscrowStatus.DISPUTED and not via_dispute:
        raise InvalidState("Escrow is under dispute; resolve the dispute instead")
    if escrow.status not in allowed:
        raise InvalidState(f"Escrow cannot be refunded from status {escrow.status.value}")
    if not reason:
        raise ValidationError("Refund reason is required")

    refund_amount = escrow.amount if amount is None else round(float(amount), 2)
    if refund_amount <= 0:
        raise ValidationError("Refund amount must be greater than 0")
    if refund_amount > escrow.amount:
        raise ValidationError("Refund amount cannot exceed escrow amount")

    now = datetime.utcnow()
    remainder = round(escrow.amount - refund_amount, 2)
    fee = _fee(remainder) if remainder > 0 else 0.0
    escrow.status = EscrowStatus.REFUNDED
    escrow.refund_reason = reason
    escrow.refunded_amount = refund_amount
    escrow.refunded_at = now
    escrow.transaction_fee = fee
    escrow.vendor_payout_amount = round(remainder - fee, 2)
    escrow.status_before_dispute = None

    order = escrow.order
    order.status = order_status
    order.payment_status = PaymentStatus.REFUNDED
    if order_status == OrderStatus.CANCELLED:
        order.cancelled_at = now
    add_event(order, "escrow_refunded", actor, reason,
              refunded_amount=refund_amount, vendor_payout=escrow.vendor_payout_amount)
    _notify_parties(
        escrow,
        ("Order Refunded", f"{refund_amount:,.2f} {escrow.currency} refunded for order {order.order_number}."),
        ("Order Refunded", f"Order {order.order_number} was refunded to the buyer."),
    )
    current_app.logger.info("Escrow %s refunded %.2f", escrow.id, refund_amount)
    return escrow


def apply_cancel(escrow: Escrow, reason: str | None, actor: User | None = None) -> Escrow:
    """Cancel the order's escrow: pending escrows are voided, funded ones refunded."""
    if escrow.status == EscrowStatus.FUNDED:
        return apply_refund(escrow, reason or "Order cancelled", actor,
                            order_status=OrderStatus.CANCELLED)
    if escrow.status != EscrowStatus.PENDING:
        raise InvalidState(f"Escrow cannot be cancelled from status {escrow.status.value}")
    now = datetime.utcnow()
    escrow.status = EscrowStatus.CANCELLED
    order = escrow.order
    order.status = OrderStatus.CANCELLED
    order.payment_status = PaymentStatus.CANCELLED
    order.cancelled_at = now
    add_event(order, "escrow_cancelled", actor, reason or "Order cancelled")
    _notify_parties(
        escrow,
        ("Order Cancelled", f"Order {order.order_number} was cancelled."),
        ("Order Cancelled", f"Order {order.order_number} was cancelled."),
        type_="order",
    )
    return escrow


def apply_dispute_hold(escrow: Escrow) -> Escrow:
    if escrow.status not in RELEASABLE:
        raise InvalidState("Only funded escrows can be disputed")
    escrow.status_before_dispute = escrow.status
    escrow.status = EscrowStatus.DISPUTED
    return escrow


def apply_dispute_restore(escrow: Escrow) -> Escrow:
    if escrow.status != EscrowStatus.DISPUTED:
        return escrow
    escrow.status = escrow.status_before_dispute or EscrowStatus.FUNDED
    escrow.status_before_dispute = None
    if escrow.status == EscrowStatus.PENDING_CONFIRMATION:
        # buyer gets a full confirmation window again after the hold
        now = datetime.utcnow()
        if not escrow.auto_release_date or escrow.auto_release_date < now:
            escrow.auto_release_date = now + timedelta(days=current_app.config["AUTO_RELEASE_DAYS"])
    return escrow


# ---------- Authorized operations (commit) ----------
def release_for_order(order_id: int, user: User, reason_text: str | None = None) -> Escrow:
    escrow = get_by_order(order_id)
    if user.role == Role.ADMIN:
        reason = ReleaseReason.ADMIN_RELEASE
        notes = reason_text or "Manually released by admin"
    elif user.id == escrow.buyer_id:
        reason = ReleaseReason.BUYER_APPROVAL
        notes = reason_text
    else:
        raise Forbidden("Unauthorized to release escrow for this order")
    apply_release(escrow, reason, user, notes)
    commit_or_rollback()
    return escrow


def refund_for_order(order_id: int, user: User, reason: str, amount: float | None = None) -> Escrow:
    escrow = get_by_order(order_id)
    if user.role != Role.ADMIN and user.id != escrow.vendor_id:
        raise Forbidden("Unauthorized to refund escrow for this order")
    apply_refund(escrow, reason, user, amount)
    if user.role == Role.ADMIN:
        escrow.admin_notes = reason
    commit_or_rollback()
    return escrow


def process_auto_release(now: datetime | None = None) -> list[dict]:
    """Release every escrow whose confirmation window has lapsed.

    Each escrow is released inside its own savepoint; failures are reported
    per item and do not roll back the others.
    """
    now = now or datetime.utcnow()
    due = (
        Escrow.query
        .filter(Escrow.status == EscrowStatus.PENDING_CONFIRMATION,
                Escrow.auto_release_date <= now)
        .order_by(Escrow.auto_release_date.asc(), Escrow.id.asc())
        .all()
    )
    results = []
    for escrow in due:
        item = {"escrow_id": escrow.id, "order_id": escrow.order_id}
        try:
            with db.session.begin_nested():
                order = escrow.order
                if order is None:
                    raise NotFound("Order not found")
                if order.status != OrderStatus.DELIVERED:
                    raise InvalidState(f"Order is {order.status.value}, expected delivered")
                active = Dispute.query.filter(
                    Dispute.order_id == order.id,
                    Dispute.status != DisputeStatus.CLOSED,
                ).first()
                if active:
                    raise InvalidState("Order has an active dispute")
                apply_release(escrow, ReleaseReason.AUTO_RELEASE, None,
                              "Automatically released after confirmation period")
            item.update(success=True, message="Auto-released successfully")
        except (InvalidState, NotFound, SQLAlchemyError) as e:
            current_app.logger.warning("Auto-release failed for escrow %s: %s", escrow.id, e)
            item.update(success=False, message=str(e))
        results.append(item)
    commit_or_rollback()
    current_app.logger.info(
        "Auto-release processed %d escrows (%d released)",
        len(results), sum(1 for r in results if r["success"]),
    )
    return results
