"""Dispute workflow.

open -> under-review -> resolved-buyer | resolved-vendor -> closed.
Opening a dispute holds the order's escrow; resolution settles it and
closing an unresolved dispute puts escrow and order back where they were.
"""
from datetime import datetime
from urllib.parse import urlparse
from flask import current_app
from sqlalchemy import func, or_
from farmtrust.db import db
from farmtrust.models import (
    Dispute,
    DisputePriority,
    DisputeReason,
    DisputeStatus,
    EscrowStatus,
    Order,
    OrderStatus,
    ReleaseReason,
    Role,
    User,
)
from farmtrust.services import escrow_service, notification_service
from farmtrust.services.errors import Forbidden, InvalidState, NotFound, ValidationError
from farmtrust.services.timeline import add_event
from farmtrust.utils.parsing import coerce_amount, coerce_int
from farmtrust.utils.responses import commit_or_rollback

ACTIVE = {DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW}
DISPUTABLE_ESCROW = {EscrowStatus.FUNDED, EscrowStatus.PENDING_CONFIRMATION}
MEDIUM_REASONS = {DisputeReason.DAMAGED, DisputeReason.MISSING_ITEM, DisputeReason.WRONG_ITEM}


def determine_priority(order_total: float, reason: DisputeReason,
                       requested_amount: float | None = None) -> DisputePriority:
    cfg = current_app.config
    if order_total > cfg["DISPUTE_HIGH_AMOUNT"]:
        return DisputePriority.HIGH
    if requested_amount and requested_amount > cfg["DISPUTE_HIGH_REQUESTED_AMOUNT"]:
        return DisputePriority.HIGH
    if reason in MEDIUM_REASONS:
        return DisputePriority.MEDIUM
    return DisputePriority.LOW


def _is_url(value) -> bool:
    if not isinstance(value, str):
        return False
    parts = urlparse(value.strip())
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def _evidence(raw) -> list[str]:
    if raw in (None, ""):
        return []
    if not isinstance(raw, list) or not all(_is_url(x) for x in raw):
        raise ValidationError("Evidence must be a list of http(s) URLs")
    return [x.strip() for x in raw]


def _get(dispute_id: int) -> Dispute:
    dispute = db.session.get(Dispute, dispute_id)
    if not dispute:
        raise NotFound("Dispute not found")
    return dispute


def open_dispute(user: User, data: dict) -> Dispute:
    order_id = coerce_int(data.get("order_id"))
    order = db.session.get(Order, order_id) if order_id is not None else None
    if not order:
        raise NotFound("Order not found")
    if user.id not in (order.buyer_id, order.vendor_id):
        raise Forbidden("Only the buyer or vendor of this order can open a dispute")

    try:
        reason = DisputeReason(str(data.get("reason") or "").strip().lower())
    except ValueError:
        raise ValidationError("Invalid dispute reason")
    description = (data.get("description") or "").strip()
    if not description:
        raise ValidationError("Description is required")
    evidence = _evidence(data.get("evidence"))
    requested = None
    if data.get("requested_amount") not in (None, ""):
        requested = coerce_amount(data["requested_amount"])
        if requested is None or requested <= 0 or requested > order.total_amount:
            raise ValidationError("Requested amount must be between 0 and the order total")

    escrow = order.escrow
    if escrow is None or escrow.status not in DISPUTABLE_ESCROW:
        raise InvalidState("Disputes can only be opened on paid orders awaiting completion")
    active = Dispute.query.filter(Dispute.order_id == order.id,
                                  Dispute.status != DisputeStatus.CLOSED).first()
    if active:
        raise InvalidState("An active dispute already exists for this order")

    respondent_id = order.vendor_id if user.id == order.buyer_id else order.buyer_id
    dispute = Dispute(
        order_id=order.id,
        buyer_id=order.buyer_id,
        vendor_id=order.vendor_id,
        complainant_id=user.id,
        respondent_id=respondent_id,
        reason=reason,
        description=description,
        evidence=evidence,
        requested_amount=requested,
        status=DisputeStatus.OPEN,
        priority=determine_priority(order.total_amount, reason, requested),
        previous_order_status=order.status,
    )
    db.session.add(dispute)
    escrow_service.apply_dispute_hold(escrow)
    order.status = OrderStatus.DISPUTED
    add_event(order, "dispute_opened", user, description, reason=reason.value)
    notification_service.notify(respondent_id, "Dispute Opened",
                                f"A dispute was opened on order {order.order_number}. Please respond.",
                                "dispute", "high", ("order", order.id))
    commit_or_rollback()
    current_app.logger.info("Dispute %s opened on order %s (%s)", dispute.id, order.id, dispute.priority.value)
    return dispute


def respond(dispute_id: int, user: User, data: dict) -> Dispute:
    dispute = _get(dispute_id)
    if user.id != dispute.respondent_id:
        raise Forbidden("Only the respondent can respond to this dispute")
    if dispute.status != DisputeStatus.OPEN:
        raise InvalidState("Dispute is no longer open for responses")
    response = (data.get("response") or "").strip()
    if not response:
        raise ValidationError("Response is required")

    dispute.response = response
    dispute.response_evidence = _evidence(data.get("evidence"))
    dispute.responded_at = datetime.utcnow()
    dispute.status = DisputeStatus.UNDER_REVIEW
    add_event(dispute.order, "dispute_response", user, response)
    notification_service.notify(dispute.complainant_id, "Dispute Response",
                                f"The other party responded to dispute #{dispute.id}.",
                                "dispute", related=("dispute", dispute.id))
    commit_or_rollback()
    return dispute


def get_for_user(dispute_id: int, user: User) -> Dispute:
    dispute = _get(dispute_id)
    if user.role != Role.ADMIN and user.id not in (dispute.buyer_id, dispute.vendor_id):
        raise Forbidden("Unauthorized to view this dispute")
    return dispute


def list_for_user(user: User, page: int, limit: int, status: DisputeStatus | None = None):
    q = Dispute.query.filter(or_(Dispute.buyer_id == user.id, Dispute.vendor_id == user.id))
    if status is not None:
        q = q.filter(Dispute.status == status)
    return q.order_by(Dispute.created_at.desc(), Dispute.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)


def list_all(page: int, limit: int, status: DisputeStatus | None = None,
             priority: DisputePriority | None = None):
    q = Dispute.query
    if status is not None:
        q = q.filter(Dispute.status == status)
    if priority is not None:
        q = q.filter(Dispute.priority == priority)
    return q.order_by(Dispute.created_at.desc(), Dispute.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)


# ---------- Admin ----------
def review(dispute_id: int, admin: User, data: dict) -> Dispute:
    dispute = _get(dispute_id)
    if dispute.status not in ACTIVE:
        raise InvalidState("Only active disputes can be reviewed")
    status = data.get("status")
    if status not in (None, "", DisputeStatus.UNDER_REVIEW.value):
        raise ValidationError("Status can only be set to under-review; use resolve or close")
    if status:
        dispute.status = DisputeStatus.UNDER_REVIEW
    if data.get("admin_notes") is not None:
        dispute.admin_notes = data["admin_notes"]
    dispute.admin_id = admin.id
    commit_or_rollback()
    return dispute


def resolve(dispute_id: int, admin: User, data: dict) -> Dispute:
    dispute = _get(dispute_id)
    if dispute.status not in ACTIVE:
        raise InvalidState("Dispute is not awaiting resolution")
    outcome = (data.get("outcome") or "").strip().lower()
    if outcome not in ("buyer", "vendor"):
        raise ValidationError("Outcome must be buyer or vendor")
    resolution = (data.get("resolution") or "").strip()
    if not resolution:
        raise ValidationError("Resolution is required")

    escrow = dispute.order.escrow
    if outcome == "buyer":
        amount = None
        if data.get("refund_amount") not in (None, ""):
            amount = coerce_amount(data["refund_amount"])
            if amount is None:
                raise ValidationError("Invalid refund amount")
        escrow_service.apply_refund(escrow, resolution, admin, amount, via_dispute=True)
        dispute.refund_amount = escrow.refunded_amount
        dispute.status = DisputeStatus.RESOLVED_BUYER
    else:
        escrow_service.apply_release(escrow, ReleaseReason.DISPUTE_RESOLUTION, admin, resolution)
        dispute.refund_amount = 0
        dispute.status = DisputeStatus.RESOLVED_VENDOR
    escrow.admin_notes = resolution

    dispute.resolution = resolution
    dispute.admin_id = admin.id
    dispute.resolved_at = datetime.utcnow()
    for user_id in (dispute.buyer_id, dispute.vendor_id):
        notification_service.notify(user_id, "Dispute Resolved",
                                    f"Dispute #{dispute.id} was resolved in favour of the {outcome}.",
                                    "dispute", related=("dispute", dispute.id))
    commit_or_rollback()
    current_app.logger.info("Dispute %s resolved for %s by admin %s", dispute.id, outcome, admin.id)
    return dispute


def escalate(dispute_id: int, admin: User, reason: str | None) -> Dispute:
    dispute = _get(dispute_id)
    if dispute.status not in ACTIVE:
        raise InvalidState("Only active disputes can be escalated")
    if not reason:
        raise ValidationError("Escalation reason is required")
    if dispute.priority in (DisputePriority.HIGH, DisputePriority.URGENT):
        dispute.priority = DisputePriority.URGENT
    else:
        dispute.priority = DisputePriority.HIGH
    dispute.status = DisputeStatus.UNDER_REVIEW
    dispute.escalated_at = datetime.utcnow()
    dispute.escalation_reason = reason
    dispute.admin_id = admin.id
    commit_or_rollback()
    current_app.logger.warning("Dispute %s escalated to %s", dispute.id, dispute.priority.value)
    return dispute


def close(dispute_id: int, admin: User, reason: str | None) -> Dispute:
    dispute = _get(dispute_id)
    if dispute.status == DisputeStatus.CLOSED:
        raise InvalidState("Dispute is already closed")
    if not reason:
        raise ValidationError("Closure reason is required")

    if dispute.status in ACTIVE:
        order = dispute.order
        escrow_service.apply_dispute_restore(order.escrow)
        order.status = dispute.previous_order_status or OrderStatus.CONFIRMED
        add_event(order, "dispute_closed", admin, reason, restored_status=order.status.value)
        for user_id in (dispute.buyer_id, dispute.vendor_id):
            notification_service.notify(user_id, "Dispute Closed",
                                        f"Dispute #{dispute.id} was closed without a resolution.",
                                        "dispute", related=("dispute", dispute.id))
    dispute.status = DisputeStatus.CLOSED
    dispute.closure_reason = reason
    dispute.closed_at = datetime.utcnow()
    dispute.admin_id = admin.id
    commit_or_rollback()
    return dispute


def stats() -> dict:
    by_status = {s.value: 0 for s in DisputeStatus}
    for status, count in db.session.query(Dispute.status, func.count(Dispute.id)).group_by(Dispute.status):
        by_status[status.value] = count
    by_priority = {p.value: 0 for p in DisputePriority}
    active_by_priority = (
        db.session.query(Dispute.priority, func.count(Dispute.id))
        .filter(Dispute.status.in_(ACTIVE))
        .group_by(Dispute.priority)
    )
    for priority, count in active_by_priority:
        by_priority[priority.value] = count

    resolved = Dispute.query.filter(Dispute.resolved_at.isnot(None)).all()
    hours = [(d.resolved_at - d.created_at).total_seconds() / 3600 for d in resolved]
    return {
        "total": sum(by_status.values()),
        "active": by_status[DisputeStatus.OPEN.value] + by_status[DisputeStatus.UNDER_REVIEW.value],
        "by_status": by_status,
        "active_by_priority": by_priority,
        "avg_resolution_hours": round(sum(hours) / len(hours), 1) if hours else None,
    }
