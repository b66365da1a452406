from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Enum, Index
from farmtrust.db import db


class Role(PyEnum):
    BUYER = "buyer"
    VENDOR = "vendor"
    ADMIN = "admin"


class OrderStatus(PyEnum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    PAYMENT_FAILED = "payment_failed"


class PaymentStatus(PyEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PaymentMethod(PyEnum):
    ORANGE_MONEY = "orange_money"
    AFRIMONEY = "afrimoney"
    BANK_TRANSFER = "bank_transfer"


class EscrowStatus(PyEnum):
    PENDING = "pending"
    FUNDED = "funded"
    PENDING_CONFIRMATION = "pending_confirmation"
    RELEASED = "released_to_vendor"
    REFUNDED = "refunded_to_buyer"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class ReleaseReason(PyEnum):
    BUYER_APPROVAL = "buyer_approval"
    AUTO_RELEASE = "auto_release"
    ADMIN_RELEASE = "admin_release"
    DISPUTE_RESOLUTION = "dispute_resolution"


class DisputeStatus(PyEnum):
    OPEN = "open"
    UNDER_REVIEW = "under-review"
    RESOLVED_BUYER = "resolved-buyer"
    RESOLVED_VENDOR = "resolved-vendor"
    CLOSED = "closed"


class DisputeReason(PyEnum):
    QUALITY_ISSUES = "quality-issues"
    WRONG_ITEM = "wrong-item"
    MISSING_ITEM = "missing-item"
    DAMAGED = "damaged"
    LATE_DELIVERY = "late-delivery"
    OTHER = "other"


class DisputePriority(PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TransactionStatus(PyEnum):
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    REJECTED = "rejected"


def _iso(dt):
    return dt.isoformat() if dt else None


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(20))
    password = db.Column(db.String(255), nullable=False)  # werkzeug hash
    role = db.Column(Enum(Role, name="user_role"), nullable=False, default=Role.BUYER)
    locked = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict_basic(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "phone": self.phone,
            "role": self.role.value,
            "locked": self.locked,
            "created_at": _iso(self.created_at),
        }


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(40), unique=True, nullable=False, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    vendor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(
        Enum(OrderStatus, name="order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    payment_status = db.Column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method = db.Column(Enum(PaymentMethod, name="payment_method"), nullable=False)

    total_amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="SLE")
    shipping_address = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text)
    tracking_number = db.Column(db.String(100))
    cancellation_reason = db.Column(db.Text)

    delivered_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_order_status_created", "status", "created_at"),
    )

    items = db.relationship(
        "OrderItem",
        back_populates="order",
        lazy=True,
        cascade="all, delete-orphan",
    )
    events = db.relationship(
        "OrderEvent",
        back_populates="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderEvent.id",
    )
    escrow = db.relationship("Escrow", back_populates="order", uselist=False)

    def to_dict(self, with_timeline: bool = False):
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "vendor_id": self.vendor_id,
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "payment_method": self.payment_method.value,
            "total_amount": float(self.total_amount or 0),
            "currency": self.currency,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "cancellation_reason": self.cancellation_reason,
            "items": [i.to_dict() for i in (self.items or [])],
            "escrow": self.escrow.to_summary() if self.escrow else None,
            "delivered_at": _iso(self.delivered_at),
            "completed_at": _iso(self.completed_at),
            "cancelled_at": _iso(self.cancelled_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if with_timeline:
            data["timeline"] = [e.to_dict() for e in (self.events or [])]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(200), nullable=False)  # snapshot at checkout
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Float, nullable=False)
    total_price = db.Column(db.Float, nullable=False)

    order = db.relationship("Order", back_populates="items")

    def to_dict(self):
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "total_price": float(self.total_price),
        }


class OrderEvent(db.Model):
    """Timeline of everything that happened to an order."""
    __tablename__ = "order_events"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False)
    actor_type = db.Column(db.String(20), nullable=False, default="system")  # system, buyer, vendor, admin
    actor_id = db.Column(db.Integer)
    description = db.Column(db.Text)
    extra_data = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    order = db.relationship("Order", back_populates="events")

    def to_dict(self):
        return {
            "id": self.id,
            "event_type": self.event_type,
            "actor_type": self.actor_type,
            "actor_id": self.actor_id,
            "description": self.description,
            "metadata": self.extra_data,
            "created_at": _iso(self.created_at),
        }


class Escrow(db.Model):
    __tablename__ = "escrows"

    id = db.Column(db.Integer, primary_key=True)
    # unique: one escrow per order
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    vendor_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="SLE")

    status = db.Column(
        Enum(EscrowStatus, name="escrow_status"),
        nullable=False,
        default=EscrowStatus.PENDING,
    )
    status_before_dispute = db.Column(Enum(EscrowStatus, name="escrow_status_before_dispute"))
    payment_reference = db.Column(db.String(100))

    funded_at = db.Column(db.DateTime)
    delivered_at = db.Column(db.DateTime)
    auto_release_date = db.Column(db.DateTime, index=True)
    buyer_confirmed_at = db.Column(db.DateTime)
    released_at = db.Column(db.DateTime)
    refunded_at = db.Column(db.DateTime)

    release_reason = db.Column(Enum(ReleaseReason, name="release_reason"))
    refund_reason = db.Column(db.Text)
    refunded_amount = db.Column(db.Float)
    transaction_fee = db.Column(db.Float, default=0)
    vendor_payout_amount = db.Column(db.Float)
    admin_notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_escrow_status_release", "status", "auto_release_date"),
    )

    order = db.relationship("Order", back_populates="escrow")

    def to_summary(self):
        return {
            "id": self.id,
            "status": self.status.value,
            "amount": float(self.amount),
            "currency": self.currency,
            "auto_release_date": _iso(self.auto_release_date),
        }

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "buyer_id": self.buyer_id,
            "vendor_id": self.vendor_id,
            "amount": float(self.amount),
            "currency": self.currency,
            "status": self.status.value,
            "payment_reference": self.payment_reference,
            "funded_at": _iso(self.funded_at),
            "delivered_at": _iso(self.delivered_at),
            "auto_release_date": _iso(self.auto_release_date),
            "buyer_confirmed_at": _iso(self.buyer_confirmed_at),
            "released_at": _iso(self.released_at),
            "refunded_at": _iso(self.refunded_at),
            "release_reason": self.release_reason.value if self.release_reason else None,
            "refund_reason": self.refund_reason,
            "refunded_amount": self.refunded_amount,
            "transaction_fee": self.transaction_fee,
            "vendor_payout_amount": self.vendor_payout_amount,
            "admin_notes": self.admin_notes,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class Dispute(db.Model):
    __tablename__ = "disputes"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    vendor_id = db.Column(db.Integer, nullable=False, index=True)
    complainant_id = db.Column(db.Integer, nullable=False)
    respondent_id = db.Column(db.Integer, nullable=False)

    reason = db.Column(Enum(DisputeReason, name="dispute_reason"), nullable=False)
    description = db.Column(db.Text, nullable=False)
    evidence = db.Column(db.JSON, default=list)  # URLs
    requested_amount = db.Column(db.Float)

    response = db.Column(db.Text)
    response_evidence = db.Column(db.JSON)
    responded_at = db.Column(db.DateTime)

    status = db.Column(
        Enum(DisputeStatus, name="dispute_status"),
        nullable=False,
        default=DisputeStatus.OPEN,
    )
    priority = db.Column(
        Enum(DisputePriority, name="dispute_priority"),
        nullable=False,
        default=DisputePriority.LOW,
    )

    admin_id = db.Column(db.Integer)
    admin_notes = db.Column(db.Text)
    resolution = db.Column(db.Text)
    refund_amount = db.Column(db.Float, default=0)
    resolved_at = db.Column(db.DateTime)
    escalated_at = db.Column(db.DateTime)
    escalation_reason = db.Column(db.Text)
    closure_reason = db.Column(db.Text)
    closed_at = db.Column(db.DateTime)
    previous_order_status = db.Column(Enum(OrderStatus, name="dispute_previous_order_status"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_dispute_status_created", "status", "created_at"),
    )

    order = db.relationship("Order")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "buyer_id": self.buyer_id,
            "vendor_id": self.vendor_id,
            "complainant_id": self.complainant_id,
            "respondent_id": self.respondent_id,
            "reason": self.reason.value,
            "description": self.description,
            "evidence": self.evidence or [],
            "requested_amount": self.requested_amount,
            "response": self.response,
            "response_evidence": self.response_evidence or [],
            "responded_at": _iso(self.responded_at),
            "status": self.status.value,
            "priority": self.priority.value,
            "admin_id": self.admin_id,
            "admin_notes": self.admin_notes,
            "resolution": self.resolution,
            "refund_amount": self.refund_amount,
            "resolved_at": _iso(self.resolved_at),
            "escalated_at": _iso(self.escalated_at),
            "escalation_reason": self.escalation_reason,
            "closure_reason": self.closure_reason,
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class PaymentTransaction(db.Model):
    """A mobile-money transfer reported by the buyer, pending verification."""
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Float, nullable=False)
    payment_method = db.Column(Enum(PaymentMethod, name="transaction_method"), nullable=False)
    phone_number = db.Column(db.String(20), nullable=False)
    merchant_code = db.Column(db.String(40))
    provider = db.Column(db.String(20), nullable=False, default="manual")  # manual, monime

    status = db.Column(
        Enum(TransactionStatus, name="transaction_status"),
        nullable=False,
        default=TransactionStatus.SUBMITTED,
    )
    verified_by = db.Column(db.Integer)
    admin_notes = db.Column(db.Text)
    verified_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    order = db.relationship("Order")

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "buyer_id": self.buyer_id,
            "amount": float(self.amount),
            "payment_method": self.payment_method.value,
            "phone_number": self.phone_number,
            "merchant_code": self.merchant_code,
            "provider": self.provider,
            "status": self.status.value,
            "verified_by": self.verified_by,
            "admin_notes": self.admin_notes,
            "verified_at": _iso(self.verified_at),
            "created_at": _iso(self.created_at),
        }


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    title = db.Column(db.String(120), nullable=False)
    message = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False)  # order, payment, dispute
    priority = db.Column(db.String(10), nullable=False, default="medium")
    related_type = db.Column(db.String(20))
    related_id = db.Column(db.Integer)
    read = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "priority": self.priority,
            "related_type": self.related_type,
            "related_id": self.related_id,
            "read": self.read,
            "created_at": _iso(self.created_at),
        }


__all__ = [
    "db",
    "User",
    "Order",
    "OrderItem",
    "OrderEvent",
    "Escrow",
    "Dispute",
    "PaymentTransaction",
    "Notification",
    "Role",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "EscrowStatus",
    "ReleaseReason",
    "DisputeStatus",
    "DisputeReason",
    "DisputePriority",
    "TransactionStatus",
]
