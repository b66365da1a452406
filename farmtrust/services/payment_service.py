"""Mobile-money payment processing.

Buyers pay the merchant code for their provider and submit the provider's
transaction id. A submission is verified either automatically through Monime
or manually by an admin; a verified submission funds the order's escrow.
"""
import json
from datetime import datetime
from flask import current_app
from farmtrust.db import db
from farmtrust.models import (
    EscrowStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
    Role,
    TransactionStatus,
    User,
)
from farmtrust.services import escrow_service, notification_service
from farmtrust.services.errors import Forbidden, InvalidState, NotFound, Unauthorized, ValidationError
from farmtrust.services.monime_client import MonimeClient, MonimeError
from farmtrust.services.timeline import add_event
from farmtrust.utils.parsing import coerce_amount, coerce_int, normalize_phone
from farmtrust.utils.responses import commit_or_rollback

MOBILE_MONEY = {PaymentMethod.ORANGE_MONEY, PaymentMethod.AFRIMONEY}
PAYABLE_ORDER_STATUSES = {OrderStatus.PENDING, OrderStatus.PENDING_PAYMENT, OrderStatus.PAYMENT_FAILED}


def merchant_code(method: PaymentMethod) -> str:
    cfg = current_app.config
    if method == PaymentMethod.ORANGE_MONEY:
        return cfg["ORANGE_MONEY_MERCHANT_CODE"]
    return cfg["AFRIMONEY_MERCHANT_CODE"]


def monime() -> MonimeClient:
    return MonimeClient.from_config(current_app.config)


def _amount_matches(a: float, b: float) -> bool:
    return round(float(a), 2) == round(float(b), 2)


def submit_transaction(buyer: User, data: dict) -> PaymentTransaction:
    required = ("transaction_id", "order_id", "amount", "payment_method", "phone_number")
    missing = [k for k in required if data.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        method = PaymentMethod(str(data["payment_method"]).strip().lower())
    except ValueError:
        method = None
    if method not in MOBILE_MONEY:
        raise ValidationError("Invalid payment method. Must be orange_money or afrimoney")

    amount = coerce_amount(data["amount"])
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be greater than 0")

    phone = normalize_phone(str(data["phone_number"]))
    if not phone:
        raise ValidationError("Invalid Sierra Leone phone number")

    order_id = coerce_int(data["order_id"])
    order = db.session.get(Order, order_id) if order_id is not None else None
    if not order:
        raise NotFound("Order not found")
    if order.buyer_id != buyer.id:
        raise Forbidden("Unauthorized to pay for this order")
    if order.status not in PAYABLE_ORDER_STATUSES or order.escrow.status != EscrowStatus.PENDING:
        raise InvalidState("Order is not awaiting payment")
    if not _amount_matches(amount, order.total_amount):
        raise ValidationError("Payment amount does not match order total")

    txn_id = str(data["transaction_id"]).strip()
    if PaymentTransaction.query.filter_by(transaction_id=txn_id).first():
        raise InvalidState("Transaction already submitted")

    txn = PaymentTransaction(
        transaction_id=txn_id,
        order_id=order.id,
        buyer_id=buyer.id,
        amount=amount,
        payment_method=method,
        phone_number=phone,
        merchant_code=merchant_code(method),
        provider="monime" if monime().is_configured() else "manual",
        status=TransactionStatus.SUBMITTED,
    )
    db.session.add(txn)
    order.status = OrderStatus.PENDING_PAYMENT
    order.payment_status = PaymentStatus.PROCESSING
    add_event(order, "payment_submitted", buyer, "Mobile money transaction submitted",
              transaction_id=txn_id, method=method.value)
    commit_or_rollback()
    current_app.logger.info("Transaction %s submitted for order %s", txn_id, order.id)
    return txn


def _get_txn(transaction_id: str) -> PaymentTransaction:
    txn = PaymentTransaction.query.filter_by(transaction_id=str(transaction_id)).first()
    if not txn:
        raise NotFound("Transaction not found")
    return txn


def _approve(txn: PaymentTransaction, actor: User | None, notes: str | None):
    order = txn.order
    if not _amount_matches(txn.amount, order.total_amount):
        raise ValidationError("Payment amount does not match order total")
    txn.status = TransactionStatus.VERIFIED
    txn.verified_at = datetime.utcnow()
    txn.verified_by = actor.id if actor else None
    txn.admin_notes = notes
    escrow_service.apply_fund(order.escrow, txn.transaction_id, actor)


def _reject(txn: PaymentTransaction, actor: User | None, notes: str | None):
    order = txn.order
    txn.status = TransactionStatus.REJECTED
    txn.verified_at = datetime.utcnow()
    txn.verified_by = actor.id if actor else None
    txn.admin_notes = notes
    order.status = OrderStatus.PAYMENT_FAILED
    order.payment_status = PaymentStatus.FAILED
    add_event(order, "payment_rejected", actor, notes or "Payment could not be verified",
              transaction_id=txn.transaction_id)
    notification_service.notify(order.buyer_id, "Payment Failed",
                                f"Payment for order {order.order_number} could not be verified.",
                                "payment", "high", ("order", order.id))


def _result(txn: PaymentTransaction, message: str, success: bool) -> dict:
    return {
        "success": success,
        "message": message,
        "status": txn.status.value,
        "transaction_id": txn.transaction_id,
        "amount": float(txn.amount),
        "order_id": txn.order_id,
        "timestamp": datetime.utcnow().isoformat(),
    }


def verify_payment(transaction_id: str, user: User, admin_notes: str | None = None,
                   approve: bool = True) -> dict:
    txn = _get_txn(transaction_id)
    is_admin = user.role == Role.ADMIN
    if not is_admin and user.id != txn.buyer_id:
        raise Forbidden("Unauthorized to verify this transaction")
    if txn.status != TransactionStatus.SUBMITTED:
        return _result(txn, f"Transaction already {txn.status.value}", txn.status == TransactionStatus.VERIFIED)
    if txn.order.escrow.status != EscrowStatus.PENDING:
        return _result(txn, "Order payment already settled", False)

    if is_admin and admin_notes:
        if approve:
            _approve(txn, user, admin_notes)
            message = "Payment manually verified"
        else:
            _reject(txn, user, admin_notes)
            message = "Payment rejected"
        commit_or_rollback()
        current_app.logger.info("Transaction %s %s by admin %s", txn.transaction_id, txn.status.value, user.id)
        return _result(txn, message, approve)

    client = monime()
    if not client.is_configured():
        return _result(txn, "Awaiting manual verification", False)
    try:
        remote = client.get_payment(txn.order.order_number)
    except MonimeError as e:
        current_app.logger.warning("Monime verification failed for %s: %s", txn.transaction_id, e)
        return _result(txn, "Awaiting verification", False)

    remote_status = str(remote.get("status") or "").lower()
    if remote_status == "completed":
        _approve(txn, None, "Verified with Monime")
        commit_or_rollback()
        return _result(txn, "Payment verified", True)
    if remote_status in ("failed", "cancelled"):
        _reject(txn, None, f"Monime reported {remote_status}")
        commit_or_rollback()
        return _result(txn, "Payment failed", False)
    return _result(txn, "Payment is still processing", False)


def _settle_submitted(order: Order, status: TransactionStatus, notes: str):
    pending = PaymentTransaction.query.filter_by(order_id=order.id, status=TransactionStatus.SUBMITTED)
    for txn in pending:
        txn.status = status
        txn.verified_at = datetime.utcnow()
        txn.admin_notes = notes


def handle_webhook(raw_body: bytes, signature: str) -> dict:
    client = monime()
    if not client.validate_webhook_signature(raw_body, signature):
        raise Unauthorized("Invalid signature")
    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    reference = data.get("reference")
    status = str(data.get("status") or "").lower()
    if not reference:
        raise ValidationError("Missing payment reference")

    order = Order.query.filter_by(order_number=reference).first()
    if not order:
        raise NotFound("Order not found")
    current_app.logger.info("Monime webhook %s for order %s: %s", payload.get("event"), order.id, status)

    escrow = order.escrow
    if status == "completed":
        if escrow.status == EscrowStatus.PENDING:
            if data.get("amount") is not None and not _amount_matches(data["amount"], order.total_amount):
                raise ValidationError("Payment amount does not match order total")
            escrow_service.apply_fund(escrow, data.get("transaction_id") or data.get("payment_id"))
            _settle_submitted(order, TransactionStatus.VERIFIED, "Verified by Monime webhook")
    elif status == "failed":
        if escrow.status == EscrowStatus.PENDING:
            order.status = OrderStatus.PAYMENT_FAILED
            order.payment_status = PaymentStatus.FAILED
            add_event(order, "payment_failed", None, "Monime reported a failed payment")
            _settle_submitted(order, TransactionStatus.REJECTED, "Monime reported failed")
    elif status == "cancelled":
        if escrow.status == EscrowStatus.PENDING:
            escrow_service.apply_cancel(escrow, "Payment cancelled")
            _settle_submitted(order, TransactionStatus.REJECTED, "Monime reported cancelled")
    elif status == "processing":
        if escrow.status == EscrowStatus.PENDING:
            order.payment_status = PaymentStatus.PROCESSING
    else:
        current_app.logger.warning("Ignoring Monime status %r for order %s", status, order.id)
    commit_or_rollback()
    return {
        "message": "Webhook processed successfully",
        "order_id": order.id,
        "payment_status": order.payment_status.value,
    }


def history(user: User, page: int, limit: int, status: TransactionStatus | None = None,
            order_id: int | None = None):
    q = PaymentTransaction.query
    if user.role != Role.ADMIN:
        q = q.filter(PaymentTransaction.buyer_id == user.id)
    if status is not None:
        q = q.filter(PaymentTransaction.status == status)
    if order_id is not None:
        q = q.filter(PaymentTransaction.order_id == order_id)
    return q.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()) \
        .paginate(page=page, per_page=limit, error_out=False)
