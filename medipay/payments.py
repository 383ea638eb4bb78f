"""
Payment order lifecycle: create an order at the gateway, verify the client's
checkout callback, and reconcile against gateway webhooks.

The three entry points share one rule: an order only moves forward
(created -> attempted -> paid | failed) and the request whose conditional
update actually moved it is the only one that schedules a notification.
"""
import json
from dataclasses import dataclass
from typing import Optional

from medipay.exceptions import (
    ConfigurationError,
    GatewayError,
    NotFoundError,
    SignatureMismatch,
    ValidationError,
)
from medipay.gateway import GatewayClient
from medipay.logging_config import get_logger
from medipay.models import OrderStatus, PaymentOrder
from medipay.notifications import Notifier, Scheduler, dispatch_safely
from medipay.signatures import compute_signature, payment_signature, signatures_match
from medipay.store import PaymentOrderStore


logger = get_logger(__name__)

WEBHOOK_EVENTS = {
    "payment.captured": OrderStatus.PAID,
    "payment.failed": OrderStatus.FAILED,
}


@dataclass
class VerificationResult:
    order_id: str
    payment_id: str
    enriched: bool
    payment: Optional[dict] = None

    def to_dict(self) -> dict:
        if self.enriched:
            return {
                "success": True,
                "message": "Payment verified successfully",
                "payment": self.payment,
            }
        return {
            "success": True,
            "message": "Payment verified successfully (signature match)",
            "verified": True,
            "enriched": False,
        }


@dataclass
class WebhookOutcome:
    event_type: Optional[str]
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    applied: bool = False
    duplicate: bool = False


def _run_now(fn, *args):
    fn(*args)


def _known_status(value) -> str:
    try:
        return OrderStatus(value).value
    except ValueError:
        return OrderStatus.CREATED.value


def _order_projection(order: dict) -> dict:
    return {
        "id": order.get("id"),
        "amount": order.get("amount"),
        "currency": order.get("currency"),
        "receipt": order.get("receipt"),
        "status": order.get("status"),
        "createdAt": order.get("created_at"),
    }


def payment_projection(payment: dict, detailed: bool = False) -> dict:
    projection = {
        "id": payment.get("id"),
        "amount": payment.get("amount"),
        "currency": payment.get("currency"),
        "status": payment.get("status"),
        "method": payment.get("method"),
        "createdAt": payment.get("created_at"),
    }
    if detailed:
        projection.update(
            email=payment.get("email"),
            contact=payment.get("contact"),
            orderId=payment.get("order_id"),
        )
    return projection


def _settle(
    store: PaymentOrderStore,
    order_id: str,
    target: OrderStatus,
    payment_id: str,
    *,
    amount: Optional[int] = None,
    currency: Optional[str] = None,
) -> bool:
    """Drive ``order_id`` into the terminal ``target``; True if this call moved it."""
    if store.transition(order_id, target, payment_id=payment_id):
        return True
    if store.get(order_id) is not None:
        return False
    if store.upsert_unseen(order_id, target, payment_id=payment_id, amount=amount, currency=currency):
        return True
    # Lost an insert race; the winner's row may still be non-terminal.
    return store.transition(order_id, target, payment_id=payment_id)


def create_order(
    gateway: GatewayClient,
    store: PaymentOrderStore,
    *,
    amount,
    currency,
    receipt,
    user_id=None,
    user_email=None,
    items=None,
    delivery_address=None,
) -> dict:
    if not amount or not currency or not receipt:
        logger.warning("create_order_missing_fields", receipt=receipt)
        raise ValidationError("Missing required fields: amount, currency, receipt")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer in the smallest currency unit")
    if not gateway.configured:
        logger.error("gateway_not_configured")
        raise ConfigurationError("Payment gateway not properly configured")

    delivery_address = delivery_address or {}
    notes = {
        "userId": user_id or "guest",
        "userEmail": user_email or "",
        "itemCount": len(items or []),
        "deliveryCity": delivery_address.get("city") or "",
        "deliveryState": delivery_address.get("state") or "",
    }

    logger.info("create_order_requested", amount=amount, currency=currency, receipt=receipt, user_id=notes["userId"])
    order = gateway.create_order(amount, currency, receipt, notes)

    store.add(PaymentOrder(
        order_id=order["id"],
        receipt=order.get("receipt", receipt),
        amount=order.get("amount", amount),
        currency=order.get("currency", currency),
        status=_known_status(order.get("status")),
        user_id=notes["userId"],
        user_email=notes["userEmail"],
        item_count=notes["itemCount"],
        delivery_city=notes["deliveryCity"],
        delivery_state=notes["deliveryState"],
    ))
    logger.info("payment_order_created", order_id=order["id"])
    return _order_projection(order)


def verify_payment(
    gateway: GatewayClient,
    store: PaymentOrderStore,
    notifier: Notifier,
    *,
    order_id,
    payment_id,
    signature,
    schedule: Scheduler = None,
) -> VerificationResult:
    schedule = schedule or _run_now

    if not order_id or not payment_id or not signature:
        logger.warning("verify_missing_fields", order_id=order_id, payment_id=payment_id)
        raise ValidationError("Missing required payment verification fields")
    if not gateway.key_secret:
        logger.error("verify_secret_missing")
        raise ConfigurationError("Payment verification configuration error")

    store.transition(order_id, OrderStatus.ATTEMPTED)

    expected = payment_signature(gateway.key_secret, order_id, payment_id)
    if not signatures_match(expected, signature):
        logger.warning("payment_signature_mismatch", order_id=order_id, payment_id=payment_id)
        if store.transition(order_id, OrderStatus.FAILED, payment_id=payment_id):
            schedule(dispatch_safely, notifier, order_id, OrderStatus.FAILED.value, payment_id)
        raise SignatureMismatch()

    logger.info("payment_signature_verified", order_id=order_id, payment_id=payment_id)

    payment = None
    try:
        payment = gateway.fetch_payment(payment_id)
    except (GatewayError, NotFoundError, ConfigurationError) as exc:
        logger.warning("payment_enrichment_failed", payment_id=payment_id, error=exc.message)

    moved = _settle(
        store,
        order_id,
        OrderStatus.PAID,
        payment_id,
        amount=payment.get("amount") if payment else None,
        currency=payment.get("currency") if payment else None,
    )
    if moved:
        schedule(dispatch_safely, notifier, order_id, OrderStatus.PAID.value, payment_id)

    return VerificationResult(
        order_id=order_id,
        payment_id=payment_id,
        enriched=payment is not None,
        payment=payment_projection(payment) if payment else None,
    )


def handle_webhook(
    store: PaymentOrderStore,
    notifier: Notifier,
    *,
    raw_body: bytes,
    signature_header,
    secret,
    event_id=None,
    schedule: Scheduler = None,
) -> WebhookOutcome:
    schedule = schedule or _run_now

    if not secret:
        logger.error("webhook_secret_missing", event_id=event_id)
        raise ConfigurationError("Webhook verification configuration error")

    expected = compute_signature(secret, raw_body)
    if not signatures_match(expected, signature_header):
        logger.warning("webhook_signature_invalid", event_id=event_id)
        raise SignatureMismatch()

    try:
        body = json.loads(raw_body)
    except ValueError:
        logger.warning("webhook_payload_invalid", event_id=event_id)
        raise ValidationError("Invalid webhook payload")
    if not isinstance(body, dict):
        raise ValidationError("Invalid webhook payload")

    event_type = body.get("event")
    target = WEBHOOK_EVENTS.get(event_type)
    if target is None:
        logger.info("webhook_event_ignored", event_type=event_type, event_id=event_id)
        return WebhookOutcome(event_type=event_type)

    entity = body
    for key in ("payload", "payment", "entity"):
        entity = entity.get(key) if isinstance(entity, dict) else None
    if not isinstance(entity, dict):
        entity = {}
    payment_id = entity.get("id")
    if not payment_id:
        logger.warning("webhook_payment_entity_missing", event_type=event_type, event_id=event_id)
        raise ValidationError("Webhook payload has no payment entity")
    order_id = entity.get("order_id")

    if store.has_event(payment_id, event_type):
        logger.info("webhook_duplicate", event_type=event_type, payment_id=payment_id, event_id=event_id)
        return WebhookOutcome(event_type=event_type, payment_id=payment_id, order_id=order_id, duplicate=True)

    applied = False
    if order_id:
        applied = _settle(
            store,
            order_id,
            target,
            payment_id,
            amount=entity.get("amount"),
            currency=entity.get("currency"),
        )
    else:
        logger.warning("webhook_order_id_missing", payment_id=payment_id, event_id=event_id)

    recorded = store.record_event(payment_id, event_type, event_id=event_id, order_id=order_id)
    logger.info(
        "webhook_processed",
        event_type=event_type,
        payment_id=payment_id,
        order_id=order_id,
        applied=applied,
        event_id=event_id,
    )
    if applied:
        schedule(dispatch_safely, notifier, order_id, target.value, payment_id)

    return WebhookOutcome(
        event_type=event_type,
        payment_id=payment_id,
        order_id=order_id,
        applied=applied,
        duplicate=not recorded,
    )


def get_payment(gateway: GatewayClient, payment_id: str) -> dict:
    try:
        payment = gateway.fetch_payment(payment_id)
    except NotFoundError as exc:
        raise GatewayError("Failed to fetch payment details", details=exc.details) from exc
    return payment_projection(payment, detailed=True)


def get_order(store: PaymentOrderStore, order_id: str) -> dict:
    order = store.get(order_id)
    if order is None:
        raise NotFoundError("Order not found")
    return order.to_dict()
