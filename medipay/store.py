"""
PaymentOrder persistence.

Status changes go through ``transition``, a single conditional UPDATE that only
matches rows whose current status may legally precede the target. Concurrent
writers for the same order therefore serialize in the database: exactly one of
them sees ``rowcount == 1`` and owns the follow-up side effects.
"""
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from medipay.logging_config import get_logger
from medipay.models import ALLOWED_FROM, OrderStatus, PaymentOrder, WebhookEvent


logger = get_logger(__name__)


class PaymentOrderStore:

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def add(self, order: PaymentOrder) -> PaymentOrder:
        with self.session_factory() as db:
            db.add(order)
            db.commit()
            db.refresh(order)
            db.expunge(order)
        logger.info("payment_order_stored", order_id=order.order_id, status=order.status)
        return order

    def get(self, order_id: str) -> Optional[PaymentOrder]:
        with self.session_factory() as db:
            order = db.get(PaymentOrder, order_id)
            if order is not None:
                db.expunge(order)
            return order

    def transition(
        self, order_id: str, target: OrderStatus, payment_id: Optional[str] = None
    ) -> bool:
        """Move ``order_id`` to ``target`` if its current status allows it.

        Returns True only for the caller whose update actually changed the row.
        """
        allowed = [status.value for status in ALLOWED_FROM[target]]
        values = {"status": target.value}
        if payment_id:
            values["payment_id"] = func.coalesce(PaymentOrder.payment_id, payment_id)

        stmt = (
            update(PaymentOrder)
            .where(PaymentOrder.order_id == order_id, PaymentOrder.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            moved = result.rowcount == 1

        if moved:
            logger.info("payment_order_transitioned", order_id=order_id, status=target.value)
        else:
            logger.debug("payment_order_transition_skipped", order_id=order_id, target=target.value)
        return moved

    def upsert_unseen(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        payment_id: Optional[str] = None,
        amount: Optional[int] = None,
        currency: Optional[str] = None,
    ) -> bool:
        """Insert an order first learned about from the gateway.

        Returns False when the row already exists, including when a concurrent
        request inserted it first; the caller should then fall back to
        ``transition``.
        """
        order = PaymentOrder(
            order_id=order_id,
            status=status.value,
            payment_id=payment_id,
            amount=amount,
            currency=currency,
            unseen=True,
        )
        with self.session_factory() as db:
            db.add(order)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False

        logger.warning("payment_order_unseen", order_id=order_id, status=status.value)
        return True

    def has_event(self, payment_id: str, event_type: str) -> bool:
        stmt = select(WebhookEvent.id).where(
            WebhookEvent.payment_id == payment_id,
            WebhookEvent.event_type == event_type,
        )
        with self.session_factory() as db:
            return db.execute(stmt).first() is not None

    def record_event(
        self,
        payment_id: str,
        event_type: str,
        *,
        event_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> bool:
        """Remember a processed webhook delivery. False if it was already recorded."""
        event = WebhookEvent(
            payment_id=payment_id,
            event_type=event_type,
            event_id=event_id,
            order_id=order_id,
        )
        with self.session_factory() as db:
            db.add(event)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
        return True
