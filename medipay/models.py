import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, UniqueConstraint
)

from medipay.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    CREATED = "created"
    ATTEMPTED = "attempted"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.PAID, OrderStatus.FAILED)


# Statuses an order may be in for a move to the key status to apply.
ALLOWED_FROM = {
    OrderStatus.ATTEMPTED: (OrderStatus.CREATED,),
    OrderStatus.PAID: (OrderStatus.CREATED, OrderStatus.ATTEMPTED),
    OrderStatus.FAILED: (OrderStatus.CREATED, OrderStatus.ATTEMPTED),
}


class PaymentOrder(Base):
    __tablename__ = "payment_orders"

    order_id = Column(String, primary_key=True)      # gateway order id
    receipt = Column(String, index=True)
    amount = Column(Integer)                          # minor currency unit
    currency = Column(String(3))
    status = Column(String, nullable=False, default=OrderStatus.CREATED.value)
    user_id = Column(String)
    user_email = Column(String)
    item_count = Column(Integer, default=0)
    delivery_city = Column(String)
    delivery_state = Column(String)
    payment_id = Column(String, index=True)
    unseen = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    def to_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "receipt": self.receipt,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "paymentId": self.payment_id,
            "unseen": self.unseen,
            "metadata": {
                "userId": self.user_id,
                "email": self.user_email,
                "itemCount": self.item_count,
                "deliveryCity": self.delivery_city,
                "deliveryState": self.delivery_state,
            },
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("payment_id", "event_type", name="uq_webhook_payment_event"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    event_id = Column(String)                         # X-Razorpay-Event-Id, if sent
    order_id = Column(String, index=True)
    received_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
