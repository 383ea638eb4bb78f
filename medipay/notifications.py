from typing import Callable, Optional, Protocol

from medipay.logging_config import get_logger


logger = get_logger(__name__)


class Notifier(Protocol):
    def notify(self, order_id: str, status: str, payment_id: Optional[str] = None) -> None:
        ...


class LogNotifier:
    """Records status changes; stands in until a push/email channel is wired up."""

    def notify(self, order_id: str, status: str, payment_id: Optional[str] = None) -> None:
        logger.info("payment_notification", order_id=order_id, status=status, payment_id=payment_id)


def dispatch_safely(notifier: Notifier, order_id: str, status: str, payment_id: Optional[str] = None) -> None:
    """Run a notifier as fire-and-forget work; failures are logged, never raised."""
    try:
        notifier.notify(order_id, status, payment_id)
    except Exception:
        logger.exception("payment_notification_failed", order_id=order_id, status=status)


Scheduler = Callable[..., None]
