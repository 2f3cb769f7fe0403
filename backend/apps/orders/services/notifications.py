"""
Order notifications.
Fires the order_event signal after the transaction commits; delivery
(email, push, chat) is left to receivers.
"""
import logging
from django.dispatch import Signal, receiver
from apps.orders.models import Order

logger = logging.getLogger(__name__)

# Sent with order_id and event_type keyword arguments
order_event = Signal()


def notify(order_id, event_type: str) -> None:
    """
    Send order_event to every receiver.
    A failing receiver is logged and never affects the committed transition.
    """
    responses = order_event.send_robust(sender=Order, order_id=order_id, event_type=event_type)
    for handler, response in responses:
        if isinstance(response, Exception):
            logger.error(
                "Notification receiver %s failed for order %s (%s): %s",
                getattr(handler, '__name__', handler), order_id, event_type, response
            )


@receiver(order_event)
def log_order_event(sender, order_id, event_type, **kwargs):
    logger.info("Order %s: %s", order_id, event_type)
