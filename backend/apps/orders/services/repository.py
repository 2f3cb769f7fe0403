"""
Order persistence.
Thin compare-and-set layer over the Django ORM used by the workflow services.
"""
import logging
from typing import Any, Dict, Optional
from django.core.exceptions import ValidationError
from django.utils import timezone
from apps.orders.exceptions import ConcurrentModification, NotFound
from apps.orders.models import Order

logger = logging.getLogger(__name__)


class OrderRepository:
    """
    get / update / insert over the orders table.
    All writes of the lifecycle go through update() so that two racing
    transitions on the same order can never both apply.
    """

    def get(self, order_id, for_update: bool = False) -> Order:
        """
        Load an order.

        Args:
            order_id: Order UUID (str or UUID)
            for_update: Lock the row; caller must be inside transaction.atomic

        Raises:
            NotFound: Unknown or malformed id
        """
        queryset = Order.objects.all()
        if for_update:
            # No select_related here: FOR UPDATE cannot lock the nullable
            # side of the manufacturer outer join on PostgreSQL.
            queryset = queryset.select_for_update()
        else:
            queryset = queryset.select_related('buyer', 'manufacturer')

        try:
            return queryset.get(pk=order_id)
        except (Order.DoesNotExist, ValidationError, ValueError):
            raise NotFound(f"Order {order_id} not found", details={'order_id': str(order_id)})

    def update(
        self,
        order_id,
        expected_state: str,
        patch: Dict[str, Any],
        expected_payment_state: Optional[str] = None
    ) -> int:
        """
        Compare-and-set write.

        The UPDATE only matches while the row still holds the lifecycle
        (and payment) state the caller read.

        Raises:
            ConcurrentModification: No row matched
        """
        filters = {'pk': order_id, 'lifecycle_state': expected_state}
        if expected_payment_state is not None:
            filters['payment_state'] = expected_payment_state

        values = dict(patch)
        values['updated_at'] = timezone.now()

        rows = Order.objects.filter(**filters).update(**values)
        if rows == 0:
            logger.warning(
                "CAS miss on order %s (expected %s/%s)",
                order_id, expected_state, expected_payment_state
            )
            raise ConcurrentModification(
                "Order was modified concurrently",
                details={
                    'order_id': str(order_id),
                    'expected_state': expected_state,
                    'expected_payment_state': expected_payment_state,
                }
            )
        return rows

    def insert(self, record):
        """Insert a new model instance (order, QC record)."""
        record.save(force_insert=True)
        return record
