"""
Shared plumbing for services that mutate an order.
Authorization, locked reads, compare-and-set writes, audit append and
post-commit notification all live here so every writer behaves the same.
"""
import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from django.db import transaction
from apps.audit.logging_utils import AuditLogger
from apps.orders.exceptions import Unauthorized
from apps.orders.models import Order
from apps.orders.services import notifications
from apps.orders.services.policy import Actor, PolicyProvider, get_policy_provider
from apps.orders.services.repository import OrderRepository

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

# (event_type, metadata)
AuditEntry = Tuple[str, Dict[str, Any]]


class WorkflowService:
    """
    Base for the state machine and the payment tracker.

    Collaborators are injectable:
        policy: PolicyProvider (defaults to ORDER_POLICY_PROVIDER)
        notifier: callable(order_id, event_type)
        repository: OrderRepository
    """

    def __init__(
        self,
        policy: Optional[PolicyProvider] = None,
        notifier: Optional[Callable[[Any, str], None]] = None,
        repository: Optional[OrderRepository] = None
    ):
        self.policy = policy or get_policy_provider()
        self.notifier = notifier or notifications.notify
        self.repository = repository or OrderRepository()

    def authorize(self, actor: Actor, action: str) -> None:
        if not self.policy.is_authorized(actor.role, actor.actor_id, action):
            security_logger.warning(
                "[ORDERS] %s %s not authorized for %s", actor.role, actor.actor_id, action
            )
            raise Unauthorized(
                f"{actor.role} is not allowed to {action}",
                details={'action': action, 'actor_role': actor.role}
            )

    @staticmethod
    def stamp(order: Order, field: Optional[str], now: datetime) -> Dict[str, datetime]:
        """Patch for a write-once timestamp; empty when already set."""
        if field is None or getattr(order, field) is not None:
            return {}
        return {field: now}

    def commit(
        self,
        order: Order,
        actor: Actor,
        patch: Dict[str, Any],
        entries: Iterable[AuditEntry],
        now: datetime
    ) -> Order:
        """
        Apply a patch with compare-and-set on the state the caller read,
        append its audit entries and schedule notifications.
        Must run inside transaction.atomic.
        """
        self.repository.update(
            order.pk,
            expected_state=order.lifecycle_state,
            patch=patch,
            expected_payment_state=order.payment_state
        )

        for event_type, metadata in entries:
            AuditLogger.append(
                order,
                event_type,
                actor_role=actor.role,
                actor_id=actor.actor_id,
                metadata=metadata,
                created_at=now
            )
            # robust: a failing notifier is logged, the transition stays committed
            transaction.on_commit(partial(self.notifier, order.pk, event_type), robust=True)

        for field, value in patch.items():
            setattr(order, field, value)
        return order
