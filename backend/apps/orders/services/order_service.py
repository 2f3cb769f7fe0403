"""
Order service - main entry point for order operations.
Orchestrates the state machine, QC store and escrow tracker, and retries
lost compare-and-set races.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional
from django.conf import settings
from django.db import transaction
from django.utils import timezone
from apps.audit.logging_utils import AuditLogger
from apps.orders.exceptions import (
    ConcurrentModification,
    FieldLocked,
    GuardFailed,
    InvalidTransition,
    Unauthorized,
)
from apps.orders.models import LifecycleState as S, Order, OrderIntent
from apps.orders.services.escrow_service import EscrowService
from apps.orders.services.policy import Action, Actor
from apps.orders.services.state_machine import StateMachine

logger = logging.getLogger(__name__)

# Lifecycle order used for field locks
STATE_ORDER = list(S.values)

# Field -> first state at which it can no longer be edited
FIELD_LOCKS = {
    'product_type': S.SUBMITTED,
    'quantity': S.SUBMITTED,
    'total_amount': S.SUBMITTED,
    'buyer_notes': S.SUBMITTED,
    'fabric_type': S.SAMPLE_APPROVED,
    'color': S.SAMPLE_APPROVED,
    'shipping_address': S.DISPATCHED,
}


def is_field_locked(field: str, state: str) -> bool:
    lock_state = FIELD_LOCKS[field]
    return STATE_ORDER.index(state) >= STATE_ORDER.index(lock_state)


class OrderService:
    """
    Main service for order operations.
    Views call this; it never lets a ConcurrentModification escape before
    CAS_MAX_RETRIES re-reads.
    """

    PAYMENT_ACTIONS = {
        'hold': 'hold',
        'releasable': 'mark_releasable',
        'release': 'release',
        'refund': 'refund',
    }

    ASSIGNMENT_ACTIONS = {
        'decline': Action.DECLINE_ASSIGNMENT,
        'reassign': Action.REASSIGN_MANUFACTURER,
    }

    def __init__(
        self,
        state_machine: Optional[StateMachine] = None,
        escrow: Optional[EscrowService] = None,
        max_retries: Optional[int] = None
    ):
        self.state_machine = state_machine or StateMachine()
        self.escrow = escrow or EscrowService(
            policy=self.state_machine.policy,
            notifier=self.state_machine.notifier,
            repository=self.state_machine.repository,
        )
        if max_retries is None:
            max_retries = settings.ORDER_WORKFLOW.get('CAS_MAX_RETRIES', 3)
        self.max_retries = max_retries

    def with_retry(self, operation: Callable[..., Any], *args, **kwargs) -> Any:
        """Re-run an operation after a lost compare-and-set, then give up."""
        attempt = 0
        while True:
            try:
                return operation(*args, **kwargs)
            except ConcurrentModification:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning(
                        "Giving up %s after %s CAS conflicts",
                        getattr(operation, '__name__', operation), attempt
                    )
                    raise
                logger.info("Retrying %s after CAS conflict (%s)", getattr(operation, '__name__', operation), attempt)

    # ------------------------------------------------------------------
    # Order record
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_amount(value) -> Decimal:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise GuardFailed("Total amount must be a number", details={'total_amount': str(value)})
        if amount < 0:
            raise GuardFailed("Total amount cannot be negative", details={'total_amount': str(value)})
        return amount

    @transaction.atomic
    def create_order(
        self,
        actor: Actor,
        intent: str,
        product_type: str = "",
        fabric_type: str = "",
        color: str = "",
        quantity: int = 1,
        total_amount=Decimal('0.00'),
        buyer_notes: str = "",
        shipping_address: str = ""
    ) -> Order:
        """
        Create a draft order owned by the acting buyer.

        Args:
            actor: Buyer creating the order
            intent: sample_only / sample_then_bulk / direct_bulk (fixed forever)

        Returns:
            Created order in DRAFT state
        """
        self.state_machine.authorize(actor, Action.CREATE_ORDER)

        if intent not in OrderIntent.values:
            raise GuardFailed(f"Unknown order intent: {intent}", details={'intent': intent})

        total = self._parse_amount(total_amount)
        upfront, final = EscrowService.calculate_split(total)

        order = Order(
            buyer_id=actor.actor_id,
            intent=intent,
            product_type=product_type,
            fabric_type=fabric_type,
            color=color,
            quantity=quantity,
            total_amount=total,
            upfront_amount=upfront,
            final_amount=final,
            buyer_notes=buyer_notes,
            shipping_address=shipping_address,
        )
        self.state_machine.repository.insert(order)

        AuditLogger.append(
            order,
            'order_created',
            actor_role=actor.role,
            actor_id=actor.actor_id,
            metadata={'to_state': S.DRAFT, 'intent': intent},
            created_at=order.created_at,
        )
        transaction.on_commit(
            lambda: self.state_machine.notifier(order.pk, 'order_created'),
            robust=True
        )

        logger.info("Order %s created by buyer %s (%s)", order.pk, actor.actor_id, intent)
        return order

    def update_details(self, order_id, actor: Actor, changes: Dict[str, Any]) -> Order:
        return self.with_retry(self._update_details, order_id, actor, changes)

    @transaction.atomic
    def _update_details(self, order_id, actor: Actor, changes: Dict[str, Any]) -> Order:
        """
        Edit descriptive fields, honoring per-field locks.

        Raises:
            Unauthorized: Not the owning buyer (or admin)
            FieldLocked: Field no longer editable at this state
        """
        machine = self.state_machine
        machine.authorize(actor, Action.UPDATE_ORDER)
        order = machine.repository.get(order_id, for_update=True)

        if not actor.is_admin and not order.is_buyer(actor.actor_id):
            raise Unauthorized("Only the owning buyer can edit this order")

        unknown = sorted(set(changes) - set(FIELD_LOCKS))
        if unknown:
            raise GuardFailed("These fields cannot be edited", details={'fields': unknown})

        locked = sorted(
            field for field in changes
            if order.is_terminal or is_field_locked(field, order.lifecycle_state)
        )
        if locked:
            raise FieldLocked(
                f"Fields locked at {order.lifecycle_state}",
                details={'fields': locked, 'lifecycle_state': order.lifecycle_state}
            )

        patch = dict(changes)
        if 'total_amount' in patch:
            total = self._parse_amount(patch['total_amount'])
            patch['total_amount'] = total
            patch['upfront_amount'], patch['final_amount'] = EscrowService.calculate_split(total)

        now = timezone.now()
        machine.commit(
            order,
            actor,
            patch,
            [('details_updated', {
                'from_state': order.lifecycle_state,
                'to_state': order.lifecycle_state,
                'fields': sorted(changes),
            })],
            now
        )
        return order

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def apply_event(self, order_id, event: str, actor: Actor, **params):
        """Run a lifecycle event with CAS retry."""
        return self.with_retry(self.state_machine.apply, order_id, event, actor, **params)

    def decide_qc(self, qc_record_id, actor: Actor, decision: str, **params) -> Order:
        return self.with_retry(self.state_machine.admin_decide, qc_record_id, actor, decision, **params)

    def assess_qc(self, qc_record_id, actor: Actor, decision: str, **params):
        return self.with_retry(
            self.state_machine.record_submitter_decision, qc_record_id, actor, decision, **params
        )

    def payment_action(self, order_id, action: str, actor: Actor, **params) -> Order:
        handler_name = self.PAYMENT_ACTIONS.get(action)
        if handler_name is None:
            raise InvalidTransition(f"Unknown payment action: {action}", details={'action': action})
        return self.with_retry(getattr(self.escrow, handler_name), order_id, actor, **params)

    def assignment_action(self, order_id, action: str, actor: Actor, **params) -> Order:
        event = self.ASSIGNMENT_ACTIONS.get(action)
        if event is None:
            raise InvalidTransition(f"Unknown assignment action: {action}", details={'action': action})
        return self.apply_event(order_id, event, actor, **params)
