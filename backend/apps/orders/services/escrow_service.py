"""
Escrow service - payment state bookkeeping for an order.
Tracks where the buyer's money stands; never moves money itself.
"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple
from django.db import transaction
from django.utils import timezone
from apps.orders.exceptions import GuardFailed, InvalidTransition
from apps.orders.models import (
    AdminDecision,
    LifecycleState,
    Order,
    OrderIntent,
    PAYMENT_MILESTONE_FIELDS,
    PaymentState,
)
from apps.orders.services import intent_router
from apps.orders.services.base import WorkflowService
from apps.orders.services.policy import Action, Actor
from apps.orders.services.qc_service import QCService

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


class EscrowService(WorkflowService):
    """
    Payment tracker: initiated -> held -> releasable -> released,
    with refunded as a side exit from any unsettled state.
    """

    UPFRONT_PERCENT = Decimal('55')

    PAYMENT_TRANSITIONS = {
        PaymentState.INITIATED: [PaymentState.HELD, PaymentState.REFUNDED],
        PaymentState.HELD: [PaymentState.RELEASABLE, PaymentState.REFUNDED],
        PaymentState.RELEASABLE: [PaymentState.RELEASED, PaymentState.REFUNDED],
        PaymentState.RELEASED: [],  # Terminal state
        PaymentState.REFUNDED: [],  # Terminal state
    }

    AUDIT_EVENTS = {
        PaymentState.HELD: 'payment_held',
        PaymentState.RELEASABLE: 'payment_releasable',
        PaymentState.RELEASED: 'payment_released',
        PaymentState.REFUNDED: 'payment_refunded',
    }

    @classmethod
    def can_transition(cls, from_state: str, to_state: str) -> bool:
        return to_state in cls.PAYMENT_TRANSITIONS.get(from_state, [])

    @classmethod
    def calculate_split(cls, total) -> Tuple[Decimal, Decimal]:
        """
        Split a total into upfront (55%) and final (45%) amounts.
        Both rounded to cents; they always add up to the total.
        """
        total = Decimal(str(total)).quantize(CENTS, rounding=ROUND_HALF_UP)
        upfront = (total * cls.UPFRONT_PERCENT / Decimal('100')).quantize(CENTS, rounding=ROUND_HALF_UP)
        return upfront, total - upfront

    @classmethod
    def payment_patch(cls, order: Order, to_state: str, now) -> dict:
        """Field changes for moving the payment state, timestamp included."""
        patch = {'payment_state': to_state}
        patch.update(cls.stamp(order, PAYMENT_MILESTONE_FIELDS.get(to_state), now))
        return patch

    @classmethod
    def payment_entry(cls, order: Order, to_state: str, **metadata):
        metadata.update({
            'from_payment_state': order.payment_state,
            'to_payment_state': to_state,
            'lifecycle_state': order.lifecycle_state,
        })
        return cls.AUDIT_EVENTS[to_state], metadata

    def _move(self, order_id, actor: Actor, action: str, to_state: str, **metadata) -> Order:
        self.authorize(actor, action)

        with transaction.atomic():
            order = self.repository.get(order_id, for_update=True)

            if not self.can_transition(order.payment_state, to_state):
                raise InvalidTransition(
                    f"Cannot move payment from {order.payment_state} to {to_state}",
                    details={'payment_state': order.payment_state, 'to_payment_state': to_state}
                )

            if to_state == PaymentState.RELEASABLE:
                self.check_final_qc_approved(order)

            now = timezone.now()
            entry = self.payment_entry(order, to_state, **metadata)
            self.commit(order, actor, self.payment_patch(order, to_state, now), [entry], now)

        logger.info("Order %s payment -> %s by %s", order.pk, to_state, actor.actor_id)
        return order

    @staticmethod
    def check_final_qc_approved(order: Order) -> None:
        """Money becomes releasable only after the intent's final QC passed."""
        if order.intent == OrderIntent.SAMPLE_ONLY:
            reached = order.lifecycle_state == LifecycleState.SAMPLE_COMPLETED
        else:
            reached = order.lifecycle_state in (LifecycleState.DELIVERED, LifecycleState.COMPLETED)

        latest = QCService.latest_round(order, intent_router.final_qc_stage(order.intent))
        if not reached or latest is None or latest.admin_decision != AdminDecision.APPROVED:
            raise GuardFailed(
                "Final QC is not approved yet",
                details={'lifecycle_state': order.lifecycle_state}
            )

    def hold(self, order_id, actor: Actor) -> Order:
        """initiated -> held (buyer's upfront money is in escrow)."""
        return self._move(order_id, actor, Action.HOLD_PAYMENT, PaymentState.HELD)

    def mark_releasable(self, order_id, actor: Actor) -> Order:
        """held -> releasable once the final QC is approved."""
        return self._move(order_id, actor, Action.MARK_PAYMENT_RELEASABLE, PaymentState.RELEASABLE)

    def release(self, order_id, actor: Actor) -> Order:
        return self._move(order_id, actor, Action.RELEASE_PAYMENT, PaymentState.RELEASED)

    def refund(self, order_id, actor: Actor, reason: str = "") -> Order:
        """Side exit; halts the lifecycle of the order."""
        return self._move(order_id, actor, Action.REFUND_PAYMENT, PaymentState.REFUNDED, reason=reason)
