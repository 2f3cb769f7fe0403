"""
Tests for the payment/escrow tracker.
"""
from decimal import Decimal
from django.test import SimpleTestCase
from apps.audit.models import AuditEvent
from apps.orders.exceptions import GuardFailed, InvalidTransition, Unauthorized
from apps.orders.models import LifecycleState as S, OrderIntent, PaymentState
from apps.orders.services.escrow_service import EscrowService
from apps.orders.tests.base import BaseOrderTestCase


class SplitTestCase(SimpleTestCase):

    def test_split_is_55_45(self):
        self.assertEqual(EscrowService.calculate_split(Decimal('1000.00')), (Decimal('550.00'), Decimal('450.00')))

    def test_split_rounds_to_cents_and_sums_to_total(self):
        upfront, final = EscrowService.calculate_split('999.99')

        self.assertEqual(upfront, Decimal('549.99'))
        self.assertEqual(upfront + final, Decimal('999.99'))

    def test_payment_transitions(self):
        self.assertTrue(EscrowService.can_transition(PaymentState.INITIATED, PaymentState.HELD))
        self.assertTrue(EscrowService.can_transition(PaymentState.RELEASABLE, PaymentState.REFUNDED))
        self.assertFalse(EscrowService.can_transition(PaymentState.INITIATED, PaymentState.RELEASED))
        self.assertFalse(EscrowService.can_transition(PaymentState.RELEASED, PaymentState.REFUNDED))


class EscrowServiceTestCase(BaseOrderTestCase):

    def test_hold(self):
        order = self.create_order()

        order = self.escrow.hold(order.pk, self.admin)

        order = self.reload(order)
        self.assertEqual(order.payment_state, PaymentState.HELD)
        self.assertIsNotNone(order.payment_held_at)
        event = AuditEvent.objects.get(order=order, event_type='payment_held')
        self.assertEqual(event.metadata['from_payment_state'], PaymentState.INITIATED)
        self.assertEqual(event.created_at, order.payment_held_at)

    def test_only_admin_moves_payment(self):
        order = self.create_order()

        with self.assertRaises(Unauthorized):
            self.escrow.hold(order.pk, self.buyer_actor)

    def test_release_requires_releasable(self):
        order = self.drive_to(self.create_order(), S.PAYMENT_CONFIRMED)

        with self.assertRaises(InvalidTransition):
            self.escrow.release(order.pk, self.admin)

    def test_mark_releasable_requires_final_qc(self):
        order = self.drive_to(self.create_order(), S.SAMPLE_APPROVED)

        with self.assertRaises(GuardFailed):
            self.escrow.mark_releasable(order.pk, self.admin)

        self.assertEqual(self.reload(order).payment_state, PaymentState.HELD)

    def test_sample_only_becomes_releasable_after_completion(self):
        order = self.drive_to(self.create_order(OrderIntent.SAMPLE_ONLY), S.SAMPLE_COMPLETED)

        self.escrow.mark_releasable(order.pk, self.admin)
        self.escrow.release(order.pk, self.admin)

        order = self.reload(order)
        self.assertEqual(order.payment_state, PaymentState.RELEASED)
        self.assertEqual(order.lifecycle_state, S.SAMPLE_COMPLETED)
        self.assertIsNotNone(order.payment_releasable_at)
        self.assertIsNotNone(order.payment_released_at)

    def test_refund_records_reason(self):
        order = self.drive_to(self.create_order(), S.SAMPLE_IN_PROGRESS)

        self.escrow.refund(order.pk, self.admin, reason="Manufacturer shut down")

        order = self.reload(order)
        self.assertEqual(order.payment_state, PaymentState.REFUNDED)
        self.assertIsNotNone(order.refunded_at)
        event = AuditEvent.objects.get(order=order, event_type='payment_refunded')
        self.assertEqual(event.metadata['reason'], "Manufacturer shut down")

    def test_no_refund_after_release(self):
        order = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.COMPLETED)

        with self.assertRaises(InvalidTransition):
            self.escrow.refund(order.pk, self.admin)

    def test_refund_twice(self):
        order = self.create_order()
        self.escrow.refund(order.pk, self.admin)

        with self.assertRaises(InvalidTransition):
            self.escrow.refund(order.pk, self.admin)
