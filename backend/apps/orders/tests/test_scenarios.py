"""
End-to-end lifecycle scenarios and cross-cutting properties.
"""
from apps.audit.logging_utils import AuditLogger
from apps.orders.exceptions import AlreadyDecided, InvalidTransition
from apps.orders.models import AdminDecision, LifecycleState as S, OrderIntent, PaymentState, QCRecord
from apps.orders.services import intent_router
from apps.orders.services.qc_service import QCService
from apps.orders.services.reconciliation import reconcile_order
from apps.orders.tests.base import BaseOrderTestCase


class LifecycleScenarioTestCase(BaseOrderTestCase):

    def assert_consistent(self, order):
        """History stays on the intent path and matches the timestamps."""
        visited = AuditLogger.visited_states(order)
        self.assertTrue(intent_router.is_valid_history(order.intent, visited), visited)
        report = reconcile_order(self.reload(order))
        self.assertTrue(report.is_clean, [str(d) for d in report.discrepancies])

    def test_sample_only_happy_path(self):
        order = self.create_order(OrderIntent.SAMPLE_ONLY)
        order = self.drive_to(order, S.SAMPLE_QC_UPLOADED)
        record = self.pending_qc(order, 'sample')

        order = self.machine.admin_decide(record.pk, self.admin, 'approve')

        order = self.reload(order)
        self.assertEqual(order.lifecycle_state, S.SAMPLE_COMPLETED)
        self.assertIsNotNone(order.sample_approved_at)
        self.assertIsNotNone(order.completed_at)
        self.assertIsNone(order.bulk_unlocked_at)

        event_types = [event.event_type for event in AuditLogger.history(order)][-2:]
        self.assertEqual(event_types, ['qc_approved', 'sample_completed'])

        record.refresh_from_db()
        self.assertEqual(record.admin_decision, AdminDecision.APPROVED)
        self.assert_consistent(order)

    def test_direct_bulk_skips_sample(self):
        order = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.PAYMENT_CONFIRMED)

        order = self.machine.start_production(order.pk, self.mfg)
        self.assertEqual(order.lifecycle_state, S.BULK_IN_PRODUCTION)

        order = self.drive_to(self.reload(order), S.COMPLETED)

        self.assertFalse(QCRecord.objects.filter(order=order, stage='sample').exists())
        self.assertEqual(order.payment_state, PaymentState.RELEASED)
        self.assertIsNone(order.sample_started_at)
        self.assert_consistent(order)

    def test_sample_rejection_then_second_round(self):
        order = self.drive_to(self.create_order(OrderIntent.SAMPLE_THEN_BULK), S.SAMPLE_QC_UPLOADED)
        first = self.pending_qc(order, 'sample')

        order = self.machine.admin_decide(
            first.pk, self.admin, 'reject',
            defect_type='print_defect', defect_severity=3,
            notes="Logo print cracked after wash"
        )
        self.assertEqual(order.lifecycle_state, S.SAMPLE_IN_PROGRESS)
        self.assertEqual(QCService.attempt_count(order, 'sample'), 1)

        second = self.machine.upload_qc(order.pk, self.mfg, file_refs=['qc/sample-v2.jpg'])
        order = self.machine.admin_decide(second.pk, self.admin, 'approve')

        self.assertEqual(order.lifecycle_state, S.SAMPLE_APPROVED)
        self.assertEqual(second.round_number, 2)
        self.assertEqual(QCService.attempt_count(order, 'sample'), 2)
        first.refresh_from_db()
        self.assertEqual(first.admin_decision, AdminDecision.REJECTED)
        self.assertEqual(first.defect_severity, 3)

        order = self.drive_to(self.reload(order), S.COMPLETED)
        self.assert_consistent(order)

    def test_bulk_rejection_regresses_to_production(self):
        order = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.BULK_QC_UPLOADED)

        order = self.machine.admin_decide(
            self.pending_qc(order, 'bulk').pk, self.admin, 'reject', notes="Cartons short by 20"
        )

        self.assertEqual(order.lifecycle_state, S.BULK_IN_PRODUCTION)
        order = self.drive_to(self.reload(order), S.COMPLETED)
        self.assertEqual(QCService.attempt_count(order, 'bulk'), 2)
        self.assert_consistent(order)

    def test_already_decided_record_leaves_state_unchanged(self):
        order = self.drive_to(self.create_order(OrderIntent.SAMPLE_THEN_BULK), S.SAMPLE_QC_UPLOADED)
        record = self.pending_qc(order, 'sample')
        self.machine.admin_decide(record.pk, self.admin, 'approve')
        before = self.reload(order)

        with self.assertRaises(AlreadyDecided):
            self.machine.admin_decide(record.pk, self.admin, 'approve')

        after = self.reload(order)
        self.assertEqual(after.lifecycle_state, S.SAMPLE_APPROVED)
        self.assertEqual(after.updated_at, before.updated_at)


class LifecyclePropertiesTestCase(BaseOrderTestCase):

    def test_sample_only_never_unlocks_bulk(self):
        order = self.drive_to(self.create_order(OrderIntent.SAMPLE_ONLY), S.SAMPLE_COMPLETED)

        with self.assertRaises(InvalidTransition):
            self.machine.unlock_bulk(order.pk, self.admin)

        self.assertNotIn(S.BULK_UNLOCKED, AuditLogger.visited_states(order))

    def test_completed_requires_approved_final_qc_and_release(self):
        order = self.drive_to(self.create_order(OrderIntent.SAMPLE_THEN_BULK), S.COMPLETED)

        latest = QCService.latest_round(order, 'bulk')
        self.assertEqual(latest.admin_decision, AdminDecision.APPROVED)
        self.assertEqual(order.payment_state, PaymentState.RELEASED)

    def test_every_event_applies_once(self):
        order = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.DISPATCHED)
        self.machine.confirm_delivery(order.pk, self.buyer_actor)

        with self.assertRaises(InvalidTransition):
            self.machine.confirm_delivery(order.pk, self.buyer_actor)

        delivered = [e for e in AuditLogger.history(order) if e.event_type == 'delivered']
        self.assertEqual(len(delivered), 1)

    def test_milestones_are_write_once(self):
        order = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.BULK_QC_UPLOADED)
        first = self.reload(order)

        for _ in range(2):
            self.machine.admin_decide(self.pending_qc(order, 'bulk').pk, self.admin, 'reject', notes="Seams open at hem")
            self.machine.upload_qc(order.pk, self.mfg, file_refs=['qc/retry.jpg'])

        again = self.reload(order)
        self.assertEqual(again.bulk_started_at, first.bulk_started_at)
        self.assertEqual(again.bulk_qc_uploaded_at, first.bulk_qc_uploaded_at)
        self.assertEqual(QCService.attempt_count(order, 'bulk'), 3)
