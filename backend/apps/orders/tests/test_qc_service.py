"""
Tests for the QC decision store.
"""
from django.core.exceptions import ValidationError
from apps.orders.exceptions import AlreadyDecided, DuplicateOpenRound, GuardFailed, InvalidDefectData
from apps.orders.models import AdminDecision, LifecycleState as S, QCRecord
from apps.orders.services.qc_service import QCService
from apps.orders.tests.base import BaseOrderTestCase


class DefectValidationTestCase(BaseOrderTestCase):

    def test_no_defect_needs_no_severity(self):
        QCService.validate_defect_data(None, None)
        QCService.validate_defect_data('none', None)

    def test_named_defect_requires_severity(self):
        with self.assertRaises(InvalidDefectData):
            QCService.validate_defect_data('color_mismatch', None)

        QCService.validate_defect_data('color_mismatch', 2)

    def test_severity_without_defect(self):
        with self.assertRaises(InvalidDefectData):
            QCService.validate_defect_data('none', 3)
        with self.assertRaises(InvalidDefectData):
            QCService.validate_defect_data(None, 1)

    def test_severity_range(self):
        for severity in (0, 6, -1):
            with self.assertRaises(InvalidDefectData):
                QCService.validate_defect_data('print_defect', severity)
        with self.assertRaises(InvalidDefectData):
            QCService.validate_defect_data('print_defect', True)

    def test_unknown_defect_type(self):
        with self.assertRaises(InvalidDefectData) as ctx:
            QCService.validate_defect_data('loose_threads', 2)

        self.assertEqual(ctx.exception.http_status, 400)


class QCRoundTestCase(BaseOrderTestCase):

    def setUp(self):
        super().setUp()
        self.order = self.drive_to(self.create_order(), S.SAMPLE_IN_PROGRESS)

    def open_round(self, **kwargs):
        return QCService.open_round(
            self.order, 'sample',
            submitted_by=self.manufacturer.pk,
            file_refs=['qc/front.jpg'],
            **kwargs
        )

    def test_open_round_numbers_rounds(self):
        first = self.open_round()
        QCService.record_admin_decision(first, self.admin_user.pk, 'reject', notes="Sleeves uneven")

        second = self.open_round()

        self.assertEqual(first.round_number, 1)
        self.assertEqual(second.round_number, 2)
        self.assertEqual(QCService.attempt_count(self.order, 'sample'), 2)
        self.assertEqual(QCService.latest_round(self.order, 'sample'), second)
        self.assertEqual(QCService.pending_round(self.order, 'sample'), second)

    def test_duplicate_open_round(self):
        self.open_round()

        with self.assertRaises(DuplicateOpenRound):
            self.open_round()

        self.assertEqual(QCRecord.objects.filter(order=self.order).count(), 1)

    def test_open_round_unknown_stage(self):
        with self.assertRaises(GuardFailed):
            QCService.open_round(self.order, 'packing', file_refs=['a.jpg'])

    def test_submitter_decision_is_advisory(self):
        record = self.open_round()

        record = QCService.record_submitter_decision(
            record, 'reject', defect_type='size_mismatch', defect_severity=2, notes="XL runs small"
        )

        self.assertEqual(record.decision, 'reject')
        self.assertEqual(record.admin_decision, AdminDecision.PENDING)

    def test_submitter_decision_after_admin_decision(self):
        record = self.open_round()
        QCService.record_admin_decision(record, self.admin_user.pk, 'approve')

        with self.assertRaises(AlreadyDecided):
            QCService.record_submitter_decision(record, 'approve')

    def test_admin_decision_is_compare_and_set(self):
        record = self.open_round()
        stale_copy = QCRecord.objects.get(pk=record.pk)

        QCService.record_admin_decision(record, self.admin_user.pk, 'approve')

        with self.assertRaises(AlreadyDecided):
            QCService.record_admin_decision(stale_copy, self.admin_user.pk, 'reject', notes="Late second opinion")

        stale_copy.refresh_from_db()
        self.assertEqual(stale_copy.admin_decision, AdminDecision.APPROVED)

    def test_admin_decision_overrides_defect(self):
        record = self.open_round(decision='approve', defect_type='none')

        record = QCService.record_admin_decision(
            record, self.admin_user.pk, 'rejected', defect_type='fabric_issue', defect_severity=5,
            notes="Fabric pilling after wash"
        )

        self.assertEqual(record.admin_decision, AdminDecision.REJECTED)
        self.assertEqual(record.defect_type, 'fabric_issue')
        self.assertEqual(record.defect_severity, 5)
        self.assertEqual(record.decision, 'approve')

    def test_unknown_admin_decision(self):
        record = self.open_round()

        with self.assertRaises(GuardFailed):
            QCService.record_admin_decision(record, self.admin_user.pk, 'maybe')

    def test_decided_record_is_immutable(self):
        record = self.open_round()
        record = QCService.record_admin_decision(record, self.admin_user.pk, 'approve')

        record.notes = "edited later"
        with self.assertRaises(ValidationError):
            record.save()
        with self.assertRaises(ValidationError):
            record.delete()
