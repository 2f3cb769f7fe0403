"""
QC decision store.
One record per upload-then-decide round; the admin decision is the only
value that moves the lifecycle.
"""
import logging
from datetime import datetime
from typing import List, Optional
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone
from apps.orders.exceptions import (
    AlreadyDecided,
    DuplicateOpenRound,
    GuardFailed,
    InvalidDefectData,
    NotFound,
)
from apps.orders.models import (
    AdminDecision,
    DefectType,
    QCRecord,
    QCStage,
    SubmitterDecision,
)

logger = logging.getLogger(__name__)

# Accepted spellings of an admin verdict
ADMIN_VERDICTS = {
    SubmitterDecision.APPROVE: AdminDecision.APPROVED,
    SubmitterDecision.REJECT: AdminDecision.REJECTED,
    AdminDecision.APPROVED: AdminDecision.APPROVED,
    AdminDecision.REJECTED: AdminDecision.REJECTED,
}


class QCService:
    """
    Manages QC rounds per (order, stage).
    """

    @staticmethod
    def validate_defect_data(defect_type: Optional[str], defect_severity: Optional[int]) -> None:
        """
        Severity is required exactly when a real defect is named.

        Raises:
            InvalidDefectData: Unknown type, missing/extra or out-of-range severity
        """
        if defect_type not in (None, '') and defect_type not in DefectType.values:
            raise InvalidDefectData(
                f"Unknown defect type: {defect_type}",
                details={'defect_type': defect_type}
            )

        names_defect = defect_type not in (None, '', DefectType.NONE)

        if names_defect and defect_severity is None:
            raise InvalidDefectData(
                "Defect severity is required when a defect is named",
                details={'defect_type': defect_type}
            )
        if not names_defect and defect_severity is not None:
            raise InvalidDefectData(
                "Defect severity is only allowed together with a defect",
                details={'defect_severity': defect_severity}
            )
        if defect_severity is not None:
            if isinstance(defect_severity, bool) or not isinstance(defect_severity, int):
                raise InvalidDefectData("Defect severity must be an integer")
            if not 1 <= defect_severity <= 5:
                raise InvalidDefectData(
                    "Defect severity must be between 1 and 5",
                    details={'defect_severity': defect_severity}
                )

    @staticmethod
    def _validate_submitter_decision(decision: Optional[str]) -> None:
        if decision is not None and decision not in SubmitterDecision.values:
            raise GuardFailed(f"Unknown QC decision: {decision}", details={'decision': decision})

    @staticmethod
    def get(qc_record_id) -> QCRecord:
        """Raises NotFound for unknown or malformed ids."""
        try:
            return QCRecord.objects.get(pk=qc_record_id)
        except (QCRecord.DoesNotExist, ValidationError, ValueError):
            raise NotFound(
                f"QC record {qc_record_id} not found",
                details={'qc_record_id': str(qc_record_id)}
            )

    @staticmethod
    def open_round(
        order,
        stage: str,
        submitted_by=None,
        file_refs: Optional[List[str]] = None,
        decision: Optional[str] = None,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: str = ""
    ) -> QCRecord:
        """
        Open a new pending QC round.

        Args:
            order: Order instance
            stage: 'sample' or 'bulk'
            submitted_by: User id of the uploader
            file_refs: Opaque object-storage references
            decision: Optional submitter self-assessment

        Raises:
            DuplicateOpenRound: A pending round already exists for this stage
            InvalidDefectData: Bad defect classification
        """
        if stage not in QCStage.values:
            raise GuardFailed(f"Unknown QC stage: {stage}", details={'stage': stage})

        QCService._validate_submitter_decision(decision)
        QCService.validate_defect_data(defect_type, defect_severity)

        if QCRecord.objects.filter(order=order, stage=stage, admin_decision=AdminDecision.PENDING).exists():
            raise DuplicateOpenRound(
                f"A {stage} QC round is already awaiting a decision",
                details={'order_id': str(order.pk), 'stage': stage}
            )

        round_number = QCRecord.objects.filter(order=order, stage=stage).count() + 1

        record = QCRecord(
            order=order,
            stage=stage,
            round_number=round_number,
            file_refs=list(file_refs or []),
            submitted_by_id=submitted_by,
            decision=decision,
            defect_type=defect_type or None,
            defect_severity=defect_severity,
            notes=notes or "",
        )

        # Savepoint so a lost race on the partial unique index leaves the
        # outer transaction usable.
        try:
            with transaction.atomic():
                record.save(force_insert=True)
        except IntegrityError:
            raise DuplicateOpenRound(
                f"A {stage} QC round is already awaiting a decision",
                details={'order_id': str(order.pk), 'stage': stage}
            )

        logger.info("Opened %s QC round %s for order %s", stage, round_number, order.pk)
        return record

    @staticmethod
    def record_submitter_decision(
        record: QCRecord,
        decision: str,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: Optional[str] = None
    ) -> QCRecord:
        """
        Update the advisory self-assessment while the round is pending.

        Raises:
            AlreadyDecided: Admin decision already final
        """
        QCService._validate_submitter_decision(decision)
        QCService.validate_defect_data(defect_type, defect_severity)

        values = {
            'decision': decision,
            'defect_type': defect_type or None,
            'defect_severity': defect_severity,
        }
        if notes is not None:
            values['notes'] = notes

        rows = QCRecord.objects.filter(
            pk=record.pk,
            admin_decision=AdminDecision.PENDING
        ).update(**values)
        if rows == 0:
            raise AlreadyDecided(
                "QC record is already decided",
                details={'qc_record_id': str(record.pk)}
            )

        record.refresh_from_db()
        return record

    @staticmethod
    def record_admin_decision(
        record: QCRecord,
        admin_id,
        decision: str,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: str = "",
        decided_at: Optional[datetime] = None
    ) -> QCRecord:
        """
        Finalize a round. Compare-and-set from pending.

        Args:
            record: Pending QC record
            admin_id: Deciding admin user id
            decision: 'approve' / 'reject' (or 'approved' / 'rejected')
            defect_type: Optional override of the submitter classification
            defect_severity: Severity for the override
            notes: Admin notes (rejection reason)
            decided_at: Decision time

        Raises:
            GuardFailed: Unknown decision or too short rejection reason
            InvalidDefectData: Bad defect classification
            AlreadyDecided: Record no longer pending
        """
        verdict = QCService.admin_verdict(decision)

        if defect_type is not None or defect_severity is not None:
            QCService.validate_defect_data(defect_type, defect_severity)

        min_length = settings.ORDER_WORKFLOW.get('REJECTION_REASON_MIN_LENGTH', 10)
        if verdict == AdminDecision.REJECTED and len((notes or "").strip()) < min_length:
            raise GuardFailed(
                f"Rejection reason must be at least {min_length} characters",
                details={'min_length': min_length}
            )

        values = {
            'admin_decision': verdict,
            'admin_decision_by_id': admin_id,
            'admin_decided_at': decided_at or timezone.now(),
            'admin_notes': notes or "",
        }
        if defect_type is not None or defect_severity is not None:
            values['defect_type'] = defect_type or None
            values['defect_severity'] = defect_severity

        rows = QCRecord.objects.filter(
            pk=record.pk,
            admin_decision=AdminDecision.PENDING
        ).update(**values)
        if rows == 0:
            raise AlreadyDecided(
                "QC record is already decided",
                details={'qc_record_id': str(record.pk)}
            )

        record.refresh_from_db()
        logger.info("QC record %s %s by admin %s", record.pk, verdict, admin_id)
        return record

    @staticmethod
    def admin_verdict(decision: str) -> str:
        try:
            return ADMIN_VERDICTS[decision]
        except KeyError:
            raise GuardFailed(f"Unknown QC decision: {decision}", details={'decision': decision})

    @staticmethod
    def latest_round(order, stage: str) -> Optional[QCRecord]:
        return (
            QCRecord.objects.filter(order=order, stage=stage)
            .order_by('-round_number')
            .first()
        )

    @staticmethod
    def pending_round(order, stage: str) -> Optional[QCRecord]:
        return QCRecord.objects.filter(
            order=order,
            stage=stage,
            admin_decision=AdminDecision.PENDING
        ).first()

    @staticmethod
    def attempt_count(order, stage: str) -> int:
        """Number of rounds opened for the stage (1 + rejections so far)."""
        return QCRecord.objects.filter(order=order, stage=stage).count()

    @staticmethod
    def rounds(order, stage: Optional[str] = None) -> List[QCRecord]:
        queryset = QCRecord.objects.filter(order=order)
        if stage:
            queryset = queryset.filter(stage=stage)
        return list(queryset.order_by('stage', 'round_number'))
