"""
Orders models - production order lifecycle, QC rounds.
The lifecycle state is the single source of truth; milestone timestamps are
write-once annotations of the first time each milestone was reached.
"""
import uuid
from decimal import Decimal
from django.db import models
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from apps.accounts.models import User


class OrderIntent(models.TextChoices):
    SAMPLE_ONLY = 'sample_only', 'Sample only'
    SAMPLE_THEN_BULK = 'sample_then_bulk', 'Sample then bulk'
    DIRECT_BULK = 'direct_bulk', 'Direct bulk'


class LifecycleState(models.TextChoices):
    DRAFT = 'DRAFT', 'Draft'
    SUBMITTED = 'SUBMITTED', 'Submitted'
    ADMIN_APPROVED = 'ADMIN_APPROVED', 'Admin Approved'
    MANUFACTURER_ASSIGNED = 'MANUFACTURER_ASSIGNED', 'Manufacturer Assigned'
    PAYMENT_REQUESTED = 'PAYMENT_REQUESTED', 'Payment Requested'
    PAYMENT_CONFIRMED = 'PAYMENT_CONFIRMED', 'Payment Confirmed'
    SAMPLE_IN_PROGRESS = 'SAMPLE_IN_PROGRESS', 'Sample In Progress'
    SAMPLE_QC_UPLOADED = 'SAMPLE_QC_UPLOADED', 'Sample QC Uploaded'
    SAMPLE_APPROVED = 'SAMPLE_APPROVED', 'Sample Approved'
    BULK_UNLOCKED = 'BULK_UNLOCKED', 'Bulk Unlocked'
    BULK_IN_PRODUCTION = 'BULK_IN_PRODUCTION', 'Bulk In Production'
    BULK_QC_UPLOADED = 'BULK_QC_UPLOADED', 'Bulk QC Uploaded'
    READY_FOR_DISPATCH = 'READY_FOR_DISPATCH', 'Ready for Dispatch'
    DISPATCHED = 'DISPATCHED', 'Dispatched'
    DELIVERED = 'DELIVERED', 'Delivered'
    COMPLETED = 'COMPLETED', 'Completed'
    SAMPLE_COMPLETED = 'SAMPLE_COMPLETED', 'Sample Completed'


class PaymentState(models.TextChoices):
    INITIATED = 'initiated', 'Payment Pending'
    HELD = 'held', 'In Escrow'
    RELEASABLE = 'releasable', 'Ready for Release'
    RELEASED = 'released', 'Released'
    REFUNDED = 'refunded', 'Refunded'


TERMINAL_STATES = frozenset({
    LifecycleState.COMPLETED,
    LifecycleState.SAMPLE_COMPLETED,
})

# Lifecycle state -> write-once milestone timestamp field
MILESTONE_FIELDS = {
    LifecycleState.SUBMITTED: 'submitted_at',
    LifecycleState.ADMIN_APPROVED: 'admin_approved_at',
    LifecycleState.MANUFACTURER_ASSIGNED: 'manufacturer_assigned_at',
    LifecycleState.PAYMENT_REQUESTED: 'payment_requested_at',
    LifecycleState.PAYMENT_CONFIRMED: 'payment_confirmed_at',
    LifecycleState.SAMPLE_IN_PROGRESS: 'sample_started_at',
    LifecycleState.SAMPLE_QC_UPLOADED: 'sample_qc_uploaded_at',
    LifecycleState.SAMPLE_APPROVED: 'sample_approved_at',
    LifecycleState.BULK_UNLOCKED: 'bulk_unlocked_at',
    LifecycleState.BULK_IN_PRODUCTION: 'bulk_started_at',
    LifecycleState.BULK_QC_UPLOADED: 'bulk_qc_uploaded_at',
    LifecycleState.READY_FOR_DISPATCH: 'ready_for_dispatch_at',
    LifecycleState.DISPATCHED: 'dispatched_at',
    LifecycleState.DELIVERED: 'delivered_at',
    LifecycleState.COMPLETED: 'completed_at',
    LifecycleState.SAMPLE_COMPLETED: 'completed_at',
}

PAYMENT_MILESTONE_FIELDS = {
    PaymentState.HELD: 'payment_held_at',
    PaymentState.RELEASABLE: 'payment_releasable_at',
    PaymentState.RELEASED: 'payment_released_at',
    PaymentState.REFUNDED: 'refunded_at',
}


class Order(models.Model):
    """
    Core production order with lifecycle state machine.
    Owned by the platform; buyer and manufacturer are participants.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Participants
    buyer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,  # Don't delete users with orders
        related_name='orders'
    )
    manufacturer = models.ForeignKey(
        User,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='production_orders',
        help_text="Currently assigned manufacturer (at most one)"
    )

    # Classification
    intent = models.CharField(max_length=20, choices=OrderIntent.choices)

    # State
    lifecycle_state = models.CharField(
        max_length=30,
        choices=LifecycleState.choices,
        default=LifecycleState.DRAFT,
        db_index=True
    )
    payment_state = models.CharField(
        max_length=20,
        choices=PaymentState.choices,
        default=PaymentState.INITIATED,
        db_index=True
    )

    # Product specification
    product_type = models.CharField(max_length=100, blank=True)
    fabric_type = models.CharField(max_length=100, blank=True)
    color = models.CharField(max_length=50, blank=True)
    quantity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(100000)]
    )
    buyer_notes = models.TextField(blank=True, max_length=2000)
    shipping_address = models.TextField(blank=True)

    # Money (bookkeeping only)
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00')
    )
    upfront_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="55% of the total, paid into escrow before production"
    )
    final_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="45% of the total, settled on completion"
    )

    # Dispatch
    courier_name = models.CharField(max_length=100, blank=True)
    tracking_id = models.CharField(max_length=100, blank=True)

    # Lifecycle milestones (write-once)
    submitted_at = models.DateTimeField(null=True, blank=True)
    admin_approved_at = models.DateTimeField(null=True, blank=True)
    manufacturer_assigned_at = models.DateTimeField(null=True, blank=True)
    payment_requested_at = models.DateTimeField(null=True, blank=True)
    payment_confirmed_at = models.DateTimeField(null=True, blank=True)
    sample_started_at = models.DateTimeField(null=True, blank=True)
    sample_qc_uploaded_at = models.DateTimeField(null=True, blank=True)
    sample_approved_at = models.DateTimeField(null=True, blank=True)
    bulk_unlocked_at = models.DateTimeField(null=True, blank=True)
    bulk_started_at = models.DateTimeField(null=True, blank=True)
    bulk_qc_uploaded_at = models.DateTimeField(null=True, blank=True)
    ready_for_dispatch_at = models.DateTimeField(null=True, blank=True)
    dispatched_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    # Payment milestones (write-once)
    payment_held_at = models.DateTimeField(null=True, blank=True)
    payment_releasable_at = models.DateTimeField(null=True, blank=True)
    payment_released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        indexes = [
            models.Index(fields=['buyer', 'lifecycle_state'], name='orders_buyer_state_idx'),
            models.Index(fields=['manufacturer', 'lifecycle_state'], name='orders_mfg_state_idx'),
        ]

    def __str__(self):
        return f"Order {self.id} - {self.lifecycle_state}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored_intent = (
                Order.objects.filter(pk=self.pk)
                .values_list('intent', flat=True)
                .first()
            )
            if stored_intent is not None and stored_intent != self.intent:
                raise ValidationError("Order intent is fixed at creation")
        super().save(*args, **kwargs)

    def is_buyer(self, actor_id):
        """Check if the actor is the owning buyer."""
        return str(self.buyer_id) == str(actor_id)

    def is_manufacturer(self, actor_id):
        """Check if the actor is the assigned manufacturer."""
        return self.manufacturer_id is not None and str(self.manufacturer_id) == str(actor_id)

    def is_participant(self, actor_id):
        return self.is_buyer(actor_id) or self.is_manufacturer(actor_id)

    @property
    def is_terminal(self):
        return self.lifecycle_state in TERMINAL_STATES

    @property
    def is_refunded(self):
        return self.payment_state == PaymentState.REFUNDED


class QCStage(models.TextChoices):
    SAMPLE = 'sample', 'Sample'
    BULK = 'bulk', 'Bulk'


class SubmitterDecision(models.TextChoices):
    APPROVE = 'approve', 'Approve'
    REJECT = 'reject', 'Reject'


class AdminDecision(models.TextChoices):
    PENDING = 'pending', 'Pending'
    APPROVED = 'approved', 'Approved'
    REJECTED = 'rejected', 'Rejected'


class DefectType(models.TextChoices):
    NONE = 'none', 'No defect'
    PRINT_DEFECT = 'print_defect', 'Print defect'
    STITCHING_DEFECT = 'stitching_defect', 'Stitching defect'
    SIZE_MISMATCH = 'size_mismatch', 'Size mismatch'
    COLOR_MISMATCH = 'color_mismatch', 'Color mismatch'
    FABRIC_ISSUE = 'fabric_issue', 'Fabric issue'
    PACKAGING_ISSUE = 'packaging_issue', 'Packaging issue'
    OTHER = 'other', 'Other'


class QCRecord(models.Model):
    """
    One upload-then-decide review round for a production stage.
    The admin decision gates the lifecycle; the submitter decision is advisory.
    Frozen once the admin decision is final.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name='qc_records'
    )
    stage = models.CharField(max_length=10, choices=QCStage.choices)
    round_number = models.PositiveIntegerField(default=1)

    # Evidence (opaque object-storage references)
    file_refs = models.JSONField(default=list, blank=True)

    # Submitter self-assessment
    submitted_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='qc_submissions'
    )
    decision = models.CharField(
        max_length=10,
        choices=SubmitterDecision.choices,
        null=True,
        blank=True
    )
    defect_type = models.CharField(
        max_length=30,
        choices=DefectType.choices,
        null=True,
        blank=True
    )
    defect_severity = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    notes = models.TextField(blank=True)

    # Authoritative decision
    admin_decision = models.CharField(
        max_length=10,
        choices=AdminDecision.choices,
        default=AdminDecision.PENDING,
        db_index=True
    )
    admin_decision_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='qc_decisions'
    )
    admin_decided_at = models.DateTimeField(null=True, blank=True)
    admin_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ['order', 'stage', 'round_number']
        verbose_name = 'QC Record'
        verbose_name_plural = 'QC Records'
        constraints = [
            models.UniqueConstraint(
                fields=['order', 'stage'],
                condition=models.Q(admin_decision='pending'),
                name='unique_pending_qc_round',
            ),
            models.UniqueConstraint(
                fields=['order', 'stage', 'round_number'],
                name='unique_qc_round_number',
            ),
        ]

    def __str__(self):
        return f"QC {self.stage} #{self.round_number} for Order {self.order_id} - {self.admin_decision}"

    @property
    def is_pending(self):
        return self.admin_decision == AdminDecision.PENDING

    def save(self, *args, **kwargs):
        if not self._state.adding:
            stored_decision = (
                QCRecord.objects.filter(pk=self.pk)
                .values_list('admin_decision', flat=True)
                .first()
            )
            if stored_decision is not None and stored_decision != AdminDecision.PENDING:
                raise ValidationError("QC record is final and cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if not self.is_pending:
            raise ValidationError("QC record is final and cannot be deleted")
        return super().delete(*args, **kwargs)
