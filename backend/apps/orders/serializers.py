"""
Order serializers.
Handles API input/output for order operations.
"""
from rest_framework import serializers
from apps.audit.models import AuditEvent
from apps.orders.models import DefectType, Order, OrderIntent, QCRecord, SubmitterDecision
from apps.orders.services.qc_service import QCService
from apps.orders.services.state_machine import StateMachine


class QCRecordSerializer(serializers.ModelSerializer):
    """Serializer for QC rounds."""
    submitted_by_email = serializers.EmailField(source='submitted_by.email', read_only=True, default=None)

    class Meta:
        model = QCRecord
        fields = [
            'id', 'stage', 'round_number', 'file_refs', 'submitted_by_email',
            'decision', 'defect_type', 'defect_severity', 'notes',
            'admin_decision', 'admin_decided_at', 'admin_notes', 'created_at'
        ]
        read_only_fields = fields


class AuditEventSerializer(serializers.ModelSerializer):
    """Serializer for order history entries."""

    class Meta:
        model = AuditEvent
        fields = ['id', 'event_type', 'actor_role', 'actor_id', 'metadata', 'created_at']
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Serializer for order list view."""
    buyer_email = serializers.EmailField(source='buyer.email', read_only=True)
    manufacturer_email = serializers.EmailField(source='manufacturer.email', read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            'id', 'buyer_email', 'manufacturer_email', 'intent',
            'lifecycle_state', 'payment_state', 'product_type', 'quantity',
            'total_amount', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderDetailSerializer(serializers.ModelSerializer):
    """Serializer for detailed order view."""
    buyer_email = serializers.EmailField(source='buyer.email', read_only=True)
    manufacturer_id = serializers.CharField(read_only=True, allow_null=True)
    manufacturer_email = serializers.EmailField(source='manufacturer.email', read_only=True, default=None)
    qc_records = QCRecordSerializer(many=True, read_only=True)
    available_events = serializers.SerializerMethodField()
    progress = serializers.SerializerMethodField()
    qc_attempts = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            'id', 'buyer_email', 'manufacturer_id', 'manufacturer_email',
            'intent', 'lifecycle_state', 'payment_state',
            'product_type', 'fabric_type', 'color', 'quantity',
            'buyer_notes', 'shipping_address',
            'total_amount', 'upfront_amount', 'final_amount',
            'courier_name', 'tracking_id',
            'submitted_at', 'admin_approved_at', 'manufacturer_assigned_at',
            'payment_requested_at', 'payment_confirmed_at',
            'sample_started_at', 'sample_qc_uploaded_at', 'sample_approved_at',
            'bulk_unlocked_at', 'bulk_started_at', 'bulk_qc_uploaded_at',
            'ready_for_dispatch_at', 'dispatched_at', 'delivered_at', 'completed_at',
            'payment_held_at', 'payment_releasable_at', 'payment_released_at', 'refunded_at',
            'created_at', 'updated_at',
            'qc_records', 'qc_attempts', 'available_events', 'progress'
        ]
        read_only_fields = fields

    def get_available_events(self, obj):
        return StateMachine.available_events(obj)

    def get_progress(self, obj):
        return StateMachine.state_progress(obj)

    def get_qc_attempts(self, obj):
        return {
            'sample': QCService.attempt_count(obj, 'sample'),
            'bulk': QCService.attempt_count(obj, 'bulk'),
        }


class CreateOrderSerializer(serializers.Serializer):
    """Serializer for creating a draft order."""
    intent = serializers.ChoiceField(choices=OrderIntent.choices)
    product_type = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    fabric_type = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    color = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1, max_value=100000, required=False, default=1)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False, default=0)
    buyer_notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, default="")
    shipping_address = serializers.CharField(required=False, allow_blank=True, default="")


class UpdateOrderSerializer(serializers.Serializer):
    """Serializer for editing draft fields; locks are enforced by the service."""
    product_type = serializers.CharField(max_length=100, required=False, allow_blank=True)
    fabric_type = serializers.CharField(max_length=100, required=False, allow_blank=True)
    color = serializers.CharField(max_length=50, required=False, allow_blank=True)
    quantity = serializers.IntegerField(min_value=1, max_value=100000, required=False)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=0, required=False)
    buyer_notes = serializers.CharField(max_length=2000, required=False, allow_blank=True)
    shipping_address = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError("No editable fields supplied")
        return attrs


class TransitionSerializer(serializers.Serializer):
    """Parameters for lifecycle events; each event reads the ones it needs."""
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
    manufacturer_id = serializers.CharField(max_length=64, required=False)
    payment_reference = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    file_refs = serializers.ListField(
        child=serializers.CharField(max_length=500),
        required=False,
        default=list,
        help_text="Object-storage references of QC photos/videos"
    )
    decision = serializers.ChoiceField(choices=SubmitterDecision.choices, required=False, allow_null=True, default=None)
    defect_type = serializers.ChoiceField(choices=DefectType.choices, required=False, allow_null=True, default=None)
    defect_severity = serializers.IntegerField(required=False, allow_null=True, default=None)
    tracking_id = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")
    courier_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default="")


class QCDecisionSerializer(serializers.Serializer):
    """Admin verdict (or submitter self-assessment) on a QC round."""
    decision = serializers.ChoiceField(choices=SubmitterDecision.choices)
    defect_type = serializers.ChoiceField(choices=DefectType.choices, required=False, allow_null=True, default=None)
    defect_severity = serializers.IntegerField(required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class PaymentActionSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
