"""
Order admin configuration.
Read-only: every change goes through the state machine.
"""
from django.contrib import admin
from apps.orders.models import Order, QCRecord


class QCRecordInline(admin.TabularInline):
    model = QCRecord
    extra = 0
    readonly_fields = [
        'stage', 'round_number', 'submitted_by', 'decision', 'defect_type',
        'defect_severity', 'admin_decision', 'admin_decision_by', 'admin_decided_at', 'created_at'
    ]
    fields = readonly_fields
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'buyer', 'manufacturer', 'intent', 'lifecycle_state', 'payment_state', 'total_amount', 'created_at']
    list_filter = ['intent', 'lifecycle_state', 'payment_state', 'created_at']
    search_fields = ['id', 'buyer__email', 'manufacturer__email', 'tracking_id']
    inlines = [QCRecordInline]

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(QCRecord)
class QCRecordAdmin(admin.ModelAdmin):
    list_display = ['id', 'order', 'stage', 'round_number', 'decision', 'admin_decision', 'created_at']
    list_filter = ['stage', 'admin_decision', 'defect_type']
    search_fields = ['order__id']

    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
