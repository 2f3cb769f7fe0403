"""
Audit admin configuration.
"""
from django.contrib import admin
from apps.audit.models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ['order', 'event_type', 'actor_role', 'actor_id', 'created_at']
    list_filter = ['event_type', 'actor_role', 'created_at']
    search_fields = ['order__id', 'event_type', 'actor_id']
    readonly_fields = ['id', 'order', 'event_type', 'actor_role', 'actor_id', 'metadata', 'created_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
