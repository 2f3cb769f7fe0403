"""
Order permissions.
"""
from rest_framework import permissions


class IsOrderParticipantOrAdmin(permissions.BasePermission):
    """
    Permission: User must be the buyer, the assigned manufacturer, or an admin.
    """
    def has_object_permission(self, request, view, obj):
        if request.user.role == 'ADMIN':
            return True
        return obj.is_participant(request.user.pk)
