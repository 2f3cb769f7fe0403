"""
Audit models - append-only order history.
Every lifecycle, QC and payment event of an order lands here.
"""
from django.core.exceptions import ValidationError
from django.db import models


class AuditEventQuerySet(models.QuerySet):
    """Queryset without bulk mutation."""

    def update(self, **kwargs):
        raise ValidationError("Audit events are append-only")

    def delete(self):
        raise ValidationError("Audit events are append-only")


class AuditEvent(models.Model):
    """
    Immutable record of one order event.
    Canonical history order within an order is (created_at, id).
    """
    # Actor roles (mirrors accounts.User.Role, plus automated actions)
    ADMIN = 'ADMIN'
    BUYER = 'BUYER'
    MANUFACTURER = 'MANUFACTURER'
    SYSTEM = 'SYSTEM'

    ACTOR_ROLE_CHOICES = [
        (ADMIN, 'Admin'),
        (BUYER, 'Buyer'),
        (MANUFACTURER, 'Manufacturer'),
        (SYSTEM, 'System'),
    ]

    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.CASCADE,
        related_name='audit_events'
    )
    event_type = models.CharField(max_length=50, db_index=True)
    actor_role = models.CharField(max_length=20, choices=ACTOR_ROLE_CHOICES)
    actor_id = models.CharField(max_length=64, blank=True)
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Additional context data (from/to state, QC round, reasons)"
    )
    created_at = models.DateTimeField(db_index=True)

    objects = AuditEventQuerySet.as_manager()

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name = 'Audit Event'
        verbose_name_plural = 'Audit Events'
        indexes = [
            models.Index(fields=['order', 'created_at'], name='audit_order_created_idx'),
        ]

    def __str__(self):
        return f"{self.order_id}: {self.event_type} by {self.actor_role} at {self.created_at}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Audit events are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Audit events are append-only")

    @property
    def from_state(self):
        return self.metadata.get('from_state')

    @property
    def to_state(self):
        return self.metadata.get('to_state')
