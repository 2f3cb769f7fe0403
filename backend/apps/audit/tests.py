"""
Tests for the append-only audit log.
"""
from datetime import timedelta
from decimal import Decimal
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.test import TestCase
from django.utils import timezone
from apps.audit.logging_utils import AuditLogger
from apps.audit.models import AuditEvent
from apps.orders.models import Order

User = get_user_model()


class AuditLoggerTestCase(TestCase):

    def setUp(self):
        self.buyer = User.objects.create_user(email='buyer@example.com', password='TestPass123!')
        self.order = Order.objects.create(
            buyer=self.buyer,
            intent='sample_then_bulk',
            total_amount=Decimal('100.00'),
        )

    def append(self, event_type, created_at=None, **metadata):
        return AuditLogger.append(
            self.order, event_type, actor_role='BUYER', actor_id=self.buyer.pk,
            metadata=metadata, created_at=created_at
        )

    def test_append(self):
        event = self.append('submitted', from_state='DRAFT', to_state='SUBMITTED')

        self.assertEqual(event.order, self.order)
        self.assertEqual(event.actor_id, str(self.buyer.pk))
        self.assertEqual(event.from_state, 'DRAFT')
        self.assertEqual(event.to_state, 'SUBMITTED')

    def test_events_cannot_change(self):
        event = self.append('submitted', to_state='SUBMITTED')

        event.event_type = 'admin_approved'
        with self.assertRaises(ValidationError):
            event.save()
        with self.assertRaises(ValidationError):
            event.delete()
        with self.assertRaises(ValidationError):
            AuditEvent.objects.filter(order=self.order).update(event_type='x')
        with self.assertRaises(ValidationError):
            AuditEvent.objects.filter(order=self.order).delete()

        self.assertEqual(AuditEvent.objects.get(pk=event.pk).event_type, 'submitted')

    def test_history_order(self):
        now = timezone.now()
        late = self.append('admin_approved', created_at=now + timedelta(seconds=5))
        first = self.append('submitted', created_at=now)
        second = self.append('details_updated', created_at=now)

        self.assertEqual(AuditLogger.history(self.order), [first, second, late])

    def test_visited_states(self):
        now = timezone.now()
        self.append('order_created', created_at=now, to_state='DRAFT')
        self.append('submitted', created_at=now + timedelta(seconds=1), from_state='DRAFT', to_state='SUBMITTED')
        self.append(
            'details_updated', created_at=now + timedelta(seconds=2),
            from_state='SUBMITTED', to_state='SUBMITTED'
        )
        self.append('payment_held', created_at=now + timedelta(seconds=3), to_payment_state='held')

        self.assertEqual(AuditLogger.visited_states(self.order), ['DRAFT', 'SUBMITTED'])
