"""
API tests for order endpoints.
"""
from django.urls import reverse
from rest_framework import status
from apps.orders.models import LifecycleState as S, OrderIntent, PaymentState
from apps.orders.tests.base import BaseOrderTestCase


class OrderAPITestCase(BaseOrderTestCase):
    """Adds a helper for posting lifecycle events."""

    def transition(self, order, event, data=None, user=None):
        self.authenticate(user)
        url = reverse('orders:transition', kwargs={'pk': order.pk, 'event': event})
        return self.client.post(url, data or {}, format='json')


class OrderEndpointTestCase(OrderAPITestCase):

    def test_create_order(self):
        self.authenticate(self.buyer)

        response = self.client.post(reverse('orders:list-create'), {
            'intent': OrderIntent.SAMPLE_ONLY,
            'product_type': 'Hoodie',
            'fabric_type': 'Fleece 320 GSM',
            'quantity': 50,
            'total_amount': '1000.00',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['lifecycle_state'], S.DRAFT)
        self.assertEqual(response.data['payment_state'], PaymentState.INITIATED)
        self.assertEqual(response.data['upfront_amount'], '550.00')
        self.assertEqual(response.data['final_amount'], '450.00')
        self.assertEqual(response.data['available_events'], ['submit'])

    def test_create_order_rejects_unknown_intent(self):
        self.authenticate(self.buyer)

        response = self.client.post(reverse('orders:list-create'), {'intent': 'express'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_manufacturer_cannot_create(self):
        self.authenticate(self.manufacturer)

        response = self.client.post(
            reverse('orders:list-create'), {'intent': OrderIntent.DIRECT_BULK}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(response.data['code'], 'unauthorized')

    def test_unauthenticated(self):
        response = self.client.get(reverse('orders:list-create'))

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_list_is_scoped_to_participants(self):
        mine = self.create_order()
        self.service.create_order(self.other_buyer_actor, OrderIntent.SAMPLE_ONLY, product_type='Cap')
        assigned = self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.MANUFACTURER_ASSIGNED)

        self.authenticate(self.buyer)
        ids = {row['id'] for row in self.client.get(reverse('orders:list-create')).data['results']}
        self.assertEqual(ids, {str(mine.pk), str(assigned.pk)})

        self.authenticate(self.manufacturer)
        ids = {row['id'] for row in self.client.get(reverse('orders:list-create')).data['results']}
        self.assertEqual(ids, {str(assigned.pk)})

        self.authenticate(self.admin_user)
        response = self.client.get(reverse('orders:list-create'))
        self.assertEqual(response.data['count'], 3)

    def test_list_filters(self):
        self.create_order(OrderIntent.SAMPLE_ONLY)
        self.drive_to(self.create_order(OrderIntent.DIRECT_BULK), S.SUBMITTED)
        self.authenticate(self.buyer)

        by_state = self.client.get(reverse('orders:list-create'), {'state': S.SUBMITTED})
        by_intent = self.client.get(reverse('orders:list-create'), {'intent': OrderIntent.SAMPLE_ONLY})

        self.assertEqual(by_state.data['count'], 1)
        self.assertEqual(by_state.data['results'][0]['intent'], OrderIntent.DIRECT_BULK)
        self.assertEqual(by_intent.data['count'], 1)

    def test_detail_hidden_from_other_buyer(self):
        order = self.create_order()
        self.authenticate(self.other_buyer)

        response = self.client.get(reverse('orders:detail', kwargs={'pk': order.pk}))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_patch_draft(self):
        order = self.create_order()
        self.authenticate(self.buyer)

        response = self.client.patch(
            reverse('orders:detail', kwargs={'pk': order.pk}), {'color': 'Olive'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['color'], 'Olive')

    def test_patch_locked_field(self):
        order = self.drive_to(self.create_order(), S.SUBMITTED)
        self.authenticate(self.buyer)

        response = self.client.patch(
            reverse('orders:detail', kwargs={'pk': order.pk}), {'quantity': 500}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'field_locked')
        self.assertEqual(response.data['details']['fields'], ['quantity'])


class TransitionEndpointTestCase(OrderAPITestCase):

    def test_submit(self):
        order = self.create_order()

        response = self.transition(order, 'submit', user=self.buyer)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.SUBMITTED)
        self.assertIsNotNone(response.data['submitted_at'])

    def test_invalid_transition(self):
        order = self.create_order()

        response = self.transition(order, 'confirm_delivery', user=self.buyer)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'invalid_transition')
        self.assertFalse(response.data['retryable'])

    def test_unknown_event(self):
        order = self.create_order()

        response = self.transition(order, 'teleport', user=self.buyer)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'invalid_transition')

    def test_buyer_cannot_approve(self):
        order = self.drive_to(self.create_order(), S.SUBMITTED)

        response = self.transition(order, 'admin_approve', user=self.buyer)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(self.reload(order).lifecycle_state, S.SUBMITTED)

    def test_assign_manufacturer(self):
        order = self.drive_to(self.create_order(), S.ADMIN_APPROVED)

        response = self.transition(
            order, 'assign_manufacturer', {'manufacturer_id': str(self.manufacturer.pk)}, user=self.admin_user
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['manufacturer_id'], str(self.manufacturer.pk))
        self.assertEqual(response.data['manufacturer_email'], self.manufacturer.email)

    def test_upload_qc_with_invalid_defect(self):
        order = self.drive_to(self.create_order(), S.SAMPLE_IN_PROGRESS)

        response = self.transition(order, 'upload_qc', {
            'file_refs': ['qc/front.jpg'],
            'decision': 'reject',
            'defect_type': 'print_defect',
        }, user=self.manufacturer)

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_defect_data')
        self.assertEqual(self.reload(order).lifecycle_state, S.SAMPLE_IN_PROGRESS)

    def test_upload_qc(self):
        order = self.drive_to(self.create_order(), S.SAMPLE_IN_PROGRESS)

        response = self.transition(order, 'upload_qc', {
            'file_refs': ['qc/front.jpg', 'qc/back.jpg'],
            'decision': 'approve',
            'defect_type': 'none',
        }, user=self.manufacturer)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.SAMPLE_QC_UPLOADED)
        self.assertEqual(len(response.data['qc_records']), 1)
        self.assertEqual(response.data['qc_records'][0]['admin_decision'], 'pending')
        self.assertEqual(response.data['qc_attempts'], {'sample': 1, 'bulk': 0})


class QCEndpointTestCase(OrderAPITestCase):

    def setUp(self):
        super().setUp()
        self.order = self.drive_to(self.create_order(), S.SAMPLE_QC_UPLOADED)
        self.record = self.pending_qc(self.order, 'sample')

    def decide(self, data, user=None):
        self.authenticate(user or self.admin_user)
        url = reverse('orders:qc-decide', kwargs={'qc_id': self.record.pk})
        return self.client.post(url, data, format='json')

    def test_approve_then_already_decided(self):
        response = self.decide({'decision': 'approve'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.SAMPLE_APPROVED)

        response = self.decide({'decision': 'reject'})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'already_decided')
        self.assertEqual(self.reload(self.order).lifecycle_state, S.SAMPLE_APPROVED)

    def test_reject_with_defect(self):
        response = self.decide({
            'decision': 'reject',
            'defect_type': 'color_mismatch',
            'defect_severity': 4,
            'notes': "Shade is two tones lighter than the swatch",
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.SAMPLE_IN_PROGRESS)
        record = response.data['qc_records'][0]
        self.assertEqual(record['admin_decision'], 'rejected')
        self.assertEqual(record['defect_severity'], 4)

    def test_reject_without_reason(self):
        response = self.decide({'decision': 'reject', 'notes': "bad"})

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'guard_failed')
        self.record.refresh_from_db()
        self.assertTrue(self.record.is_pending)
        self.assertEqual(self.reload(self.order).lifecycle_state, S.SAMPLE_QC_UPLOADED)

    def test_manufacturer_cannot_decide(self):
        response = self.decide({'decision': 'approve'}, user=self.manufacturer)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_unknown_record(self):
        self.authenticate(self.admin_user)
        url = reverse('orders:qc-decide', kwargs={'qc_id': '00000000-0000-0000-0000-000000000000'})

        response = self.client.post(url, {'decision': 'approve'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')

    def test_manufacturer_self_assessment(self):
        self.authenticate(self.manufacturer)
        url = reverse('orders:qc-assess', kwargs={'qc_id': self.record.pk})

        response = self.client.post(url, {
            'decision': 'reject', 'defect_type': 'stitching_defect', 'defect_severity': 2
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['decision'], 'reject')
        self.assertEqual(response.data['admin_decision'], 'pending')
        self.assertEqual(self.reload(self.order).lifecycle_state, S.SAMPLE_QC_UPLOADED)


class PaymentAndAssignmentEndpointTestCase(OrderAPITestCase):

    def test_refund_halts_production(self):
        order = self.drive_to(self.create_order(), S.PAYMENT_CONFIRMED)
        self.authenticate(self.admin_user)

        response = self.client.post(
            reverse('orders:payment', kwargs={'pk': order.pk, 'action': 'refund'}),
            {'reason': "Buyer cancelled"},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['payment_state'], PaymentState.REFUNDED)
        self.assertEqual(response.data['available_events'], [])

        response = self.transition(order, 'start_production', user=self.manufacturer)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'guard_failed')

    def test_unknown_payment_action(self):
        order = self.create_order()
        self.authenticate(self.admin_user)

        response = self.client.post(reverse('orders:payment', kwargs={'pk': order.pk, 'action': 'void'}))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_decline_then_reassign(self):
        order = self.drive_to(self.create_order(), S.MANUFACTURER_ASSIGNED)

        self.authenticate(self.manufacturer)
        response = self.client.post(
            reverse('orders:assignment', kwargs={'pk': order.pk, 'action': 'decline'}),
            {'reason': "No capacity this month"},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.MANUFACTURER_ASSIGNED)
        self.assertIsNone(response.data['manufacturer_id'])

        # The decliner no longer sees the order
        self.assertEqual(self.client.get(reverse('orders:list-create')).data['count'], 0)
        response = self.client.get(reverse('orders:detail', kwargs={'pk': order.pk}))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.transition(order, 'request_payment', user=self.admin_user)
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'guard_failed')

        self.authenticate(self.admin_user)
        response = self.client.post(
            reverse('orders:assignment', kwargs={'pk': order.pk, 'action': 'reassign'}),
            {'manufacturer_id': str(self.other_manufacturer.pk)},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['manufacturer_id'], str(self.other_manufacturer.pk))

        response = self.transition(order, 'request_payment', user=self.admin_user)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lifecycle_state'], S.PAYMENT_REQUESTED)

    def test_history(self):
        order = self.drive_to(self.create_order(), S.PAYMENT_CONFIRMED)
        self.authenticate(self.buyer)

        response = self.client.get(reverse('orders:history', kwargs={'pk': order.pk}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            [event['event_type'] for event in response.data],
            [
                'order_created', 'submitted', 'admin_approved', 'manufacturer_assigned',
                'payment_requested', 'payment_held', 'payment_confirmed',
            ]
        )
