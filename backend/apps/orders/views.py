"""
Order views and API endpoints.
Thin layer: validate input, build the actor, call OrderService and map
workflow errors to JSON responses.
"""
import logging
from django.db.models import Prefetch
from rest_framework import generics, permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from apps.audit.logging_utils import AuditLogger
from apps.orders.exceptions import OrderWorkflowError
from apps.orders.models import Order, QCRecord
from apps.orders.permissions import IsOrderParticipantOrAdmin
from apps.orders.serializers import (
    AuditEventSerializer,
    CreateOrderSerializer,
    OrderDetailSerializer,
    OrderListSerializer,
    PaymentActionSerializer,
    QCDecisionSerializer,
    QCRecordSerializer,
    TransitionSerializer,
    UpdateOrderSerializer,
)
from apps.orders.services.order_service import OrderService
from apps.orders.services.policy import Action, Actor

logger = logging.getLogger(__name__)

# Request fields each lifecycle event accepts
EVENT_PARAMS = {
    Action.ADMIN_APPROVE: ['notes'],
    Action.ASSIGN_MANUFACTURER: ['manufacturer_id'],
    Action.CONFIRM_PAYMENT: ['payment_reference'],
    Action.UPLOAD_QC: ['file_refs', 'decision', 'defect_type', 'defect_severity', 'notes'],
    Action.PACK_AND_DISPATCH: ['tracking_id', 'courier_name'],
}

ASSIGNMENT_PARAMS = {
    'decline': ['reason'],
    'reassign': ['manufacturer_id', 'reason'],
}


def error_response(exc: OrderWorkflowError) -> Response:
    logger.info("Rejected: %s (%s)", exc.message, exc.code)
    return Response(exc.as_dict(), status=exc.http_status)


def order_queryset_for(user):
    """Orders visible to the user: all for admins, own for participants."""
    queryset = Order.objects.select_related('buyer', 'manufacturer').prefetch_related(
        Prefetch('qc_records', queryset=QCRecord.objects.select_related('submitted_by'))
    )
    if user.role == 'ADMIN':
        return queryset
    if user.role == 'MANUFACTURER':
        return queryset.filter(manufacturer=user)
    return queryset.filter(buyer=user)


def _fresh_detail(order_id) -> dict:
    order = Order.objects.select_related('buyer', 'manufacturer').get(pk=order_id)
    return OrderDetailSerializer(order).data


class OrderListCreateView(generics.ListCreateAPIView):
    """
    List user's orders and create draft orders.
    """
    permission_classes = [permissions.IsAuthenticated]

    def get_serializer_class(self):
        if self.request.method == 'POST':
            return CreateOrderSerializer
        return OrderListSerializer

    def get_queryset(self):
        queryset = order_queryset_for(self.request.user)
        state = self.request.query_params.get('state')
        if state:
            queryset = queryset.filter(lifecycle_state=state)
        intent = self.request.query_params.get('intent')
        if intent:
            queryset = queryset.filter(intent=intent)
        return queryset.order_by('-created_at')

    def create(self, request, *args, **kwargs):
        serializer = CreateOrderSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            order = OrderService().create_order(Actor.from_user(request.user), **serializer.validated_data)
        except OrderWorkflowError as e:
            return error_response(e)

        return Response(_fresh_detail(order.pk), status=status.HTTP_201_CREATED)


class OrderDetailView(generics.RetrieveUpdateAPIView):
    """
    Get order details; PATCH edits draft fields.
    Only participants or admins can view.
    """
    serializer_class = OrderDetailSerializer
    permission_classes = [permissions.IsAuthenticated, IsOrderParticipantOrAdmin]
    http_method_names = ['get', 'patch', 'head', 'options']

    def get_queryset(self):
        return order_queryset_for(self.request.user)

    def partial_update(self, request, *args, **kwargs):
        order = self.get_object()

        serializer = UpdateOrderSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            OrderService().update_details(order.pk, Actor.from_user(request.user), serializer.validated_data)
        except OrderWorkflowError as e:
            return error_response(e)

        return Response(_fresh_detail(order.pk))


@api_view(['POST'])
@permission_classes([permissions.IsAuthenticated])
def order_transition(request, pk, event):
    """
    Run a lifecycle event on an order.
    POST /api/orders/<id>/transitions/<event>/
    """
    serializer = TransitionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    params = {
        name: serializer.validated_data[name]
        for name in EVENT_PARAMS.get(event, [])
        if name in serializer.validated_data
    }

    try:
        OrderService().apply_event(pk, event, Actor.from_user(request.user), **params)
    except OrderWorkflowError as e:
        return error_response(e)

    return Response(_fresh_detail(pk))


@api_view(['POST'])
@permission_classes([permissions.IsAuthenticated])
def decide_qc(request, qc_id):
    """
    Admin approves or rejects a pending QC round.
    POST /api/orders/qc/<qc_id>/decide/
    """
    serializer = QCDecisionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        order = OrderService().decide_qc(
            qc_id,
            Actor.from_user(request.user),
            data['decision'],
            defect_type=data['defect_type'],
            defect_severity=data['defect_severity'],
            notes=data['notes'],
        )
    except OrderWorkflowError as e:
        return error_response(e)

    return Response(_fresh_detail(order.pk))


@api_view(['POST'])
@permission_classes([permissions.IsAuthenticated])
def assess_qc(request, qc_id):
    """
    Manufacturer self-assessment on a pending QC round.
    POST /api/orders/qc/<qc_id>/assess/
    """
    serializer = QCDecisionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    data = serializer.validated_data
    try:
        record = OrderService().assess_qc(
            qc_id,
            Actor.from_user(request.user),
            data['decision'],
            defect_type=data['defect_type'],
            defect_severity=data['defect_severity'],
            notes=data['notes'],
        )
    except OrderWorkflowError as e:
        return error_response(e)

    return Response(QCRecordSerializer(record).data)


@api_view(['POST'])
@permission_classes([permissions.IsAuthenticated])
def payment_action(request, pk, action):
    """
    Payment tracker action: hold / releasable / release / refund.
    POST /api/orders/<id>/payment/<action>/
    """
    serializer = PaymentActionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    params = {}
    if action == 'refund':
        params['reason'] = serializer.validated_data['reason']

    try:
        OrderService().payment_action(pk, action, Actor.from_user(request.user), **params)
    except OrderWorkflowError as e:
        return error_response(e)

    return Response(_fresh_detail(pk))


@api_view(['POST'])
@permission_classes([permissions.IsAuthenticated])
def assignment_action(request, pk, action):
    """
    Manufacturer declines, or admin reassigns, an assignment.
    POST /api/orders/<id>/assignment/<action>/
    """
    serializer = TransitionSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    params = {
        name: serializer.validated_data[name]
        for name in ASSIGNMENT_PARAMS.get(action, [])
        if name in serializer.validated_data
    }

    try:
        OrderService().assignment_action(pk, action, Actor.from_user(request.user), **params)
    except OrderWorkflowError as e:
        return error_response(e)

    return Response(_fresh_detail(pk))


class OrderHistoryView(generics.GenericAPIView):
    """
    Audit history of one order in canonical order.
    """
    permission_classes = [permissions.IsAuthenticated, IsOrderParticipantOrAdmin]
    serializer_class = AuditEventSerializer

    def get_queryset(self):
        return order_queryset_for(self.request.user)

    def get(self, request, pk):
        order = self.get_object()
        events = AuditLogger.history(order)
        return Response(AuditEventSerializer(events, many=True).data)
