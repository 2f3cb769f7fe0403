"""
Order state machine service.
Handles ALL lifecycle transitions with validation, audit and race protection.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from apps.accounts.models import User
from apps.audit.logging_utils import AuditLogger
from apps.audit.models import AuditEvent
from apps.orders.exceptions import (
    AlreadyDecided,
    GuardFailed,
    InvalidTransition,
    NotFound,
    Unauthorized,
)
from apps.orders.models import (
    AdminDecision,
    LifecycleState as S,
    MILESTONE_FIELDS,
    Order,
    OrderIntent,
    PaymentState,
    QCRecord,
    QCStage,
    TERMINAL_STATES,
)
from apps.orders.services import intent_router
from apps.orders.services.base import WorkflowService
from apps.orders.services.escrow_service import EscrowService
from apps.orders.services.policy import Action, Actor
from apps.orders.services.qc_service import QCService

logger = logging.getLogger(__name__)

# (to_state, audit event type, metadata)
Step = Tuple[str, str, Dict[str, Any]]


class StateMachine(WorkflowService):
    """
    Order lifecycle state machine with strict transition rules.

    Every public operation runs in one transaction: locked read, checks,
    compare-and-set write and audit append either all happen or none do.
    Checks run in a fixed order: role, record lookups, state adjacency,
    participant ownership, guards.
    """

    # (from_state, event) -> candidate target states
    TRANSITIONS = {
        (S.DRAFT, Action.SUBMIT): (S.SUBMITTED,),
        (S.SUBMITTED, Action.ADMIN_APPROVE): (S.ADMIN_APPROVED,),
        (S.ADMIN_APPROVED, Action.ASSIGN_MANUFACTURER): (S.MANUFACTURER_ASSIGNED,),
        (S.MANUFACTURER_ASSIGNED, Action.REASSIGN_MANUFACTURER): (S.MANUFACTURER_ASSIGNED,),
        (S.MANUFACTURER_ASSIGNED, Action.DECLINE_ASSIGNMENT): (S.MANUFACTURER_ASSIGNED,),
        (S.MANUFACTURER_ASSIGNED, Action.REQUEST_PAYMENT): (S.PAYMENT_REQUESTED,),
        (S.PAYMENT_REQUESTED, Action.CONFIRM_PAYMENT): (S.PAYMENT_CONFIRMED,),
        (S.PAYMENT_CONFIRMED, Action.START_PRODUCTION): (S.SAMPLE_IN_PROGRESS, S.BULK_IN_PRODUCTION),
        (S.SAMPLE_IN_PROGRESS, Action.UPLOAD_QC): (S.SAMPLE_QC_UPLOADED,),
        (S.SAMPLE_QC_UPLOADED, Action.ADMIN_DECIDE): (S.SAMPLE_APPROVED, S.SAMPLE_IN_PROGRESS),
        (S.SAMPLE_APPROVED, Action.UNLOCK_BULK): (S.BULK_UNLOCKED,),
        (S.BULK_UNLOCKED, Action.START_BULK): (S.BULK_IN_PRODUCTION,),
        (S.BULK_IN_PRODUCTION, Action.UPLOAD_QC): (S.BULK_QC_UPLOADED,),
        (S.BULK_QC_UPLOADED, Action.ADMIN_DECIDE): (S.READY_FOR_DISPATCH, S.BULK_IN_PRODUCTION),
        (S.READY_FOR_DISPATCH, Action.PACK_AND_DISPATCH): (S.DISPATCHED,),
        (S.DISPATCHED, Action.CONFIRM_DELIVERY): (S.DELIVERED,),
        (S.DELIVERED, Action.RELEASE_FINAL_PAYMENT): (S.COMPLETED,),
    }

    # Non-admin actors must own the order for these
    BUYER_EVENTS = frozenset({Action.SUBMIT, Action.UNLOCK_BULK, Action.CONFIRM_DELIVERY})
    MANUFACTURER_EVENTS = frozenset({
        Action.START_PRODUCTION,
        Action.UPLOAD_QC,
        Action.START_BULK,
        Action.PACK_AND_DISPATCH,
        Action.DECLINE_ASSIGNMENT,
    })

    # A refund halts everything from production onwards
    PAYMENT_GATED_EVENTS = frozenset({
        Action.START_PRODUCTION,
        Action.UPLOAD_QC,
        Action.ADMIN_DECIDE,
        Action.UNLOCK_BULK,
        Action.START_BULK,
        Action.PACK_AND_DISPATCH,
        Action.CONFIRM_DELIVERY,
        Action.RELEASE_FINAL_PAYMENT,
    })

    REQUIRED_FOR_SUBMIT = ('product_type', 'fabric_type', 'quantity', 'total_amount')

    ASSIGNMENT_EVENTS = ('manufacturer_assigned', 'manufacturer_reassigned', 'manufacturer_declined')

    # Operations reachable through apply()
    ORDER_EVENTS = {
        Action.SUBMIT: 'submit',
        Action.ADMIN_APPROVE: 'admin_approve',
        Action.ASSIGN_MANUFACTURER: 'assign_manufacturer',
        Action.REASSIGN_MANUFACTURER: 'reassign_manufacturer',
        Action.DECLINE_ASSIGNMENT: 'decline_assignment',
        Action.REQUEST_PAYMENT: 'request_payment',
        Action.CONFIRM_PAYMENT: 'confirm_payment',
        Action.START_PRODUCTION: 'start_production',
        Action.UPLOAD_QC: 'upload_qc',
        Action.UNLOCK_BULK: 'unlock_bulk',
        Action.START_BULK: 'start_bulk',
        Action.PACK_AND_DISPATCH: 'pack_and_dispatch',
        Action.CONFIRM_DELIVERY: 'confirm_delivery',
        Action.RELEASE_FINAL_PAYMENT: 'release_final_payment',
    }

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    @classmethod
    def targets(cls, from_state: str, event: str) -> Tuple[str, ...]:
        return cls.TRANSITIONS.get((from_state, event), ())

    @staticmethod
    def is_terminal(state: str) -> bool:
        return state in TERMINAL_STATES

    @classmethod
    def available_events(cls, order: Order) -> List[str]:
        """Events with an edge out of the current state on this order's path."""
        if cls.is_terminal(order.lifecycle_state):
            return []

        events = []
        for (from_state, event), candidates in cls.TRANSITIONS.items():
            if from_state != order.lifecycle_state:
                continue
            if order.is_refunded and event in cls.PAYMENT_GATED_EVENTS:
                continue
            if any(intent_router.is_state_allowed(order.intent, target) for target in candidates):
                events.append(event)
        return events

    @staticmethod
    def state_progress(order: Order) -> int:
        return intent_router.progress(order.intent, order.lifecycle_state)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _load(self, order_id, actor: Actor, event: str) -> Order:
        self.authorize(actor, event)
        return self.repository.get(order_id, for_update=True)

    def _check_event(self, order: Order, actor: Actor, event: str) -> Tuple[str, ...]:
        """State adjacency, participant ownership, refund halt."""
        state = order.lifecycle_state
        if self.is_terminal(state):
            raise InvalidTransition(
                f"Order is {state}; no further transitions",
                details={'lifecycle_state': state, 'event': event}
            )

        candidates = self.targets(state, event)
        if not candidates:
            raise InvalidTransition(
                f"Cannot {event} from {state}",
                details={'lifecycle_state': state, 'event': event}
            )

        if not actor.is_admin:
            if event in self.BUYER_EVENTS and not order.is_buyer(actor.actor_id):
                raise Unauthorized("Only the owning buyer can do this", details={'event': event})
            if event in self.MANUFACTURER_EVENTS and not order.is_manufacturer(actor.actor_id):
                raise Unauthorized("Only the assigned manufacturer can do this", details={'event': event})

        if event in self.PAYMENT_GATED_EVENTS and order.is_refunded:
            raise GuardFailed(
                "Payment was refunded; order is halted",
                details={'payment_state': order.payment_state}
            )
        return candidates

    @staticmethod
    def _route(order: Order, event: str, candidates: Sequence[str]) -> str:
        """Pick the candidate that lies on the order's intent path."""
        for target in candidates:
            if intent_router.is_state_allowed(order.intent, target):
                return target
        raise GuardFailed(
            f"{event} is not part of a {order.intent} order",
            details={'intent': order.intent, 'event': event}
        )

    @staticmethod
    def _require_payment(order: Order, allowed: Iterable[str], event: str) -> None:
        allowed = tuple(allowed)
        if order.payment_state not in allowed:
            raise GuardFailed(
                f"{event} requires payment {' or '.join(allowed)}",
                details={'payment_state': order.payment_state}
            )

    @staticmethod
    def _get_manufacturer(manufacturer_id) -> User:
        try:
            return User.objects.select_related('manufacturer_profile').get(pk=manufacturer_id)
        except (User.DoesNotExist, ValueError, TypeError, ValidationError):
            raise NotFound(
                f"Manufacturer {manufacturer_id} not found",
                details={'manufacturer_id': str(manufacturer_id)}
            )

    @staticmethod
    def _check_assignable(user: User) -> None:
        if user.role != User.Role.MANUFACTURER:
            raise GuardFailed("User is not a manufacturer", details={'manufacturer_id': str(user.pk)})

        profile = getattr(user, 'manufacturer_profile', None)
        if profile is None or not profile.is_verified:
            raise GuardFailed("Manufacturer is not verified", details={'manufacturer_id': str(user.pk)})
        if profile.is_paused:
            raise GuardFailed("Manufacturer is paused", details={'manufacturer_id': str(user.pk)})

    def _assignment_declined(self, order: Order) -> bool:
        """True when the latest assignment event is a decline."""
        latest = (
            AuditEvent.objects.filter(order=order, event_type__in=self.ASSIGNMENT_EVENTS)
            .order_by('-created_at', '-id')
            .first()
        )
        return latest is not None and latest.event_type == 'manufacturer_declined'

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _apply(
        self,
        order: Order,
        actor: Actor,
        event: str,
        steps: Sequence[Step],
        now=None,
        patch: Optional[Dict[str, Any]] = None,
        entries_before: Sequence[Tuple[str, Dict[str, Any]]] = ()
    ) -> Order:
        """
        Move through one or more states in a single write.
        Each step stamps its milestone (first visit only) and gets its own
        audit entry; all share one timestamp.
        """
        now = now or timezone.now()
        patch = dict(patch or {})
        entries = list(entries_before)

        from_state = order.lifecycle_state
        for to_state, event_type, metadata in steps:
            patch.update(self.stamp(order, MILESTONE_FIELDS.get(to_state), now))
            entries.append((event_type, {
                'event': event,
                'from_state': from_state,
                'to_state': to_state,
                **metadata,
            }))
            from_state = to_state
        patch['lifecycle_state'] = from_state

        previous_state = order.lifecycle_state
        self.commit(order, actor, patch, entries, now)

        logger.info(
            "Order %s: %s -> %s (%s by %s %s)",
            order.pk, previous_state, from_state, event, actor.role, actor.actor_id
        )
        return order

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    @transaction.atomic
    def submit(self, order_id, actor: Actor) -> Order:
        """DRAFT -> SUBMITTED once the draft is complete."""
        order = self._load(order_id, actor, Action.SUBMIT)
        self._check_event(order, actor, Action.SUBMIT)

        missing = [field for field in self.REQUIRED_FOR_SUBMIT if not getattr(order, field)]
        if missing:
            raise GuardFailed("Order is missing required fields", details={'missing_fields': missing})

        return self._apply(order, actor, Action.SUBMIT, [(S.SUBMITTED, 'submitted', {})])

    @transaction.atomic
    def admin_approve(self, order_id, actor: Actor, notes: str = "") -> Order:
        order = self._load(order_id, actor, Action.ADMIN_APPROVE)
        self._check_event(order, actor, Action.ADMIN_APPROVE)

        return self._apply(
            order, actor, Action.ADMIN_APPROVE,
            [(S.ADMIN_APPROVED, 'admin_approved', {'notes': notes})]
        )

    @transaction.atomic
    def assign_manufacturer(self, order_id, actor: Actor, manufacturer_id=None) -> Order:
        """
        ADMIN_APPROVED -> MANUFACTURER_ASSIGNED.

        Raises:
            NotFound: Unknown manufacturer
            GuardFailed: Not a verified, active manufacturer
        """
        order = self._load(order_id, actor, Action.ASSIGN_MANUFACTURER)
        manufacturer = self._get_manufacturer(manufacturer_id)
        self._check_event(order, actor, Action.ASSIGN_MANUFACTURER)
        self._check_assignable(manufacturer)

        return self._apply(
            order, actor, Action.ASSIGN_MANUFACTURER,
            [(S.MANUFACTURER_ASSIGNED, 'manufacturer_assigned', {'manufacturer_id': str(manufacturer.pk)})],
            patch={'manufacturer_id': manufacturer.pk}
        )

    @transaction.atomic
    def reassign_manufacturer(self, order_id, actor: Actor, manufacturer_id=None, reason: str = "") -> Order:
        """Swap the assigned manufacturer; the order stays MANUFACTURER_ASSIGNED."""
        order = self._load(order_id, actor, Action.REASSIGN_MANUFACTURER)
        manufacturer = self._get_manufacturer(manufacturer_id)
        self._check_event(order, actor, Action.REASSIGN_MANUFACTURER)
        self._check_assignable(manufacturer)

        if order.manufacturer_id == manufacturer.pk:
            raise GuardFailed(
                "Manufacturer is already assigned to this order",
                details={'manufacturer_id': str(manufacturer.pk)}
            )

        return self._apply(
            order, actor, Action.REASSIGN_MANUFACTURER,
            [(S.MANUFACTURER_ASSIGNED, 'manufacturer_reassigned', {
                'previous_manufacturer_id': str(order.manufacturer_id) if order.manufacturer_id else None,
                'manufacturer_id': str(manufacturer.pk),
                'reason': reason,
            })],
            patch={'manufacturer_id': manufacturer.pk}
        )

    @transaction.atomic
    def decline_assignment(self, order_id, actor: Actor, reason: str = "") -> Order:
        """
        Assigned manufacturer turns the order down.
        The assignment is cleared; an admin must reassign before payment.
        """
        order = self._load(order_id, actor, Action.DECLINE_ASSIGNMENT)
        self._check_event(order, actor, Action.DECLINE_ASSIGNMENT)

        if order.manufacturer_id is None or self._assignment_declined(order):
            raise GuardFailed("Assignment was already declined")

        return self._apply(
            order, actor, Action.DECLINE_ASSIGNMENT,
            [(S.MANUFACTURER_ASSIGNED, 'manufacturer_declined', {
                'previous_manufacturer_id': str(order.manufacturer_id),
                'reason': reason,
            })],
            patch={'manufacturer_id': None}
        )

    @transaction.atomic
    def request_payment(self, order_id, actor: Actor) -> Order:
        order = self._load(order_id, actor, Action.REQUEST_PAYMENT)
        self._check_event(order, actor, Action.REQUEST_PAYMENT)

        if order.manufacturer_id is None or self._assignment_declined(order):
            raise GuardFailed("Assigned manufacturer declined; reassign first")

        return self._apply(
            order, actor, Action.REQUEST_PAYMENT,
            [(S.PAYMENT_REQUESTED, 'payment_requested', {'upfront_amount': str(order.upfront_amount)})]
        )

    @transaction.atomic
    def confirm_payment(self, order_id, actor: Actor, payment_reference: str = "") -> Order:
        """PAYMENT_REQUESTED -> PAYMENT_CONFIRMED; the payment ends up held."""
        order = self._load(order_id, actor, Action.CONFIRM_PAYMENT)
        self._check_event(order, actor, Action.CONFIRM_PAYMENT)
        self._require_payment(order, (PaymentState.INITIATED, PaymentState.HELD), Action.CONFIRM_PAYMENT)

        now = timezone.now()
        patch, entries_before = {}, []
        if order.payment_state == PaymentState.INITIATED:
            patch = EscrowService.payment_patch(order, PaymentState.HELD, now)
            entries_before = [EscrowService.payment_entry(order, PaymentState.HELD)]

        return self._apply(
            order, actor, Action.CONFIRM_PAYMENT,
            [(S.PAYMENT_CONFIRMED, 'payment_confirmed', {'payment_reference': payment_reference})],
            now=now, patch=patch, entries_before=entries_before
        )

    @transaction.atomic
    def start_production(self, order_id, actor: Actor) -> Order:
        """Sample run, or bulk run straight away for direct_bulk orders."""
        order = self._load(order_id, actor, Action.START_PRODUCTION)
        candidates = self._check_event(order, actor, Action.START_PRODUCTION)
        self._require_payment(order, (PaymentState.HELD,), Action.START_PRODUCTION)

        target = self._route(order, Action.START_PRODUCTION, candidates)
        event_type = 'sample_started' if target == S.SAMPLE_IN_PROGRESS else 'bulk_started'

        return self._apply(order, actor, Action.START_PRODUCTION, [(target, event_type, {})])

    @transaction.atomic
    def upload_qc(
        self,
        order_id,
        actor: Actor,
        file_refs: Optional[List[str]] = None,
        decision: Optional[str] = None,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: str = ""
    ) -> QCRecord:
        """
        Manufacturer uploads QC evidence for the running stage.

        Opens a pending QC round and moves to *_QC_UPLOADED.

        Returns:
            The new QCRecord
        """
        order = self._load(order_id, actor, Action.UPLOAD_QC)
        self._check_event(order, actor, Action.UPLOAD_QC)

        if not file_refs or not all(isinstance(ref, str) and ref.strip() for ref in file_refs):
            raise GuardFailed("At least one QC file reference is required")

        if order.lifecycle_state == S.SAMPLE_IN_PROGRESS:
            stage, target = QCStage.SAMPLE, S.SAMPLE_QC_UPLOADED
        else:
            stage, target = QCStage.BULK, S.BULK_QC_UPLOADED

        record = QCService.open_round(
            order,
            stage,
            submitted_by=actor.actor_id if actor.is_manufacturer else order.manufacturer_id,
            file_refs=file_refs,
            decision=decision,
            defect_type=defect_type,
            defect_severity=defect_severity,
            notes=notes,
        )

        self._apply(
            order, actor, Action.UPLOAD_QC,
            [(target, 'qc_uploaded', {
                'qc_record_id': str(record.pk),
                'stage': stage,
                'round_number': record.round_number,
                'file_count': len(file_refs),
            })]
        )
        return record

    @transaction.atomic
    def admin_decide(
        self,
        qc_record_id,
        actor: Actor,
        decision: str,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: str = ""
    ) -> Order:
        """
        Admin verdict on a pending QC round.

        approve: SAMPLE_QC_UPLOADED -> SAMPLE_APPROVED (-> SAMPLE_COMPLETED
        for sample_only), BULK_QC_UPLOADED -> READY_FOR_DISPATCH.
        reject: back to the stage's production state; a new round follows.

        Raises:
            NotFound: Unknown QC record
            AlreadyDecided: Record is final
        """
        self.authorize(actor, Action.ADMIN_DECIDE)

        record = QCService.get(qc_record_id)
        order = self.repository.get(record.order_id, for_update=True)

        # Re-read under the order lock; a concurrent decision may have landed
        record.refresh_from_db()
        if not record.is_pending:
            raise AlreadyDecided(
                "QC record is already decided",
                details={'qc_record_id': str(record.pk), 'admin_decision': record.admin_decision}
            )

        self._check_event(order, actor, Action.ADMIN_DECIDE)

        expected_stage = QCStage.SAMPLE if order.lifecycle_state == S.SAMPLE_QC_UPLOADED else QCStage.BULK
        if record.stage != expected_stage:
            raise GuardFailed(
                f"Order is awaiting a {expected_stage} QC decision",
                details={'stage': record.stage}
            )
        latest = QCService.latest_round(order, record.stage)
        if latest is None or latest.pk != record.pk:
            raise GuardFailed("Only the latest QC round can be decided")

        verdict = QCService.admin_verdict(decision)
        now = timezone.now()
        record = QCService.record_admin_decision(
            record,
            actor.actor_id,
            decision,
            defect_type=defect_type,
            defect_severity=defect_severity,
            notes=notes,
            decided_at=now,
        )

        metadata = {
            'qc_record_id': str(record.pk),
            'stage': record.stage,
            'round_number': record.round_number,
            'defect_type': record.defect_type,
            'defect_severity': record.defect_severity,
        }

        if verdict == AdminDecision.APPROVED:
            if record.stage == QCStage.SAMPLE:
                steps = [(S.SAMPLE_APPROVED, 'qc_approved', metadata)]
                if order.intent == OrderIntent.SAMPLE_ONLY:
                    steps.append((S.SAMPLE_COMPLETED, 'sample_completed', {}))
            else:
                steps = [(S.READY_FOR_DISPATCH, 'qc_approved', metadata)]
        else:
            target = S.SAMPLE_IN_PROGRESS if record.stage == QCStage.SAMPLE else S.BULK_IN_PRODUCTION
            steps = [(target, 'qc_rejected', {**metadata, 'reason': notes})]

        return self._apply(order, actor, Action.ADMIN_DECIDE, steps, now=now)

    @transaction.atomic
    def record_submitter_decision(
        self,
        qc_record_id,
        actor: Actor,
        decision: str,
        defect_type: Optional[str] = None,
        defect_severity: Optional[int] = None,
        notes: Optional[str] = None
    ) -> QCRecord:
        """Manufacturer self-assessment on a pending round; no state change."""
        self.authorize(actor, Action.RECORD_SUBMITTER_DECISION)

        record = QCService.get(qc_record_id)
        if not record.is_pending:
            raise AlreadyDecided("QC record is already decided", details={'qc_record_id': str(record.pk)})

        order = self.repository.get(record.order_id, for_update=True)
        if not order.is_manufacturer(actor.actor_id):
            raise Unauthorized("Only the assigned manufacturer can assess QC")

        record = QCService.record_submitter_decision(
            record, decision, defect_type=defect_type, defect_severity=defect_severity, notes=notes
        )
        AuditLogger.append(
            order,
            'qc_self_assessed',
            actor_role=actor.role,
            actor_id=actor.actor_id,
            metadata={
                'qc_record_id': str(record.pk),
                'decision': record.decision,
                'defect_type': record.defect_type,
                'defect_severity': record.defect_severity,
            },
        )
        return record

    @transaction.atomic
    def unlock_bulk(self, order_id, actor: Actor) -> Order:
        order = self._load(order_id, actor, Action.UNLOCK_BULK)
        candidates = self._check_event(order, actor, Action.UNLOCK_BULK)
        target = self._route(order, Action.UNLOCK_BULK, candidates)

        return self._apply(order, actor, Action.UNLOCK_BULK, [(target, 'bulk_unlocked', {})])

    @transaction.atomic
    def start_bulk(self, order_id, actor: Actor) -> Order:
        order = self._load(order_id, actor, Action.START_BULK)
        self._check_event(order, actor, Action.START_BULK)
        self._require_payment(order, (PaymentState.HELD,), Action.START_BULK)

        return self._apply(order, actor, Action.START_BULK, [(S.BULK_IN_PRODUCTION, 'bulk_started', {})])

    @transaction.atomic
    def pack_and_dispatch(self, order_id, actor: Actor, tracking_id: str = "", courier_name: str = "") -> Order:
        order = self._load(order_id, actor, Action.PACK_AND_DISPATCH)
        self._check_event(order, actor, Action.PACK_AND_DISPATCH)

        tracking_id = (tracking_id or "").strip()
        if not tracking_id:
            raise GuardFailed("Tracking id is required to dispatch")

        return self._apply(
            order, actor, Action.PACK_AND_DISPATCH,
            [(S.DISPATCHED, 'dispatched', {'tracking_id': tracking_id, 'courier_name': courier_name})],
            patch={'tracking_id': tracking_id, 'courier_name': courier_name or ""}
        )

    @transaction.atomic
    def confirm_delivery(self, order_id, actor: Actor) -> Order:
        order = self._load(order_id, actor, Action.CONFIRM_DELIVERY)
        self._check_event(order, actor, Action.CONFIRM_DELIVERY)

        return self._apply(order, actor, Action.CONFIRM_DELIVERY, [(S.DELIVERED, 'delivered', {})])

    @transaction.atomic
    def release_final_payment(self, order_id, actor: Actor) -> Order:
        """DELIVERED -> COMPLETED; the payment ends up released."""
        order = self._load(order_id, actor, Action.RELEASE_FINAL_PAYMENT)
        self._check_event(order, actor, Action.RELEASE_FINAL_PAYMENT)
        self._require_payment(
            order, (PaymentState.RELEASABLE, PaymentState.RELEASED), Action.RELEASE_FINAL_PAYMENT
        )
        EscrowService.check_final_qc_approved(order)

        now = timezone.now()
        patch, entries_before = {}, []
        if order.payment_state == PaymentState.RELEASABLE:
            patch = EscrowService.payment_patch(order, PaymentState.RELEASED, now)
            entries_before = [EscrowService.payment_entry(order, PaymentState.RELEASED)]

        return self._apply(
            order, actor, Action.RELEASE_FINAL_PAYMENT,
            [(S.COMPLETED, 'completed', {'final_amount': str(order.final_amount)})],
            now=now, patch=patch, entries_before=entries_before
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def apply(self, order_id, event: str, actor: Actor, **params) -> Any:
        """Run a lifecycle event by name."""
        handler_name = self.ORDER_EVENTS.get(event)
        if handler_name is None:
            raise InvalidTransition(f"Unknown event: {event}", details={'event': event})
        return getattr(self, handler_name)(order_id, actor, **params)
