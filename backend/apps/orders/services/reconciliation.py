"""
Reconciliation of orders against their audit history.
The audit log is the record of what happened; milestone timestamps must
match the first audit event that entered each milestone.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from apps.audit.logging_utils import AuditLogger
from apps.orders.models import MILESTONE_FIELDS, PAYMENT_MILESTONE_FIELDS, Order
from apps.orders.services import intent_router

logger = logging.getLogger(__name__)


@dataclass
class Discrepancy:
    field: str
    expected: Optional[str]
    actual: Optional[str]
    kind: str = 'milestone'

    def __str__(self):
        return f"{self.kind} {self.field}: expected {self.expected}, found {self.actual}"


@dataclass
class ReconciliationReport:
    order_id: str
    visited: List[str]
    history_valid: bool
    discrepancies: List[Discrepancy] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return self.history_valid and not self.discrepancies


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def reconcile_order(order: Order) -> ReconciliationReport:
    """Compare one order's state and timestamps with its audit history."""
    history = AuditLogger.history(order)
    visited = AuditLogger.visited_states(order)

    first_state_entry: Dict[str, object] = {}
    first_payment_entry: Dict[str, object] = {}
    for event in history:
        to_state = event.to_state
        if to_state and event.from_state != to_state:
            first_state_entry.setdefault(to_state, event.created_at)
        to_payment_state = event.metadata.get('to_payment_state')
        if to_payment_state:
            first_payment_entry.setdefault(to_payment_state, event.created_at)

    report = ReconciliationReport(
        order_id=str(order.pk),
        visited=visited,
        history_valid=intent_router.is_valid_history(order.intent, visited),
    )

    for state in intent_router.allowed_path(order.intent):
        milestone = MILESTONE_FIELDS.get(state)
        if milestone is None:
            continue
        expected = first_state_entry.get(state)
        actual = getattr(order, milestone)
        if expected != actual:
            report.discrepancies.append(Discrepancy(milestone, _iso(expected), _iso(actual)))

    for payment_state, milestone in PAYMENT_MILESTONE_FIELDS.items():
        expected = first_payment_entry.get(payment_state)
        actual = getattr(order, milestone)
        if expected != actual:
            report.discrepancies.append(
                Discrepancy(milestone, _iso(expected), _iso(actual), kind='payment')
            )

    if visited and visited[-1] != order.lifecycle_state:
        report.discrepancies.append(
            Discrepancy('lifecycle_state', visited[-1], order.lifecycle_state, kind='state')
        )

    if not report.is_clean:
        logger.warning(
            "Order %s does not reconcile: %s",
            order.pk, "; ".join(str(d) for d in report.discrepancies) or "invalid history"
        )
    return report
