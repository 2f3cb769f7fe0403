"""
Audit logging utilities.
Helper functions for writing and reading the order audit trail.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from django.utils import timezone
from apps.audit.models import AuditEvent

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only writer for order events.
    Callers run it inside the same transaction as the state change it records.
    """

    @staticmethod
    def append(
        order,
        event_type: str,
        actor_role: str,
        actor_id: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None
    ) -> AuditEvent:
        """
        Append one event to an order's history.

        Args:
            order: Order instance or order id
            event_type: Event name (e.g. 'submitted', 'qc_rejected')
            actor_role: Role of the acting user
            actor_id: Identifier of the acting user
            metadata: Additional context (from/to state, QC round, ...)
            created_at: Event time; pass the transition time so milestone
                timestamps and history agree exactly

        Returns:
            Created AuditEvent
        """
        order_id = getattr(order, 'pk', order)
        event = AuditEvent(
            order_id=order_id,
            event_type=event_type[:50],
            actor_role=actor_role,
            actor_id=str(actor_id or "")[:64],
            metadata=metadata or {},
            created_at=created_at or timezone.now(),
        )
        event.save(force_insert=True)

        logger.debug("Audit %s on order %s by %s", event_type, order_id, actor_role)

        return event

    @staticmethod
    def history(order) -> List[AuditEvent]:
        """Return every event of an order in canonical order."""
        order_id = getattr(order, 'pk', order)
        return list(
            AuditEvent.objects.filter(order_id=order_id).order_by('created_at', 'id')
        )

    @staticmethod
    def visited_states(order) -> List[str]:
        """
        Reconstruct the sequence of lifecycle states an order went through.
        Starts at DRAFT (the creation state) followed by every to_state.
        """
        states = []
        for event in AuditLogger.history(order):
            to_state = event.metadata.get('to_state')
            if event.event_type == 'order_created':
                states.append(to_state or 'DRAFT')
            elif to_state and event.metadata.get('from_state') != to_state:
                states.append(to_state)
        return states


# Convenience instance
audit_logger = AuditLogger()
