"""
Order workflow errors.
Every rejection carries a stable code; none of them leaves partial state.
"""
from typing import Any, Dict, Optional


class OrderWorkflowError(Exception):
    """Base class for typed workflow rejections."""
    code = 'workflow_error'
    retryable = True
    http_status = 400

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'code': self.code,
            'retryable': self.retryable,
            'details': self.details,
        }


class InvalidTransition(OrderWorkflowError):
    """No such edge from the current state (or the state is terminal)."""
    code = 'invalid_transition'
    retryable = False
    http_status = 409


class GuardFailed(OrderWorkflowError):
    """The edge exists but its precondition is false."""
    code = 'guard_failed'
    http_status = 409


class FieldLocked(GuardFailed):
    """A draft field can no longer be edited at the current state."""
    code = 'field_locked'


class DuplicateOpenRound(OrderWorkflowError):
    code = 'duplicate_open_round'
    http_status = 409


class AlreadyDecided(OrderWorkflowError):
    code = 'already_decided'
    http_status = 409


class InvalidDefectData(OrderWorkflowError):
    code = 'invalid_defect_data'
    http_status = 400


class NotFound(OrderWorkflowError):
    """Unknown order, QC record or manufacturer."""
    code = 'not_found'
    http_status = 404


class Unauthorized(OrderWorkflowError):
    """Actor role or identity does not fit the action."""
    code = 'unauthorized'
    retryable = False
    http_status = 403


class ConcurrentModification(OrderWorkflowError):
    """Compare-and-set lost the race; re-read and retry."""
    code = 'concurrent_modification'
    http_status = 409
