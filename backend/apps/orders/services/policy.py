"""
Authorization policy for order workflow actions.
The core never hard-codes privileged identities; it asks the configured
policy provider whether an (actor role, actor id) pair may run an action.
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger('security')


@dataclass(frozen=True)
class Actor:
    """Identity supplied by the authentication layer; trusted as given."""
    actor_id: str
    role: str

    @classmethod
    def from_user(cls, user) -> 'Actor':
        return cls(actor_id=str(user.pk), role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_buyer(self) -> bool:
        return self.role == Role.BUYER

    @property
    def is_manufacturer(self) -> bool:
        return self.role == Role.MANUFACTURER


class Role:
    ADMIN = 'ADMIN'
    BUYER = 'BUYER'
    MANUFACTURER = 'MANUFACTURER'


class Action:
    """Every authorizable workflow action."""
    # Order record
    CREATE_ORDER = 'create_order'
    UPDATE_ORDER = 'update_order'

    # Lifecycle events
    SUBMIT = 'submit'
    ADMIN_APPROVE = 'admin_approve'
    ASSIGN_MANUFACTURER = 'assign_manufacturer'
    REQUEST_PAYMENT = 'request_payment'
    CONFIRM_PAYMENT = 'confirm_payment'
    START_PRODUCTION = 'start_production'
    UPLOAD_QC = 'upload_qc'
    ADMIN_DECIDE = 'admin_decide'
    UNLOCK_BULK = 'unlock_bulk'
    START_BULK = 'start_bulk'
    PACK_AND_DISPATCH = 'pack_and_dispatch'
    CONFIRM_DELIVERY = 'confirm_delivery'
    RELEASE_FINAL_PAYMENT = 'release_final_payment'

    # Assignment
    REASSIGN_MANUFACTURER = 'reassign_manufacturer'
    DECLINE_ASSIGNMENT = 'decline_assignment'

    # QC submitter metadata
    RECORD_SUBMITTER_DECISION = 'record_submitter_decision'

    # Payment tracker
    HOLD_PAYMENT = 'hold_payment'
    MARK_PAYMENT_RELEASABLE = 'mark_payment_releasable'
    RELEASE_PAYMENT = 'release_payment'
    REFUND_PAYMENT = 'refund_payment'


class PolicyProvider:
    """Interface: decide whether an actor may perform an action."""

    def is_authorized(self, actor_role: str, actor_id: str, action: str) -> bool:
        raise NotImplementedError


class RolePolicyProvider(PolicyProvider):
    """
    Role matrix policy.
    Ownership of the specific order is checked by the state machine.
    """

    ROLE_ACTIONS: Dict[str, FrozenSet[str]] = {
        Role.ADMIN: frozenset({
            Action.UPDATE_ORDER,
            Action.ADMIN_APPROVE,
            Action.ASSIGN_MANUFACTURER,
            Action.REASSIGN_MANUFACTURER,
            Action.REQUEST_PAYMENT,
            Action.CONFIRM_PAYMENT,
            Action.START_PRODUCTION,
            Action.ADMIN_DECIDE,
            Action.UNLOCK_BULK,
            Action.START_BULK,
            Action.PACK_AND_DISPATCH,
            Action.CONFIRM_DELIVERY,
            Action.RELEASE_FINAL_PAYMENT,
            Action.HOLD_PAYMENT,
            Action.MARK_PAYMENT_RELEASABLE,
            Action.RELEASE_PAYMENT,
            Action.REFUND_PAYMENT,
        }),
        Role.BUYER: frozenset({
            Action.CREATE_ORDER,
            Action.UPDATE_ORDER,
            Action.SUBMIT,
            Action.UNLOCK_BULK,
            Action.CONFIRM_DELIVERY,
        }),
        Role.MANUFACTURER: frozenset({
            Action.START_PRODUCTION,
            Action.UPLOAD_QC,
            Action.RECORD_SUBMITTER_DECISION,
            Action.START_BULK,
            Action.PACK_AND_DISPATCH,
            Action.DECLINE_ASSIGNMENT,
        }),
    }

    def is_authorized(self, actor_role: str, actor_id: str, action: str) -> bool:
        return action in self.ROLE_ACTIONS.get(actor_role, frozenset())


class AllowlistPolicyProvider(RolePolicyProvider):
    """
    Role matrix plus an explicit list of trusted admin ids.
    An ADMIN-role actor outside the allowlist is treated as unauthorized.
    """

    def __init__(self, admin_allowlist: Optional[Iterable[str]] = None):
        if admin_allowlist is None:
            admin_allowlist = settings.ORDER_WORKFLOW.get('ADMIN_ALLOWLIST', [])
        self.admin_allowlist = frozenset(str(admin_id) for admin_id in admin_allowlist)

    def is_authorized(self, actor_role: str, actor_id: str, action: str) -> bool:
        if actor_role == Role.ADMIN and str(actor_id) not in self.admin_allowlist:
            logger.warning("[POLICY] Admin %s not in allowlist for %s", actor_id, action)
            return False
        return super().is_authorized(actor_role, actor_id, action)


def get_policy_provider() -> PolicyProvider:
    """Instantiate the policy class named by ORDER_POLICY_PROVIDER."""
    provider_class = import_string(settings.ORDER_POLICY_PROVIDER)
    return provider_class()
