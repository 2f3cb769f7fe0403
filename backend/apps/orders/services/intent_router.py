"""
Order intent router.
Maps an order's declared intent to the lifecycle path it may walk.
Pure functions; holds no state.
"""
from typing import Optional, Sequence, Tuple
from apps.orders.models import LifecycleState as S, OrderIntent

COMMON_PREFIX = (
    S.DRAFT,
    S.SUBMITTED,
    S.ADMIN_APPROVED,
    S.MANUFACTURER_ASSIGNED,
    S.PAYMENT_REQUESTED,
    S.PAYMENT_CONFIRMED,
)

SAMPLE_STAGE = (
    S.SAMPLE_IN_PROGRESS,
    S.SAMPLE_QC_UPLOADED,
    S.SAMPLE_APPROVED,
)

BULK_STAGE = (
    S.BULK_IN_PRODUCTION,
    S.BULK_QC_UPLOADED,
    S.READY_FOR_DISPATCH,
    S.DISPATCHED,
    S.DELIVERED,
    S.COMPLETED,
)

PATHS = {
    OrderIntent.SAMPLE_ONLY: COMMON_PREFIX + SAMPLE_STAGE + (S.SAMPLE_COMPLETED,),
    OrderIntent.SAMPLE_THEN_BULK: COMMON_PREFIX + SAMPLE_STAGE + (S.BULK_UNLOCKED,) + BULK_STAGE,
    OrderIntent.DIRECT_BULK: COMMON_PREFIX + BULK_STAGE,
}

# QC rejection is the only way back
REGRESSIONS = frozenset({
    (S.SAMPLE_QC_UPLOADED, S.SAMPLE_IN_PROGRESS),
    (S.BULK_QC_UPLOADED, S.BULK_IN_PRODUCTION),
})


def allowed_path(intent: str) -> Tuple[str, ...]:
    """Ordered states an order of this intent passes through."""
    try:
        return PATHS[intent]
    except KeyError:
        raise ValueError(f"Unknown order intent: {intent}")


def is_state_allowed(intent: str, state: str) -> bool:
    return state in allowed_path(intent)


def next_state(intent: str, state: str) -> Optional[str]:
    """Forward successor of a state on the intent path (None at the end)."""
    path = allowed_path(intent)
    if state not in path:
        return None
    index = path.index(state)
    return path[index + 1] if index + 1 < len(path) else None


def requires_sample_qc(intent: str) -> bool:
    return S.SAMPLE_QC_UPLOADED in allowed_path(intent)


def requires_bulk_qc(intent: str) -> bool:
    return S.BULK_QC_UPLOADED in allowed_path(intent)


def final_qc_stage(intent: str) -> str:
    """Stage whose approval releases the final payment."""
    return 'bulk' if requires_bulk_qc(intent) else 'sample'


def is_valid_history(intent: str, visited: Sequence[str]) -> bool:
    """
    Check a visited-state sequence against the intent path.

    Valid means: starts at DRAFT, every step is the forward successor on
    the path or one of the two QC regressions.
    """
    path = allowed_path(intent)
    if not visited:
        return True
    if visited[0] != S.DRAFT:
        return False

    for previous, current in zip(visited, visited[1:]):
        if current not in path:
            return False
        if (previous, current) in REGRESSIONS:
            continue
        if path.index(current) != path.index(previous) + 1:
            return False
    return True


def progress(intent: str, state: str) -> int:
    """Percentage of the intent path covered by the given state."""
    path = allowed_path(intent)
    if state not in path:
        return 0
    return round(path.index(state) * 100 / (len(path) - 1))
