"""Role policy for the allocation workflow.

Every (family, operation) pair resolves to one allowed-role set; callers go
through ``ensure_permitted`` instead of keeping their own role lists.
"""

from typing import Optional

from portal.core.exceptions import ForbiddenError
from portal.schemas.auth import CurrentUser
from portal.schemas.enums import AllocationOperation, TransactionFamily
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)

ADMIN_ROLE = "admin"


def reviewer_role(family: TransactionFamily) -> str:
    return f"{family.slug}_reviewer"


def allocator_role(family: TransactionFamily) -> str:
    return f"{family.slug}_allocator"


def _build_policy() -> dict[tuple[TransactionFamily, AllocationOperation], Optional[frozenset[str]]]:
    policy: dict[tuple[TransactionFamily, AllocationOperation], Optional[frozenset[str]]] = {}
    for family in TransactionFamily:
        reviewer_tier = frozenset({ADMIN_ROLE, reviewer_role(family), allocator_role(family)})
        allocator_tier = frozenset({ADMIN_ROLE, allocator_role(family)})

        # None: any authenticated actor
        policy[(family, AllocationOperation.CREATE)] = None
        for operation in (AllocationOperation.VIEW, AllocationOperation.REVIEW, AllocationOperation.SUBMIT):
            policy[(family, operation)] = reviewer_tier
        for operation in (
            AllocationOperation.ALLOCATE,
            AllocationOperation.MARK_DUPLICATE,
            AllocationOperation.SCAN,
        ):
            policy[(family, operation)] = allocator_tier
    return policy


ROLE_POLICY = _build_policy()

# Roles allowed to scan caller-supplied requests that may mix both families
CROSS_FAMILY_SCAN_ROLES = frozenset(
    {ADMIN_ROLE, *(allocator_role(family) for family in TransactionFamily)}
)


def required_roles(family: TransactionFamily, operation: AllocationOperation) -> Optional[frozenset[str]]:
    """Return the allowed roles for an operation, or None when any actor may run it."""
    return ROLE_POLICY[(family, operation)]


def has_any_role(actor: CurrentUser, allowed: Optional[frozenset[str]]) -> bool:
    if allowed is None:
        return True
    return any(role in allowed for role in actor.effective_roles)


def is_permitted(actor: CurrentUser, family: TransactionFamily, operation: AllocationOperation) -> bool:
    return has_any_role(actor, required_roles(family, operation))


def ensure_permitted(actor: CurrentUser, family: TransactionFamily, operation: AllocationOperation) -> None:
    """Raise ForbiddenError unless the actor holds a role allowed for the operation.

    Args:
        actor: Authenticated user
        family: Transaction family the operation targets
        operation: Operation being attempted

    Raises:
        ForbiddenError: If none of the actor's effective roles is allowed
    """
    if is_permitted(actor, family, operation):
        return

    LOGGER.warning(
        f"Access denied for user {actor.id}: {operation.value} on {family.value} allocation requests",
        extra={"roles": sorted(actor.effective_roles), "allowed": sorted(required_roles(family, operation) or [])},
    )
    raise ForbiddenError("Forbidden")


def ensure_any_role(actor: CurrentUser, allowed: frozenset[str]) -> None:
    """Raise ForbiddenError unless the actor holds one of ``allowed``."""
    if has_any_role(actor, allowed):
        return
    LOGGER.warning(f"Access denied for user {actor.id}: none of {sorted(allowed)}")
    raise ForbiddenError("Forbidden")
