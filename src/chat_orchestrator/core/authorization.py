"""Single decision point for session read access."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from chat_orchestrator.core.types import ELEVATED_ROLES, Identity
from chat_orchestrator.errors import ForbiddenError, UnauthenticatedError
from chat_orchestrator.log import get_logger

logger = get_logger(__name__)


class Decision(StrEnum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"


def authorize(
    requester_id: str | None,
    requester_roles: Iterable[str],
    resource_owner_id: str,
) -> Decision:
    """Decide whether a requester may read a resource owned by *resource_owner_id*.

    The owner may always read their own resources; any elevated role
    (admin, moderator) may read anyone's. Denials are logged at warning level.
    """
    if not requester_id:
        logger.warning("authorization_denied", reason="unauthenticated", owner_id=resource_owner_id)
        return Decision.UNAUTHENTICATED

    if requester_id == resource_owner_id:
        return Decision.ALLOW

    if ELEVATED_ROLES.intersection(requester_roles):
        return Decision.ALLOW

    logger.warning(
        "authorization_denied",
        reason="forbidden",
        requester_id=requester_id,
        owner_id=resource_owner_id,
    )
    return Decision.FORBIDDEN


def require_access(identity: Identity, resource_owner_id: str) -> None:
    """Raise if *identity* may not read resources of *resource_owner_id*."""
    match authorize(identity.user_id, identity.roles, resource_owner_id):
        case Decision.ALLOW:
            return
        case Decision.UNAUTHENTICATED:
            raise UnauthenticatedError("Authentication required")
        case Decision.FORBIDDEN:
            raise ForbiddenError(
                "Access denied. You can only access your own chat history "
                "or must have the admin or moderator role"
            )
