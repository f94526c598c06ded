"""Role-Based Access Control (RBAC) enforcement.

The role → action table is fixed in code: changing it is a deployment,
not a runtime edit. It serves two consumers:

- workflow steps carrying ``config.required_action`` (checked against the
  triggering actor's role by the step executor)
- FastAPI routes and privileged event metadata flags

Usage:
    @router.get("/dead-letters", dependencies=[Depends(require_action("automation:manage"))])
    async def list_dead_letters(...): ...
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, HTTPException, status

from app.dependencies import get_current_actor
from core.constants import Action

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleDefinition:
    """One role: its own actions plus the roles it inherits from."""

    id: str
    label: str
    actions: frozenset[str]
    inherits: tuple[str, ...] = field(default_factory=tuple)


ROLE_DEFINITIONS: dict[str, RoleDefinition] = {
    "parent": RoleDefinition(
        id="parent",
        label="Parent/Guardian",
        actions=frozenset({"core:dashboard", "content:read", "child:read", "messages:basic"}),
    ),
    "teacher": RoleDefinition(
        id="teacher",
        label="Teacher",
        inherits=("parent",),
        actions=frozenset({
            "core:dashboard", "classrooms:manage", "assignments:manage",
            "messages:educator", "notifications:send",
        }),
    ),
    "school_admin": RoleDefinition(
        id="school_admin",
        label="School Admin",
        inherits=("teacher",),
        actions=frozenset({
            "org:manage", "users:manage", "reporting:view", "safety:review",
            Action.MANAGE.value, Action.REQUEST_REVIEW.value,
        }),
    ),
    "district_admin": RoleDefinition(
        id="district_admin",
        label="District Admin",
        inherits=("school_admin",),
        actions=frozenset({
            "district:manage", "reporting:district", "partner:manage",
            Action.APPROVE.value, Action.PUBLISH.value, Action.REPLAY.value,
        }),
    ),
    "system_admin": RoleDefinition(
        id="system_admin",
        label="System Admin",
        inherits=("district_admin",),
        actions=frozenset({"*"}),
    ),
    "partner": RoleDefinition(
        id="partner",
        label="Partner",
        actions=frozenset({
            "core:dashboard", "partner:portal", "partner:resources", "partner:submissions",
        }),
    ),
}

ROLE_ALIASES: dict[str, str] = {"admin": "system_admin"}

FALLBACK_ROLE = "parent"


def normalize_role(role: Optional[str]) -> str:
    """Map a raw role claim onto a known role id (unknown → fallback role)."""
    if not role:
        return FALLBACK_ROLE
    normalized = str(role).strip().lower()
    if normalized in ROLE_ALIASES:
        return ROLE_ALIASES[normalized]
    if normalized in ROLE_DEFINITIONS:
        return normalized
    return FALLBACK_ROLE


def get_effective_actions(role: Optional[str]) -> set[str]:
    """Collect the role's actions including everything it inherits."""
    actions: set[str] = set()
    visited: set[str] = set()
    pending = [normalize_role(role)]

    while pending:
        role_id = pending.pop()
        if role_id in visited:
            continue
        visited.add(role_id)
        definition = ROLE_DEFINITIONS.get(role_id)
        if definition is None:
            continue
        actions.update(definition.actions)
        pending.extend(definition.inherits)

    return actions


def _check_permission(granted: set[str], required: str) -> bool:
    """Check if granted actions satisfy the required action.

    Supports wildcard: "automation:*" matches "automation:approve", etc.
    """
    if required in granted:
        return True

    for action in granted:
        if action == "*":
            return True
        if action.endswith(":*"):
            prefix = action[:-2]
            if required.startswith(prefix + ":"):
                return True

    return False


def role_allows(role: Optional[str], action: str) -> bool:
    """True when ``role`` (after normalization and inheritance) grants ``action``."""
    if not action:
        return True
    return _check_permission(get_effective_actions(role), action)


def require_action(action: str):
    """FastAPI dependency that enforces a single action for the calling actor.

    Returns 403 if the actor's role lacks the required action.
    """

    async def _check(actor=Depends(get_current_actor)):
        if not role_allows(actor.role, action):
            logger.warning(
                "RBAC denied: actor=%s role=%s action=%s",
                actor.user_id,
                actor.role,
                action,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required action: {action}",
            )
        return actor

    return _check
