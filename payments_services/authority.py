"""
payments_services.authority -- Capability check at the application boundary.

Responsibility:
    Decide whether an actor may perform an engine operation.  The module
    services are authorization-agnostic; ``PaymentDesk`` evaluates the
    capability once, before invoking any state-machine transition.

Architecture position:
    Services layer.  Consumes ``AuthoritySettings`` from payments_config.

Invariants:
    - The engine never resolves actor identity; the caller supplies the
      ``Capability`` (actor, role, accounting flag).
    - Unknown actions are denied (fail closed).
"""

from __future__ import annotations

from dataclasses import dataclass

from payments_config.schema import AuthoritySettings
from payments_kernel.exceptions import PermissionDeniedError
from payments_kernel.logging_config import get_logger

logger = get_logger("services.authority")

# Requirement levels
ANY_ACTOR = "any"
APPROVER = "approver"
PRIVILEGED = "privileged"

# action -> requirement level
ACTION_REQUIREMENTS: dict[str, str] = {
    "boletin.build": ANY_ACTOR,
    "boletin.set_status": APPROVER,
    "boletin.override_status": PRIVILEGED,
    "schedule.create": APPROVER,
    "schedule.update": APPROVER,
    "schedule.approve": APPROVER,
    "schedule.send_to_finance": APPROVER,
    "schedule.restart_flow": APPROVER,
    "schedule.cancel": APPROVER,
}


@dataclass(frozen=True)
class Capability:
    """What the caller's identity provider says about the actor."""

    actor: str
    role: str | None = None
    can_approve_finance: bool = False


def get_requirement(action: str) -> str | None:
    """Return the requirement level for ``action``, or None if not in scope."""
    return ACTION_REQUIREMENTS.get(action)


def check_capability(
    capability: Capability,
    action: str,
    settings: AuthoritySettings,
) -> tuple[bool, str]:
    """Check whether the actor may perform ``action``.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short message
        when denied.
    """
    if not capability.actor or not capability.actor.strip():
        return (False, "authority: actor is required")

    requirement = get_requirement(action)
    if requirement is None:
        return (False, f"authority: unknown action '{action}'")
    if requirement == ANY_ACTOR:
        return (True, "")

    privileged = (capability.role or "").strip().lower() in {
        r.strip().lower() for r in settings.privileged_roles
    }
    if privileged:
        return (True, "")
    if requirement == PRIVILEGED:
        return (False, f"authority: '{action}' requires one of roles {settings.privileged_roles}")

    if settings.finance_flag_grants_approval and capability.can_approve_finance:
        return (True, "")
    return (False, f"authority: '{action}' requires approval capability")


def can_approve(capability: Capability, settings: AuthoritySettings) -> bool:
    """True when the actor holds approval capability (used for notifications)."""
    allowed, _ = check_capability(capability, "schedule.approve", settings)
    return allowed


def require_capability(
    capability: Capability,
    action: str,
    settings: AuthoritySettings,
) -> None:
    """Raise ``PermissionDeniedError`` unless ``check_capability`` allows it."""
    allowed, reason = check_capability(capability, action, settings)
    if not allowed:
        logger.warning(
            "permission_denied",
            extra={
                "actor": capability.actor,
                "role": capability.role,
                "action": action,
                "reason": reason,
            },
        )
        raise PermissionDeniedError(capability.actor, action, reason)
