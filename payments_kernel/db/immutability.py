"""
Append-only tables enforced in the ORM.

Audit rows for boletines and schedules record who approved, sent,
restarted or cancelled what.  They are inserted by the services and never
touched again.  ``register_append_only(Model)`` hooks the mapper's
``before_update`` and ``before_delete`` events, so a flush that would
change or remove such a row raises ``ImmutabilityViolationError`` before
any SQL is emitted and the surrounding transaction rolls back.

The ORM modules register their audit models at import time.
"""

from sqlalchemy import event

from payments_kernel.exceptions import ImmutabilityViolationError
from payments_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered: set[type] = set()

_REASONS = {
    "UPDATE": "audit rows are append-only and cannot be modified",
    "DELETE": "audit rows are append-only and cannot be deleted",
}


def _blocked(operation: str, target) -> ImmutabilityViolationError:
    entity_type = type(target).__name__
    entity_id = str(target.id)
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": entity_id, "operation": operation},
    )
    return ImmutabilityViolationError(
        entity_type=entity_type, entity_id=entity_id, reason=_REASONS[operation],
    )


def _before_update(mapper, connection, target):
    raise _blocked("UPDATE", target)


def _before_delete(mapper, connection, target):
    raise _blocked("DELETE", target)


_LISTENERS = (("before_update", _before_update), ("before_delete", _before_delete))


def register_append_only(model: type) -> None:
    """Reject every later UPDATE and DELETE of ``model`` rows.  Idempotent."""
    if model in _registered:
        return
    for name, listener in _LISTENERS:
        event.listen(model, name, listener)
    _registered.add(model)


def unregister_append_only(model: type) -> None:
    """Lift the guard from ``model``.  For tests that exercise a violation path."""
    for name, listener in _LISTENERS:
        if event.contains(model, name, listener):
            event.remove(model, name, listener)
    _registered.discard(model)


def is_append_only(model: type) -> bool:
    return model in _registered
