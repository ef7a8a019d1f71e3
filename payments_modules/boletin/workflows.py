"""
Payment Request Workflow (``payments_modules.boletin.workflows``).

Responsibility
--------------
Declares the boletín status state machine.  ``BoletinService.set_status``
only fires non-privileged transitions; ``override_status`` may fire any
transition, including the privileged ones back to ``pending``.

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions.  Imports Guard,
Transition, Workflow from ``payments_kernel.domain.workflow``.
"""

from payments_kernel.domain.workflow import Guard, Transition, Workflow
from payments_kernel.logging_config import get_logger

logger = get_logger("modules.boletin.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

REJECTION_REASON_GIVEN = Guard(
    name="rejection_reason_given",
    description="A non-empty rejection reason accompanies the rejection",
)

OVERRIDE_JUSTIFIED = Guard(
    name="override_justified",
    description="Privileged override carries a written justification",
)


# -----------------------------------------------------------------------------
# Payment Request Workflow
# -----------------------------------------------------------------------------

PAYMENT_REQUEST_WORKFLOW = Workflow(
    name="payment_request",
    description="Boletín approval workflow",
    initial_state="pending",
    states=("pending", "approved", "rejected"),
    transitions=(
        Transition("pending", "approved", action="approve"),
        Transition("pending", "rejected", action="reject", guard=REJECTION_REASON_GIVEN),
        # Re-decisions on an already decided boletín
        Transition("approved", "rejected", action="reject", guard=REJECTION_REASON_GIVEN),
        Transition("rejected", "approved", action="approve"),
        Transition("approved", "pending", action="reopen", guard=OVERRIDE_JUSTIFIED, privileged=True),
        Transition("rejected", "pending", action="reopen", guard=OVERRIDE_JUSTIFIED, privileged=True),
    ),
)

ACTION_BY_TARGET = {
    "approved": "approve",
    "rejected": "reject",
    "pending": "reopen",
}

logger.info(
    "payment_request_workflow_defined",
    extra={
        "workflow": PAYMENT_REQUEST_WORKFLOW.name,
        "states": len(PAYMENT_REQUEST_WORKFLOW.states),
        "transitions": len(PAYMENT_REQUEST_WORKFLOW.transitions),
    },
)
