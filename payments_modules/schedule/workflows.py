"""
Payment Schedule Workflow (``payments_modules.schedule.workflows``).

Responsibility
--------------
Declares the schedule state machine driven by ``ScheduleService``.  Every
transition appends one audit row in the same transaction as the status
change.

Architecture position
---------------------
**Modules layer** -- declarative workflow definitions.  Imports Guard,
Transition, Workflow from ``payments_kernel.domain.workflow``.

Invariants enforced
-------------------
* ``sent_to_finance`` accepts no edit, approval or cancellation; only a
  flow restart leaves it.
* ``edit`` of an approved schedule lands in ``pending_approval``.
"""

from payments_kernel.domain.workflow import Guard, Transition, Workflow
from payments_kernel.logging_config import get_logger

logger = get_logger("modules.schedule.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

ALL_MEMBERS_APPROVED = Guard(
    name="all_members_approved",
    description="Every non-rejected member boletín is approved",
)

MEMBERS_NOT_SCHEDULED_ELSEWHERE = Guard(
    name="members_not_scheduled_elsewhere",
    description="No member boletín is in another active schedule",
)


# -----------------------------------------------------------------------------
# Payment Schedule Workflow
# -----------------------------------------------------------------------------

PAYMENT_SCHEDULE_WORKFLOW = Workflow(
    name="payment_schedule",
    description="Payment schedule approval and hand-off to finance",
    initial_state="pending_approval",
    states=("pending_approval", "approved", "sent_to_finance", "cancelled"),
    transitions=(
        Transition("pending_approval", "pending_approval", action="edit"),
        Transition("approved", "pending_approval", action="edit"),
        Transition("pending_approval", "approved", action="approve", guard=ALL_MEMBERS_APPROVED),
        Transition("approved", "approved", action="approve", guard=ALL_MEMBERS_APPROVED),
        Transition("approved", "sent_to_finance", action="send_to_finance", guard=ALL_MEMBERS_APPROVED),
        Transition("approved", "pending_approval", action="restart_flow"),
        Transition("sent_to_finance", "pending_approval", action="restart_flow"),
        Transition(
            "cancelled", "pending_approval", action="restart_flow",
            guard=MEMBERS_NOT_SCHEDULED_ELSEWHERE,
        ),
        Transition("pending_approval", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
    ),
    terminal_states=("sent_to_finance", "cancelled"),
)

logger.info(
    "payment_schedule_workflow_defined",
    extra={
        "workflow": PAYMENT_SCHEDULE_WORKFLOW.name,
        "states": len(PAYMENT_SCHEDULE_WORKFLOW.states),
        "transitions": len(PAYMENT_SCHEDULE_WORKFLOW.transitions),
    },
)
