"""
Payment Schedule Domain Models (``payments_modules.schedule.models``).

Frozen snapshots of payment schedules, their member lines and their audit
trail, plus the result of a schedule edit.  No I/O.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID


class PaymentScheduleStatus(Enum):
    """Schedule states.  Must align with ``workflows.PAYMENT_SCHEDULE_WORKFLOW.states``."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT_TO_FINANCE = "sent_to_finance"
    CANCELLED = "cancelled"


class ScheduleAuditAction(Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    APPROVED = "APPROVED"
    SENT_TO_FINANCE = "SENT_TO_FINANCE"
    FLOW_RESTARTED = "FLOW_RESTARTED"
    CANCELED = "CANCELED"


@dataclass(frozen=True)
class PaymentScheduleLine:
    id: UUID
    position: int
    payment_request_id: UUID
    doc_number: str
    is_active: bool


@dataclass(frozen=True)
class PaymentScheduleAuditEntry:
    id: UUID
    schedule_id: UUID
    sequence: int
    action: ScheduleAuditAction
    status_before: str | None
    status_after: str | None
    detail: dict
    actor: str
    timestamp: datetime


@dataclass(frozen=True)
class PaymentSchedule:
    """A dated batch of boletines submitted together for disbursement."""

    id: UUID
    schedule_number: str
    commitment_date: date
    payment_date: date
    notes: str | None
    status: PaymentScheduleStatus
    approved_at: datetime | None = None
    approved_by: str | None = None
    sent_to_finance_at: datetime | None = None
    sent_to_finance_by: str | None = None
    lines: tuple[PaymentScheduleLine, ...] = field(default_factory=tuple)
    audit: tuple[PaymentScheduleAuditEntry, ...] = field(default_factory=tuple)
    created_at: datetime | None = None
    created_by: str | None = None

    @property
    def request_ids(self) -> tuple[UUID, ...]:
        return tuple(line.payment_request_id for line in self.lines)


@dataclass(frozen=True)
class ScheduleUpdateResult:
    """
    Outcome of ``ScheduleService.update``.

    ``approval_reset`` is True when an approved schedule was returned to
    pending approval by the edit.  ``changed`` is False when the edit
    matched the stored schedule exactly; nothing was written then.
    """

    schedule: PaymentSchedule
    approval_reset: bool
    changed: bool = True
