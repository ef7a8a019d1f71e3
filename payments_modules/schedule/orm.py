"""
Payment Schedule ORM Models (``payments_modules.schedule.orm``).

Responsibility
--------------
SQLAlchemy persistence for payment schedules, their member lines and the
append-only audit log.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``payments_kernel.db`` and
sibling ``models.py``.

Invariants enforced
-------------------
* ``schedule_number`` is unique and comes from the ``payment_schedule``
  counter.
* Exclusivity: the partial unique index ``uq_payment_schedule_lines_active``
  admits at most one ``is_active`` line per payment request.  Cancelling a
  schedule deactivates its lines, which releases the requests.
* ``PaymentScheduleAuditModel`` is append-only (ORM listeners).
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payments_kernel.db.base import Base, TrackedBase
from payments_kernel.db.immutability import register_append_only


# ---------------------------------------------------------------------------
# 1. PaymentScheduleModel
# ---------------------------------------------------------------------------


class PaymentScheduleModel(TrackedBase):
    """
    ORM model for payment schedules.

    Guarantees:
        - schedule_number is unique (uq_payment_schedules_number).
        - status stored as string enum value.
        - Lines ordered by position; audit rows ordered by their sequence.
    """

    __tablename__ = "payment_schedules"

    __table_args__ = (
        UniqueConstraint("schedule_number", name="uq_payment_schedules_number"),
        Index("idx_payment_schedules_status", "status"),
    )

    schedule_sequence: Mapped[int] = mapped_column(nullable=False)
    schedule_number: Mapped[str] = mapped_column(String(30), nullable=False)
    commitment_date: Mapped[date] = mapped_column(nullable=False)
    payment_date: Mapped[date] = mapped_column(nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="pending_approval")
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_to_finance_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_to_finance_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    lines: Mapped[list["PaymentScheduleLineModel"]] = relationship(
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="PaymentScheduleLineModel.position",
        lazy="selectin",
    )

    audit_entries: Mapped[list["PaymentScheduleAuditModel"]] = relationship(
        order_by="PaymentScheduleAuditModel.sequence",
        lazy="selectin",
    )

    def to_dto(self, include_audit: bool = True):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.schedule.models import PaymentSchedule, PaymentScheduleStatus

        return PaymentSchedule(
            id=self.id,
            schedule_number=self.schedule_number,
            commitment_date=self.commitment_date,
            payment_date=self.payment_date,
            notes=self.notes,
            status=PaymentScheduleStatus(self.status),
            approved_at=self.approved_at,
            approved_by=self.approved_by,
            sent_to_finance_at=self.sent_to_finance_at,
            sent_to_finance_by=self.sent_to_finance_by,
            lines=tuple(line.to_dto() for line in self.lines),
            audit=(
                tuple(entry.to_dto() for entry in self.audit_entries)
                if include_audit else ()
            ),
            created_at=self.created_at,
            created_by=self.created_by,
        )

    def __repr__(self) -> str:
        return f"<PaymentScheduleModel {self.schedule_number} [{self.status}]>"


# ---------------------------------------------------------------------------
# 2. PaymentScheduleLineModel
# ---------------------------------------------------------------------------


class PaymentScheduleLineModel(Base):
    """
    Membership of one payment request in one schedule.

    Guarantees:
        - At most one active line per payment request across all schedules
          (partial unique index, PostgreSQL and SQLite).
    """

    __tablename__ = "payment_schedule_lines"

    __table_args__ = (
        UniqueConstraint(
            "schedule_id", "payment_request_id",
            name="uq_payment_schedule_lines_member",
        ),
        Index(
            "uq_payment_schedule_lines_active",
            "payment_request_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_schedules.id"), nullable=False,
    )
    payment_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_requests.id"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    schedule: Mapped["PaymentScheduleModel"] = relationship(back_populates="lines")
    payment_request: Mapped["PaymentRequestModel"] = relationship(lazy="joined")

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.schedule.models import PaymentScheduleLine

        return PaymentScheduleLine(
            id=self.id,
            position=self.position,
            payment_request_id=self.payment_request_id,
            doc_number=self.payment_request.doc_number,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<PaymentScheduleLineModel {self.schedule_id} -> {self.payment_request_id}>"


# ---------------------------------------------------------------------------
# 3. PaymentScheduleAuditModel
# ---------------------------------------------------------------------------


class PaymentScheduleAuditModel(Base):
    """
    Append-only record of one schedule transition or structural edit.

    Guarantees:
        - Rows are never updated or deleted (ImmutabilityViolationError).
    """

    __tablename__ = "payment_schedule_audits"

    __table_args__ = (
        UniqueConstraint(
            "schedule_id", "sequence",
            name="uq_payment_schedule_audits_sequence",
        ),
        Index("idx_payment_schedule_audits_schedule", "schedule_id"),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_schedules.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    status_before: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status_after: Mapped[str | None] = mapped_column(String(30), nullable=True)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.schedule.models import PaymentScheduleAuditEntry, ScheduleAuditAction

        return PaymentScheduleAuditEntry(
            id=self.id,
            schedule_id=self.schedule_id,
            sequence=self.sequence,
            action=ScheduleAuditAction(self.action),
            status_before=self.status_before,
            status_after=self.status_after,
            detail=dict(self.detail or {}),
            actor=self.actor,
            timestamp=self.timestamp,
        )

    def __repr__(self) -> str:
        return f"<PaymentScheduleAuditModel {self.action} by {self.actor}>"


register_append_only(PaymentScheduleAuditModel)
