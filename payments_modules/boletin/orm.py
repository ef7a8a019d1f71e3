"""
Boletín ORM Models (``payments_modules.boletin.orm``).

Responsibility
--------------
SQLAlchemy persistence for payment requests (boletines), their lines and
their audit trail.  Maps to the frozen dataclasses in ``models.py``.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``payments_kernel.db`` and
sibling ``models.py``.

Invariants enforced
-------------------
* ``doc_sequence`` and ``doc_number`` are unique; both come from the
  ``payment_request`` counter, never from counting rows.
* ``(payment_request_id, line_number)`` is unique per boletín.
* ``PaymentRequestAuditModel`` is append-only (ORM listeners).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payments_kernel.db.base import Base, TrackedBase
from payments_kernel.db.immutability import register_append_only


# ---------------------------------------------------------------------------
# 1. PaymentRequestModel
# ---------------------------------------------------------------------------


class PaymentRequestModel(TrackedBase):
    """
    ORM model for boletines.

    Guarantees:
        - doc_number is unique (uq_payment_requests_doc_number).
        - status stored as string enum value.
        - Monetary fields use Decimal (Numeric(38,9) via type_annotation_map).
        - Lines are owned (cascade delete-orphan) and ordered by line_number.
    """

    __tablename__ = "payment_requests"

    __table_args__ = (
        UniqueConstraint("doc_number", name="uq_payment_requests_doc_number"),
        UniqueConstraint("doc_sequence", name="uq_payment_requests_doc_sequence"),
        Index("idx_payment_requests_order", "external_order_id"),
        Index("idx_payment_requests_status", "status"),
    )

    doc_sequence: Mapped[int] = mapped_column(nullable=False)
    doc_number: Mapped[str] = mapped_column(String(30), nullable=False)
    external_order_id: Mapped[str] = mapped_column(String(100), nullable=False)
    external_doc_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vendor_fiscal_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    project_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_date: Mapped[date] = mapped_column(nullable=False)
    measurement_start_date: Mapped[date | None] = mapped_column(nullable=True)
    measurement_end_date: Mapped[date | None] = mapped_column(nullable=True)
    reception_numbers: Mapped[list] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    retention_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    advance_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    isr_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    sub_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_tax_retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    advance_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    isr_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    net_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    lines: Mapped[list["PaymentRequestLineModel"]] = relationship(
        back_populates="payment_request",
        cascade="all, delete-orphan",
        order_by="PaymentRequestLineModel.line_number",
        lazy="selectin",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.boletin.models import PaymentRequest, PaymentRequestStatus

        return PaymentRequest(
            id=self.id,
            doc_number=self.doc_number,
            external_order_id=self.external_order_id,
            vendor_name=self.vendor_name,
            vendor_fiscal_id=self.vendor_fiscal_id,
            project_name=self.project_name,
            request_date=self.request_date,
            status=PaymentRequestStatus(self.status),
            retention_percent=self.retention_percent,
            advance_percent=self.advance_percent,
            isr_percent=self.isr_percent,
            sub_total=self.sub_total,
            tax_amount=self.tax_amount,
            line_retention_amount=self.line_retention_amount,
            line_tax_retention_amount=self.line_tax_retention_amount,
            retention_amount=self.retention_amount,
            advance_amount=self.advance_amount,
            isr_amount=self.isr_amount,
            net_total=self.net_total,
            lines=tuple(line.to_dto() for line in self.lines),
            rejection_reason=self.rejection_reason,
            external_doc_id=self.external_doc_id,
            reception_numbers=tuple(self.reception_numbers or ()),
            measurement_start_date=self.measurement_start_date,
            measurement_end_date=self.measurement_end_date,
            created_at=self.created_at,
            created_by=self.created_by,
        )

    def __repr__(self) -> str:
        return f"<PaymentRequestModel {self.doc_number} [{self.status}]>"


# ---------------------------------------------------------------------------
# 2. PaymentRequestLineModel
# ---------------------------------------------------------------------------


class PaymentRequestLineModel(Base):
    """
    ORM model for boletín lines.

    Guarantees:
        - FK to payment_requests.id.
        - unit_of_measure stored normalized (upper-case).
    """

    __tablename__ = "payment_request_lines"

    __table_args__ = (
        UniqueConstraint(
            "payment_request_id", "line_number",
            name="uq_payment_request_lines_number",
        ),
        Index("idx_payment_request_lines_item", "item_id"),
    )

    payment_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_requests.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    tax_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_retention_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    tax_retention_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    line_total: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    reception_numbers: Mapped[list] = mapped_column(JSON, default=list)

    payment_request: Mapped["PaymentRequestModel"] = relationship(
        back_populates="lines",
    )

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.boletin.models import PaymentRequestLine

        return PaymentRequestLine(
            id=self.id,
            line_number=self.line_number,
            item_id=self.item_id,
            description=self.description,
            unit_of_measure=self.unit_of_measure,
            quantity=self.quantity,
            unit_price=self.unit_price,
            tax_percent=self.tax_percent,
            tax_amount=self.tax_amount,
            retention_percent=self.retention_percent,
            retention_amount=self.retention_amount,
            tax_retention_percent=self.tax_retention_percent,
            tax_retention_amount=self.tax_retention_amount,
            line_total=self.line_total,
            tax_type=self.tax_type,
            reception_numbers=tuple(self.reception_numbers or ()),
        )

    def __repr__(self) -> str:
        return f"<PaymentRequestLineModel {self.line_number}: {self.item_id}>"


# ---------------------------------------------------------------------------
# 3. PaymentRequestAuditModel
# ---------------------------------------------------------------------------


class PaymentRequestAuditModel(Base):
    """
    Append-only audit row for boletín creation, edits and status changes.

    Guarantees:
        - Rows are never updated or deleted (ImmutabilityViolationError).
        - ``sequence`` numbers a boletín's rows 1, 2, ... in write order.
    """

    __tablename__ = "payment_request_audits"

    __table_args__ = (
        UniqueConstraint(
            "payment_request_id", "sequence",
            name="uq_payment_request_audits_sequence",
        ),
        Index("idx_payment_request_audits_request", "payment_request_id"),
    )

    payment_request_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_requests.id"), nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    status_before: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status_after: Mapped[str | None] = mapped_column(String(20), nullable=True)
    detail: Mapped[dict] = mapped_column(JSON, default=dict)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.boletin.models import PaymentRequestAuditEntry, RequestAuditAction

        return PaymentRequestAuditEntry(
            id=self.id,
            payment_request_id=self.payment_request_id,
            sequence=self.sequence,
            action=RequestAuditAction(self.action),
            status_before=self.status_before,
            status_after=self.status_after,
            detail=dict(self.detail or {}),
            actor=self.actor,
            timestamp=self.timestamp,
        )

    def __repr__(self) -> str:
        return f"<PaymentRequestAuditModel {self.action} by {self.actor}>"


register_append_only(PaymentRequestAuditModel)


class OrderLockModel(Base):
    """
    One row per external purchase order, locked ``FOR UPDATE`` while a
    boletín of that order is built or edited.

    Unit continuity and the quantity ceiling read the order's earlier
    boletines; holding this row makes those reads and the write that
    follows one step for each order.
    """

    __tablename__ = "payment_request_order_locks"

    external_order_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def __repr__(self) -> str:
        return f"<OrderLockModel {self.external_order_id}>"
