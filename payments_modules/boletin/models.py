"""
Boletín Domain Models (``payments_modules.boletin.models``).

Responsibility
--------------
Frozen value objects for measurement boletines (payment requests): the
inputs the application layer hands to ``BoletinService`` and the
snapshots it hands back.

Architecture position
---------------------
**Modules layer** -- pure data definitions.  No I/O, no database.

Invariants enforced
-------------------
* All monetary fields and percentages use ``Decimal`` (never ``float``).
* All dataclasses are ``frozen=True``.
* Derived amounts are produced by ``payments_engines.boletin_totals``;
  these objects only carry them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

_ZERO = Decimal("0")


class PaymentRequestStatus(Enum):
    """Payment request states.  Must align with ``workflows.PAYMENT_REQUEST_WORKFLOW.states``."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestAuditAction(Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    STATUS_OVERRIDDEN = "STATUS_OVERRIDDEN"


@dataclass(frozen=True)
class OrderHeader:
    """Header fields of the external purchase order the boletín measures."""

    vendor_name: str
    vendor_fiscal_id: str | None = None
    project_name: str | None = None
    measurement_start_date: date | None = None
    measurement_end_date: date | None = None


@dataclass(frozen=True)
class PurchaseOrderLine:
    """One line of the external order, as reported by the order oracle."""

    order_id: str
    item_id: str
    ordered_quantity: Decimal
    received_quantity: Decimal
    unit_price: Decimal
    reception_refs: tuple[str, ...] = ()


@dataclass(frozen=True)
class BoletinLineInput:
    """A line as entered by the person filling the boletín."""

    item_id: str
    unit_of_measure: str | None
    quantity: Decimal
    unit_price: Decimal
    description: str | None = None
    tax_percent: Decimal = _ZERO
    retention_percent: Decimal = _ZERO
    tax_retention_percent: Decimal = _ZERO
    tax_type: str | None = None
    reception_numbers: tuple[str, ...] = ()


@dataclass(frozen=True)
class DeductionPercents:
    """Header deductions; ``None`` fields fall back to configured defaults."""

    retention_percent: Decimal | None = None
    advance_percent: Decimal | None = None
    isr_percent: Decimal | None = None


@dataclass(frozen=True)
class PaymentRequestLine:
    id: UUID
    line_number: int
    item_id: str
    description: str | None
    unit_of_measure: str
    quantity: Decimal
    unit_price: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    retention_percent: Decimal
    retention_amount: Decimal
    tax_retention_percent: Decimal
    tax_retention_amount: Decimal
    line_total: Decimal
    tax_type: str | None = None
    reception_numbers: tuple[str, ...] = ()

    @property
    def base_amount(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class PaymentRequest:
    """
    A measurement boletín against one purchase order.

    ``request_date`` is the date the boletín was registered; the schedule
    builder compares it with a schedule's commitment date.
    """

    id: UUID
    doc_number: str
    external_order_id: str
    vendor_name: str
    vendor_fiscal_id: str | None
    project_name: str | None
    request_date: date
    status: PaymentRequestStatus
    retention_percent: Decimal
    advance_percent: Decimal
    isr_percent: Decimal
    sub_total: Decimal
    tax_amount: Decimal
    line_retention_amount: Decimal
    line_tax_retention_amount: Decimal
    retention_amount: Decimal
    advance_amount: Decimal
    isr_amount: Decimal
    net_total: Decimal
    lines: tuple[PaymentRequestLine, ...] = field(default_factory=tuple)
    rejection_reason: str | None = None
    external_doc_id: str | None = None
    reception_numbers: tuple[str, ...] = ()
    measurement_start_date: date | None = None
    measurement_end_date: date | None = None
    created_at: datetime | None = None
    created_by: str | None = None

    @property
    def is_editable(self) -> bool:
        """Status allows edits (scheduling may still lock it)."""
        return self.status == PaymentRequestStatus.PENDING


@dataclass(frozen=True)
class PaymentRequestAuditEntry:
    id: UUID
    payment_request_id: UUID
    sequence: int
    action: RequestAuditAction
    status_before: str | None
    status_after: str | None
    detail: dict
    actor: str
    timestamp: datetime
