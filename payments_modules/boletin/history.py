"""
Boletín history queries (``payments_modules.boletin.history``).

Responsibility
--------------
Read-side queries over prior boletines of the same purchase order that
the builder validates new lines against:

* ``last_units_by_item`` -- unit-of-measure continuity.  The most recent
  prior boletín that carries an item decides the item's unit.
* ``requested_quantities_by_item`` -- quantity already claimed by other
  live (non-rejected) boletines, for the received-quantity ceiling.

Invariants enforced
-------------------
* Newest first: ``created_at`` descending, ties broken by the counter
  value (``doc_sequence``) descending.  The first unit seen for an item is
  kept and never overwritten.
* Rejected boletines still count for unit continuity (the unit was
  committed when they were measured) but not for claimed quantity.
* The boletín being edited is excluded from both queries.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from payments_modules.boletin.models import PaymentRequestStatus
from payments_modules.boletin.orm import PaymentRequestLineModel, PaymentRequestModel
from payments_modules.catalog.models import normalize_unit_code


class UnitContinuityResolver:
    """Unit and quantity history of a purchase order's boletines."""

    def __init__(self, session: Session):
        self._session = session

    def last_units_by_item(
        self,
        order_id: str,
        exclude_request_id: UUID | None = None,
    ) -> dict[str, str]:
        stmt = (
            select(
                PaymentRequestLineModel.item_id,
                PaymentRequestLineModel.unit_of_measure,
            )
            .join(
                PaymentRequestModel,
                PaymentRequestLineModel.payment_request_id == PaymentRequestModel.id,
            )
            .where(PaymentRequestModel.external_order_id == order_id)
            .order_by(
                PaymentRequestModel.created_at.desc(),
                PaymentRequestModel.doc_sequence.desc(),
                PaymentRequestLineModel.line_number,
            )
        )
        if exclude_request_id is not None:
            stmt = stmt.where(PaymentRequestModel.id != exclude_request_id)

        units: dict[str, str] = {}
        for item_id, unit in self._session.execute(stmt):
            code = normalize_unit_code(unit)
            if code and item_id not in units:
                units[item_id] = code
        return units

    def requested_quantities_by_item(
        self,
        order_id: str,
        exclude_request_id: UUID | None = None,
    ) -> dict[str, Decimal]:
        stmt = (
            select(
                PaymentRequestLineModel.item_id,
                func.sum(PaymentRequestLineModel.quantity),
            )
            .join(
                PaymentRequestModel,
                PaymentRequestLineModel.payment_request_id == PaymentRequestModel.id,
            )
            .where(
                PaymentRequestModel.external_order_id == order_id,
                PaymentRequestModel.status != PaymentRequestStatus.REJECTED.value,
            )
            .group_by(PaymentRequestLineModel.item_id)
        )
        if exclude_request_id is not None:
            stmt = stmt.where(PaymentRequestModel.id != exclude_request_id)

        totals: dict[str, Decimal] = {}
        for item_id, quantity in self._session.execute(stmt):
            totals[item_id] = Decimal(str(quantity or 0))
        return totals
