"""
Boletín Module Service (``payments_modules.boletin.service``).

Responsibility
--------------
Builds and edits measurement boletines (payment requests) and drives their
status workflow.  Pure arithmetic is delegated to
``payments_engines.boletin_totals``; unit and quantity history come from
``UnitContinuityResolver``; document numbers from the kernel
``SequenceService``.

Architecture position
---------------------
**Modules layer** -- ``BoletinService`` is the sole public entry point for
boletín operations.  Authorization is NOT checked here; callers are
pre-authorized by ``payments_services.authority``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (commit on success,
  rollback and re-raise on any error).  Nothing is partially applied.
* Line validation runs in input order: missing unit, unknown unit, unit
  continuity, numeric ranges, then the received-quantity ceiling.
* ``doc_number`` comes from the locked ``payment_request`` counter row.
* Edits are allowed only while the boletín is pending and not linked to an
  active schedule; header and full line set are replaced together.
* ``rejection_reason`` is set iff the status is ``rejected``.

Failure modes
-------------
* ``ValidationError`` subclasses -- malformed lines, missing reasons.
* ``UnitMismatchError`` / ``QuantityExceededError`` -- conflicts with prior
  boletines of the same order.
* ``RequestLockedError`` -- edit of a decided or scheduled boletín.
* ``PaymentRequestNotFoundError`` -- unknown id.

Audit relevance
---------------
Every write appends a ``PaymentRequestAuditModel`` row and emits one
structured log event (``boletin_created``, ``boletin_updated``,
``payment_request_status_changed``, ``payment_request_status_overridden``).

Usage::

    service = BoletinService(session, clock=clock, config=get_active_config())
    request = service.build_or_update(
        order_id="OC-1001",
        header=OrderHeader(vendor_name="Constructora Norte"),
        lines=[BoletinLineInput("ITEM-1", "m2", Decimal("10"), Decimal("100"),
                                tax_percent=Decimal("18"))],
        actor="jperez",
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payments_config.schema import PaymentsConfig
from payments_engines.boletin_totals import (
    BoletinTotals,
    BoletinTotalsCalculator,
    HeaderDeductions,
    LineFigures,
)
from payments_kernel.domain.clock import Clock, SystemClock
from payments_kernel.exceptions import (
    EmptyBoletinError,
    InvalidLineError,
    InvalidRequestTransitionError,
    InvalidStatusError,
    MissingOverrideReasonError,
    MissingRejectionReasonError,
    MissingUnitError,
    OrderItemNotFoundError,
    OrderMismatchError,
    PaymentRequestNotFoundError,
    QuantityExceededError,
    RequestLockedError,
    UnitMismatchError,
    UnitNotFoundError,
)
from payments_kernel.logging_config import get_logger
from payments_kernel.services.sequence_service import SequenceService
from payments_modules._service_helpers import transaction_boundary
from payments_modules.boletin.history import UnitContinuityResolver
from payments_modules.boletin.models import (
    BoletinLineInput,
    DeductionPercents,
    OrderHeader,
    PaymentRequest,
    PaymentRequestAuditEntry,
    PaymentRequestStatus,
    PurchaseOrderLine,
    RequestAuditAction,
)
from payments_modules.boletin.orm import (
    OrderLockModel,
    PaymentRequestAuditModel,
    PaymentRequestLineModel,
    PaymentRequestModel,
)
from payments_modules.boletin.workflows import ACTION_BY_TARGET, PAYMENT_REQUEST_WORKFLOW
from payments_modules.catalog.models import normalize_unit_code
from payments_modules.catalog.service import CatalogGate
from payments_modules.schedule.selectors import ScheduleSelector

logger = get_logger("modules.boletin.service")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _check_line_numbers(line: BoletinLineInput) -> None:
    if line.quantity <= _ZERO:
        raise InvalidLineError(line.item_id, "quantity", str(line.quantity), "must be positive")
    if line.unit_price < _ZERO:
        raise InvalidLineError(line.item_id, "unit_price", str(line.unit_price), "cannot be negative")
    for name in ("tax_percent", "retention_percent", "tax_retention_percent"):
        value = getattr(line, name)
        if value < _ZERO or value > _HUNDRED:
            raise InvalidLineError(line.item_id, name, str(value), "must be between 0 and 100")


def _coerce_status(value: PaymentRequestStatus | str) -> PaymentRequestStatus:
    if isinstance(value, PaymentRequestStatus):
        return value
    try:
        return PaymentRequestStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidStatusError(
            str(value), tuple(s.value for s in PaymentRequestStatus),
        ) from None


class BoletinService:
    """
    Orchestrates boletín creation, edits and status changes.

    Contract
    --------
    * Every public method returns frozen DTOs from ``models.py``.
    * Writes commit on success and roll back on any exception.

    Non-goals
    ---------
    * Does not fire notifications; ``payments_services.payment_desk`` does
      that after commit.
    * Does not query the external order system; callers pass the order
      header and, optionally, the order lines for the quantity ceiling.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: PaymentsConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or PaymentsConfig()
        self._catalog = CatalogGate(session)
        self._history = UnitContinuityResolver(session)
        self._schedules = ScheduleSelector(session)
        self._sequences = SequenceService(session)
        self._calculator = BoletinTotalsCalculator()

    # =========================================================================
    # Builder
    # =========================================================================

    def build_or_update(
        self,
        order_id: str,
        header: OrderHeader,
        lines: Sequence[BoletinLineInput],
        actor: str,
        deductions: DeductionPercents | None = None,
        editing_request_id: UUID | None = None,
        order_lines: Sequence[PurchaseOrderLine] | None = None,
        external_doc_id: str | None = None,
        reception_numbers: Sequence[str] = (),
    ) -> PaymentRequest:
        """
        Create a boletín, or replace an editable one, from validated lines.

        Preconditions:
            - ``lines`` is non-empty.
            - When ``editing_request_id`` is given, the boletín belongs to
              ``order_id``, is pending, and is not in an active schedule.
        Postconditions:
            - Header, totals and the full line set are persisted together.
            - One ``CREATED`` or ``UPDATED`` audit row is appended.

        Raises:
            EmptyBoletinError, MissingUnitError, UnitNotFoundError,
            UnitMismatchError, InvalidLineError, QuantityExceededError,
            OrderItemNotFoundError, OrderMismatchError, RequestLockedError,
            PaymentRequestNotFoundError.
        """
        with transaction_boundary(self._session):
            if not lines:
                raise EmptyBoletinError(order_id)

            # Held until commit: the history read below must still be current at write time
            self._lock_order(order_id)

            existing = None
            if editing_request_id is not None:
                existing = self._load_for_update(editing_request_id)
                self._assert_editable(existing, order_id)

            figures, units = self._validate_lines(
                order_id, lines, editing_request_id, order_lines,
            )
            header_deductions = self._resolve_deductions(deductions)
            totals = self._calculator.calculate(lines=figures, deductions=header_deductions)

            if existing is None:
                request = self._create_request(order_id, header, actor)
                action = RequestAuditAction.CREATED
            else:
                request = existing
                request.updated_by = actor
                action = RequestAuditAction.UPDATED

            self._apply_header(request, header, header_deductions, totals)
            request.external_doc_id = external_doc_id
            request.reception_numbers = list(reception_numbers)
            self._replace_lines(request, lines, units, totals)

            self._append_audit(
                request, action, actor,
                status_before=None if existing is None else request.status,
                status_after=request.status,
                detail={
                    "line_count": len(lines),
                    "net_total": str(totals.net_total),
                },
            )
            self._session.flush()
            dto = request.to_dto()

        logger.info(
            "boletin_created" if action is RequestAuditAction.CREATED else "boletin_updated",
            extra={
                "payment_request_id": str(dto.id),
                "doc_number": dto.doc_number,
                "order_id": order_id,
                "line_count": len(dto.lines),
                "sub_total": str(dto.sub_total),
                "net_total": str(dto.net_total),
            },
        )
        return dto

    def _lock_order(self, order_id: str) -> None:
        """Take the order's lock row, creating it on first use."""
        stmt = (
            select(OrderLockModel)
            .where(OrderLockModel.external_order_id == order_id)
            .with_for_update()
        )
        if self._session.execute(stmt).scalar_one_or_none() is not None:
            return
        try:
            with self._session.begin_nested():
                self._session.add(OrderLockModel(external_order_id=order_id))
                self._session.flush()
            # The uncommitted insert already blocks other builders of this order
            return
        except IntegrityError:
            logger.debug("order_lock_race_retry", extra={"order_id": order_id})
        self._session.execute(stmt).scalar_one()

    def _load_for_update(self, request_id: UUID) -> PaymentRequestModel:
        request = self._session.execute(
            select(PaymentRequestModel)
            .where(PaymentRequestModel.id == request_id)
            .with_for_update()
        ).scalar_one_or_none()
        if request is None:
            raise PaymentRequestNotFoundError([str(request_id)])
        return request

    def _assert_editable(self, request: PaymentRequestModel, order_id: str) -> None:
        if request.external_order_id != order_id:
            raise OrderMismatchError(request.doc_number, request.external_order_id, order_id)
        if request.status != PaymentRequestStatus.PENDING.value:
            raise RequestLockedError(request.doc_number, request.status)
        links = self._schedules.active_schedule_numbers([request.id])
        if links:
            raise RequestLockedError(
                request.doc_number, request.status, sorted(links[request.id]),
            )

    def _validate_lines(
        self,
        order_id: str,
        lines: Sequence[BoletinLineInput],
        editing_request_id: UUID | None,
        order_lines: Sequence[PurchaseOrderLine] | None,
    ) -> tuple[list[LineFigures], list[str]]:
        known_units = self._catalog.validate_units(line.unit_of_measure for line in lines)
        last_units = self._history.last_units_by_item(order_id, editing_request_id)

        figures: list[LineFigures] = []
        units: list[str] = []
        for index, line in enumerate(lines):
            unit = normalize_unit_code(line.unit_of_measure)
            if not unit:
                raise MissingUnitError(line.item_id, index)
            if unit not in known_units:
                raise UnitNotFoundError(line.item_id, unit)
            required = last_units.get(line.item_id)
            if required is not None and required != unit:
                raise UnitMismatchError(line.item_id, unit, required)
            _check_line_numbers(line)

            units.append(unit)
            figures.append(LineFigures(
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_percent=line.tax_percent,
                retention_percent=line.retention_percent,
                tax_retention_percent=line.tax_retention_percent,
            ))

        if order_lines is not None:
            self._check_quantity_ceiling(order_id, lines, editing_request_id, order_lines)
        return figures, units

    def _check_quantity_ceiling(
        self,
        order_id: str,
        lines: Sequence[BoletinLineInput],
        editing_request_id: UUID | None,
        order_lines: Sequence[PurchaseOrderLine],
    ) -> None:
        received = {ol.item_id: ol.received_quantity for ol in order_lines}
        claimed = self._history.requested_quantities_by_item(order_id, editing_request_id)

        requested: dict[str, Decimal] = {}
        for line in lines:
            if line.item_id not in received:
                raise OrderItemNotFoundError(order_id, line.item_id)
            requested[line.item_id] = requested.get(line.item_id, _ZERO) + line.quantity

        for item_id, quantity in requested.items():
            available = received[item_id] - claimed.get(item_id, _ZERO)
            if quantity > available:
                raise QuantityExceededError(item_id, str(quantity), str(available))

    def _resolve_deductions(self, deductions: DeductionPercents | None) -> HeaderDeductions:
        defaults = self._config.deductions
        deductions = deductions or DeductionPercents()
        resolved = HeaderDeductions(
            retention_percent=(
                defaults.retention_percent
                if deductions.retention_percent is None
                else deductions.retention_percent
            ),
            advance_percent=(
                defaults.advance_percent
                if deductions.advance_percent is None
                else deductions.advance_percent
            ),
            isr_percent=(
                defaults.isr_percent
                if deductions.isr_percent is None
                else deductions.isr_percent
            ),
        )
        for name in ("retention_percent", "advance_percent", "isr_percent"):
            value = getattr(resolved, name)
            if value < _ZERO or value > _HUNDRED:
                raise InvalidLineError("header", name, str(value), "must be between 0 and 100")
        return resolved

    def _create_request(self, order_id: str, header: OrderHeader, actor: str) -> PaymentRequestModel:
        numbering = self._config.numbering
        sequence, doc_number = self._sequences.next_document_number(
            SequenceService.PAYMENT_REQUEST,
            numbering.payment_request_prefix,
            numbering.width,
        )
        request = PaymentRequestModel(
            id=uuid4(),
            doc_sequence=sequence,
            doc_number=doc_number,
            external_order_id=order_id,
            vendor_name="",
            request_date=self._clock.today(),
            status=PaymentRequestStatus.PENDING.value,
            created_at=self._clock.now(),
            created_by=actor,
        )
        self._session.add(request)
        self._session.flush()
        return request

    def _apply_header(
        self,
        request: PaymentRequestModel,
        header: OrderHeader,
        deductions: HeaderDeductions,
        totals: BoletinTotals,
    ) -> None:
        request.vendor_name = (header.vendor_name or "").strip().upper()
        request.vendor_fiscal_id = header.vendor_fiscal_id
        request.project_name = header.project_name
        request.measurement_start_date = header.measurement_start_date
        request.measurement_end_date = header.measurement_end_date

        request.retention_percent = deductions.retention_percent
        request.advance_percent = deductions.advance_percent
        request.isr_percent = deductions.isr_percent

        request.sub_total = totals.sub_total
        request.tax_amount = totals.tax_amount
        request.line_retention_amount = totals.line_retention_amount
        request.line_tax_retention_amount = totals.line_tax_retention_amount
        request.retention_amount = totals.retention_amount
        request.advance_amount = totals.advance_amount
        request.isr_amount = totals.isr_amount
        request.net_total = totals.net_total

    def _replace_lines(
        self,
        request: PaymentRequestModel,
        lines: Sequence[BoletinLineInput],
        units: list[str],
        totals: BoletinTotals,
    ) -> None:
        if request.lines:
            request.lines.clear()
            # Old rows must be gone before new ones reuse their line numbers
            self._session.flush()

        for number, (line, unit, amounts) in enumerate(
            zip(lines, units, totals.lines), start=1,
        ):
            request.lines.append(PaymentRequestLineModel(
                line_number=number,
                item_id=line.item_id,
                description=line.description,
                unit_of_measure=unit,
                quantity=line.quantity,
                unit_price=line.unit_price,
                tax_type=line.tax_type,
                tax_percent=line.tax_percent,
                tax_amount=amounts.tax_amount,
                retention_percent=line.retention_percent,
                retention_amount=amounts.retention_amount,
                tax_retention_percent=line.tax_retention_percent,
                tax_retention_amount=amounts.tax_retention_amount,
                line_total=amounts.line_total,
                reception_numbers=list(line.reception_numbers),
            ))

    def _append_audit(
        self,
        request: PaymentRequestModel,
        action: RequestAuditAction,
        actor: str,
        status_before: str | None,
        status_after: str | None,
        detail: dict,
    ) -> None:
        # Callers hold the boletín row lock, so max + 1 cannot race
        last = self._session.execute(
            select(func.max(PaymentRequestAuditModel.sequence))
            .where(PaymentRequestAuditModel.payment_request_id == request.id)
        ).scalar_one()
        self._session.add(PaymentRequestAuditModel(
            payment_request_id=request.id,
            sequence=(last or 0) + 1,
            action=action.value,
            status_before=status_before,
            status_after=status_after,
            detail=detail,
            actor=actor,
            timestamp=self._clock.now(),
        ))

    # =========================================================================
    # Status workflow
    # =========================================================================

    def set_status(
        self,
        request_id: UUID,
        new_status: PaymentRequestStatus | str,
        actor: str,
        rejection_reason: str | None = None,
    ) -> PaymentRequest:
        """
        Approve or reject a boletín.

        Scheduling state does not restrict this transition; exclusivity is
        enforced by the schedule workflow and at edit time.  Moving back to
        ``pending`` requires ``override_status``.

        Raises:
            InvalidStatusError, MissingRejectionReasonError,
            PaymentRequestNotFoundError, InvalidRequestTransitionError.
        """
        with transaction_boundary(self._session):
            target = _coerce_status(new_status)
            reason = (rejection_reason or "").strip()
            if target is PaymentRequestStatus.REJECTED and not reason:
                raise MissingRejectionReasonError(str(request_id))

            request = self._load_for_update(request_id)
            before = request.status

            if before != target.value:
                transition = PAYMENT_REQUEST_WORKFLOW.find_transition(
                    before, ACTION_BY_TARGET[target.value], to_state=target.value,
                )
                if transition is None or transition.privileged:
                    raise InvalidRequestTransitionError(request.doc_number, before, target.value)

            new_reason = reason if target is PaymentRequestStatus.REJECTED else None
            changed = before != target.value or request.rejection_reason != new_reason
            if changed:
                request.status = target.value
                request.rejection_reason = new_reason
                request.updated_by = actor
                self._append_audit(
                    request, RequestAuditAction.STATUS_CHANGED, actor,
                    status_before=before,
                    status_after=target.value,
                    detail={"rejection_reason": new_reason} if new_reason else {},
                )
            self._session.flush()
            dto = request.to_dto()

        if changed:
            logger.info(
                "payment_request_status_changed",
                extra={
                    "payment_request_id": str(dto.id),
                    "doc_number": dto.doc_number,
                    "from_status": before,
                    "to_status": dto.status.value,
                },
            )
        return dto

    def override_status(
        self,
        request_id: UUID,
        new_status: PaymentRequestStatus | str,
        actor: str,
        reason: str,
    ) -> PaymentRequest:
        """
        Privileged status reset outside the normal flow (e.g. back to pending).

        The justification is mandatory and stored in the audit row.  For a
        rejection it also becomes the rejection reason.

        Raises:
            InvalidStatusError, MissingOverrideReasonError,
            PaymentRequestNotFoundError, InvalidRequestTransitionError.
        """
        with transaction_boundary(self._session):
            target = _coerce_status(new_status)
            justification = (reason or "").strip()
            if not justification:
                raise MissingOverrideReasonError(str(request_id))

            request = self._load_for_update(request_id)
            before = request.status
            if before == target.value:
                raise InvalidRequestTransitionError(request.doc_number, before, target.value)

            request.status = target.value
            request.rejection_reason = (
                justification if target is PaymentRequestStatus.REJECTED else None
            )
            request.updated_by = actor
            self._append_audit(
                request, RequestAuditAction.STATUS_OVERRIDDEN, actor,
                status_before=before,
                status_after=target.value,
                detail={"reason": justification},
            )
            self._session.flush()
            dto = request.to_dto()

        logger.warning(
            "payment_request_status_overridden",
            extra={
                "payment_request_id": str(dto.id),
                "doc_number": dto.doc_number,
                "from_status": before,
                "to_status": dto.status.value,
                "actor": actor,
            },
        )
        return dto

    # =========================================================================
    # Reads
    # =========================================================================

    def get_request(self, request_id: UUID) -> PaymentRequest:
        request = self._session.get(PaymentRequestModel, request_id)
        if request is None:
            raise PaymentRequestNotFoundError([str(request_id)])
        return request.to_dto()

    def list_requests(
        self,
        order_id: str | None = None,
        status: PaymentRequestStatus | str | None = None,
    ) -> list[PaymentRequest]:
        """Boletines newest first, optionally filtered by order and status."""
        stmt = select(PaymentRequestModel).order_by(
            PaymentRequestModel.created_at.desc(),
            PaymentRequestModel.doc_sequence.desc(),
        )
        if order_id is not None:
            stmt = stmt.where(PaymentRequestModel.external_order_id == order_id)
        if status is not None:
            stmt = stmt.where(PaymentRequestModel.status == _coerce_status(status).value)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def audit_trail(self, request_id: UUID) -> list[PaymentRequestAuditEntry]:
        rows = self._session.execute(
            select(PaymentRequestAuditModel)
            .where(PaymentRequestAuditModel.payment_request_id == request_id)
            .order_by(PaymentRequestAuditModel.sequence)
        ).scalars()
        return [row.to_dto() for row in rows]
