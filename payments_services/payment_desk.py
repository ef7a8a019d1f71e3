"""
payments_services.payment_desk -- Application-facing facade over the engine.

Responsibility:
    One call per user operation.  For each call the desk

    1. evaluates the actor's capability once (``require_capability``),
    2. opens a session and binds ``LogContext`` (correlation id, actor,
       operation, entity id),
    3. invokes the module service, which owns the transaction,
    4. logs failures with their error code, and
    5. fires the optional ``Notifier`` hooks after a successful commit.

Architecture position:
    Services layer, above ``payments_modules``.  API handlers and scripts
    call the desk; the module services stay authorization-agnostic.

Invariants:
    - No state-machine transition runs before the capability check.
    - Notifications fire only after the owning transaction committed.  A
      failing notifier is logged and does not undo the committed operation.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from typing import Protocol, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from payments_config.schema import PaymentsConfig
from payments_kernel.domain.clock import Clock, SystemClock
from payments_kernel.exceptions import PaymentsEngineError
from payments_kernel.logging_config import LogContext, get_logger
from payments_modules.boletin.models import (
    BoletinLineInput,
    DeductionPercents,
    OrderHeader,
    PaymentRequest,
    PaymentRequestStatus,
    PurchaseOrderLine,
)
from payments_modules.boletin.service import BoletinService
from payments_modules.schedule.models import (
    PaymentSchedule,
    PaymentScheduleStatus,
    ScheduleUpdateResult,
)
from payments_modules.schedule.service import ScheduleService
from payments_services.authority import Capability, can_approve, require_capability

logger = get_logger("services.payment_desk")

T = TypeVar("T")


class Notifier(Protocol):
    """Outbound notification collaborator (e-mail, chat, ...)."""

    def request_approved(self, request: PaymentRequest) -> None:
        ...

    def request_created_unapproved(self, request: PaymentRequest, actor: str) -> None:
        ...


class PaymentDesk:
    """
    Facade that authorizes, runs and observes engine operations.

    Usage:
        desk = PaymentDesk(get_session_factory(), config=get_active_config())
        request = desk.build_boletin(capability, "OC-1001", header, lines)
        desk.set_request_status(approver, request.id, "approved")
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        config: PaymentsConfig | None = None,
        notifier: Notifier | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._config = config or PaymentsConfig()
        self._notifier = notifier

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _run(
        self,
        capability: Capability,
        action: str,
        operation: Callable[[Session], T],
        *,
        request_id: UUID | None = None,
        schedule_id: UUID | None = None,
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=capability.actor,
            operation=action,
            request_id=request_id,
            schedule_id=schedule_id,
        ):
            require_capability(capability, action, self._config.authority)
            session = self._session_factory()
            try:
                return operation(session)
            except PaymentsEngineError as exc:
                logger.warning(
                    "payment_desk_operation_failed",
                    extra={"action": action, "error_code": exc.code, "error": str(exc)},
                )
                raise
            finally:
                session.close()

    def _read(self, operation: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return operation(session)
        finally:
            session.close()

    def _boletines(self, session: Session) -> BoletinService:
        return BoletinService(session, clock=self._clock, config=self._config)

    def _schedules(self, session: Session) -> ScheduleService:
        return ScheduleService(session, clock=self._clock, config=self._config)

    def _notify(self, hook: str, *args) -> None:
        if self._notifier is None:
            return
        try:
            getattr(self._notifier, hook)(*args)
        except Exception:
            logger.exception("notification_failed", extra={"hook": hook})

    # -------------------------------------------------------------------------
    # Boletines
    # -------------------------------------------------------------------------

    def build_boletin(
        self,
        capability: Capability,
        order_id: str,
        header: OrderHeader,
        lines: Sequence[BoletinLineInput],
        deductions: DeductionPercents | None = None,
        editing_request_id: UUID | None = None,
        order_lines: Sequence[PurchaseOrderLine] | None = None,
        external_doc_id: str | None = None,
        reception_numbers: Sequence[str] = (),
    ) -> PaymentRequest:
        request = self._run(
            capability,
            "boletin.build",
            lambda s: self._boletines(s).build_or_update(
                order_id,
                header,
                lines,
                actor=capability.actor,
                deductions=deductions,
                editing_request_id=editing_request_id,
                order_lines=order_lines,
                external_doc_id=external_doc_id,
                reception_numbers=reception_numbers,
            ),
            request_id=editing_request_id,
        )
        if editing_request_id is None and not can_approve(capability, self._config.authority):
            self._notify("request_created_unapproved", request, capability.actor)
        return request

    def set_request_status(
        self,
        capability: Capability,
        request_id: UUID,
        new_status: PaymentRequestStatus | str,
        rejection_reason: str | None = None,
    ) -> PaymentRequest:
        def operation(session: Session) -> tuple[PaymentRequestStatus, PaymentRequest]:
            service = self._boletines(session)
            previous = service.get_request(request_id).status
            return previous, service.set_status(
                request_id, new_status, capability.actor, rejection_reason,
            )

        before, request = self._run(
            capability, "boletin.set_status", operation, request_id=request_id,
        )
        if request.status is PaymentRequestStatus.APPROVED and before is not PaymentRequestStatus.APPROVED:
            self._notify("request_approved", request)
        return request

    def override_request_status(
        self,
        capability: Capability,
        request_id: UUID,
        new_status: PaymentRequestStatus | str,
        reason: str,
    ) -> PaymentRequest:
        return self._run(
            capability,
            "boletin.override_status",
            lambda s: self._boletines(s).override_status(
                request_id, new_status, capability.actor, reason,
            ),
            request_id=request_id,
        )

    def get_request(self, request_id: UUID) -> PaymentRequest:
        return self._read(lambda s: self._boletines(s).get_request(request_id))

    def list_requests(
        self,
        order_id: str | None = None,
        status: PaymentRequestStatus | str | None = None,
    ) -> list[PaymentRequest]:
        return self._read(lambda s: self._boletines(s).list_requests(order_id, status))

    # -------------------------------------------------------------------------
    # Schedules
    # -------------------------------------------------------------------------

    def eligible_requests(self) -> list[PaymentRequest]:
        return self._read(lambda s: self._schedules(s).eligible_requests())

    def create_schedule(
        self,
        capability: Capability,
        request_ids: Sequence[UUID | str],
        commitment_date: date | str,
        payment_date: date | str,
        notes: str | None = None,
    ) -> PaymentSchedule:
        return self._run(
            capability,
            "schedule.create",
            lambda s: self._schedules(s).create(
                request_ids, commitment_date, payment_date, notes, capability.actor,
            ),
        )

    def update_schedule(
        self,
        capability: Capability,
        schedule_id: UUID,
        request_ids: Sequence[UUID | str],
        commitment_date: date | str,
        payment_date: date | str,
        notes: str | None = None,
    ) -> ScheduleUpdateResult:
        return self._run(
            capability,
            "schedule.update",
            lambda s: self._schedules(s).update(
                schedule_id, request_ids, commitment_date, payment_date, notes,
                capability.actor,
            ),
            schedule_id=schedule_id,
        )

    def approve_schedule(self, capability: Capability, schedule_id: UUID) -> PaymentSchedule:
        return self._run(
            capability,
            "schedule.approve",
            lambda s: self._schedules(s).approve(schedule_id, capability.actor),
            schedule_id=schedule_id,
        )

    def send_schedule_to_finance(self, capability: Capability, schedule_id: UUID) -> PaymentSchedule:
        return self._run(
            capability,
            "schedule.send_to_finance",
            lambda s: self._schedules(s).send_to_finance(schedule_id, capability.actor),
            schedule_id=schedule_id,
        )

    def restart_schedule_flow(self, capability: Capability, schedule_id: UUID) -> PaymentSchedule:
        return self._run(
            capability,
            "schedule.restart_flow",
            lambda s: self._schedules(s).restart_flow(schedule_id, capability.actor),
            schedule_id=schedule_id,
        )

    def cancel_schedule(self, capability: Capability, schedule_id: UUID) -> PaymentSchedule:
        return self._run(
            capability,
            "schedule.cancel",
            lambda s: self._schedules(s).cancel(schedule_id, capability.actor),
            schedule_id=schedule_id,
        )

    def get_schedule(self, schedule_id: UUID) -> PaymentSchedule:
        return self._read(lambda s: self._schedules(s).get_schedule(schedule_id))

    def list_schedules(self, status: PaymentScheduleStatus | None = None) -> list[PaymentSchedule]:
        return self._read(lambda s: self._schedules(s).list_schedules(status))
