"""
Payment Schedule Module Service (``payments_modules.schedule.service``).

Responsibility
--------------
Groups eligible boletines into payment schedules and drives the schedule
state machine: create, update, approve, send to finance, restart flow and
cancel.  Reads return frozen DTOs with lines and audit trail.

Architecture position
---------------------
**Modules layer** -- ``ScheduleService`` is the sole public entry point for
schedule operations.  It composes ``ScheduleSelector`` (membership
queries), the kernel ``SequenceService`` (``PP-NNNNNN`` numbers) and the
declarative ``PAYMENT_SCHEDULE_WORKFLOW``.  Authorization is the caller's
job (``payments_services.authority``).

Invariants enforced
-------------------
* Each public method owns the transaction boundary; status, lines and the
  audit row commit together or not at all.
* Exclusivity: a boletín has at most one active schedule line.  Member
  rows are locked ``FOR UPDATE`` (ordered by id, so concurrent creators
  queue instead of deadlocking) before the check, and the partial unique
  index turns any remaining race into ``ScheduleConflictError``.
* Boletines dated after the commitment date are refused.
* Editing an approved schedule returns it to pending approval and clears
  the approval stamps; the caller sees ``approval_reset=True``.
* Completeness: approve and send to finance require every non-rejected
  member to be approved.  Rejected members are ignored.

Failure modes
-------------
* ``ValidationError`` -- empty selection, unparsable dates, payment date
  in the past or before the schedule's creation.
* ``ConflictError`` -- exclusivity, commitment date, already sent or
  cancelled, unapproved members.
* ``StateError`` -- not approved, already at first level.
* ``NotFoundError`` -- unknown schedule or boletín ids.

Audit relevance
---------------
One ``PaymentScheduleAuditModel`` row per transition or edit
(``CREATED``, ``UPDATED``, ``APPROVED``, ``SENT_TO_FINANCE``,
``FLOW_RESTARTED``, ``CANCELED``) and one structured log event per success.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payments_config.schema import PaymentsConfig
from payments_kernel.domain.clock import Clock, SystemClock
from payments_kernel.exceptions import (
    AlreadyAtFirstLevelError,
    AlreadyCancelledError,
    AlreadySentError,
    EmptySelectionError,
    InvalidScheduleTransitionError,
    NotAllApprovedError,
    NotApprovedError,
    PaymentDateBeforeCreationError,
    PaymentDateInPastError,
    PaymentRequestNotFoundError,
    PaymentScheduleNotFoundError,
    RequestAfterCommitmentError,
    RequestNotEligibleError,
    ScheduleConflictError,
)
from payments_kernel.logging_config import get_logger
from payments_kernel.services.sequence_service import SequenceService
from payments_modules._service_helpers import parse_calendar_date, transaction_boundary
from payments_modules.boletin.models import PaymentRequest, PaymentRequestStatus
from payments_modules.boletin.orm import PaymentRequestModel
from payments_modules.schedule.models import (
    PaymentSchedule,
    PaymentScheduleStatus,
    ScheduleAuditAction,
    ScheduleUpdateResult,
)
from payments_modules.schedule.orm import (
    PaymentScheduleAuditModel,
    PaymentScheduleLineModel,
    PaymentScheduleModel,
)
from payments_modules.schedule.selectors import ScheduleSelector
from payments_modules.schedule.workflows import PAYMENT_SCHEDULE_WORKFLOW

logger = get_logger("modules.schedule.service")

_PENDING = PaymentScheduleStatus.PENDING_APPROVAL.value
_APPROVED = PaymentScheduleStatus.APPROVED.value
_SENT = PaymentScheduleStatus.SENT_TO_FINANCE.value
_CANCELLED = PaymentScheduleStatus.CANCELLED.value


def _unique_ids(request_ids: Sequence[UUID | str]) -> list[UUID]:
    """Normalize ids to UUID, dropping repeats but keeping selection order."""
    seen: dict[UUID, None] = {}
    for raw in request_ids:
        seen.setdefault(raw if isinstance(raw, UUID) else UUID(str(raw)), None)
    return list(seen)


class ScheduleService:
    """
    Builds payment schedules and moves them through their workflow.

    Contract
    --------
    * Mutating methods take the acting user as ``actor`` and stamp it on
      the audit row (and on approval / send stamps).
    * Every method returns frozen DTOs from ``models.py``.

    Non-goals
    ---------
    * Does not check roles or capabilities.
    * Does not notify anyone.
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
        self._selector = ScheduleSelector(session)
        self._sequences = SequenceService(session)

    # =========================================================================
    # Schedule Builder
    # =========================================================================

    def create(
        self,
        request_ids: Sequence[UUID | str],
        commitment_date: date | str,
        payment_date: date | str,
        notes: str | None,
        actor: str,
    ) -> PaymentSchedule:
        """
        Create a schedule in ``pending_approval`` from selected boletines.

        Checks run in order: empty selection and date parsing, payment date
        not in the past, exclusivity, existence, eligibility, commitment
        date.

        Raises:
            EmptySelectionError, InvalidDateError, PaymentDateInPastError,
            ScheduleConflictError, PaymentRequestNotFoundError,
            RequestNotEligibleError, RequestAfterCommitmentError.
        """
        with transaction_boundary(self._session):
            if not request_ids:
                raise EmptySelectionError()
            commitment = parse_calendar_date("commitment_date", commitment_date)
            payment = parse_calendar_date("payment_date", payment_date)

            today = self._clock.today()
            if payment < today:
                raise PaymentDateInPastError(payment.isoformat(), today.isoformat())

            ids = _unique_ids(request_ids)
            requests = self._lock_requests(ids)
            self._check_exclusivity(ids)
            ordered = self._in_selection_order(ids, requests)

            rejected = [
                r.doc_number for r in ordered
                if r.status == PaymentRequestStatus.REJECTED.value
            ]
            if rejected:
                raise RequestNotEligibleError(rejected)
            self._check_commitment(ordered, commitment)

            numbering = self._config.numbering
            sequence, schedule_number = self._sequences.next_document_number(
                SequenceService.PAYMENT_SCHEDULE,
                numbering.payment_schedule_prefix,
                numbering.width,
            )
            schedule = PaymentScheduleModel(
                id=uuid4(),
                schedule_sequence=sequence,
                schedule_number=schedule_number,
                commitment_date=commitment,
                payment_date=payment,
                notes=notes,
                status=PAYMENT_SCHEDULE_WORKFLOW.initial_state,
                created_at=self._clock.now(),
                created_by=actor,
            )
            self._session.add(schedule)
            self._session.flush()

            self._write_lines(schedule, ids)
            self._append_audit(
                schedule, ScheduleAuditAction.CREATED, actor,
                status_before=None,
                detail={"doc_numbers": [r.doc_number for r in ordered]},
            )
            self._session.flush()
            dto = schedule.to_dto()

        logger.info(
            "schedule_created",
            extra={
                "schedule_id": str(dto.id),
                "schedule_number": dto.schedule_number,
                "request_count": len(dto.lines),
                "commitment_date": dto.commitment_date.isoformat(),
                "payment_date": dto.payment_date.isoformat(),
            },
        )
        return dto

    def update(
        self,
        schedule_id: UUID,
        request_ids: Sequence[UUID | str],
        commitment_date: date | str,
        payment_date: date | str,
        notes: str | None,
        actor: str,
    ) -> ScheduleUpdateResult:
        """
        Edit a schedule's dates, notes and membership in one transaction.

        An empty ``request_ids`` keeps the current membership.  When the
        edit changes nothing, no row is written and ``changed`` is False.

        Raises:
            PaymentScheduleNotFoundError, AlreadySentError,
            AlreadyCancelledError, InvalidDateError,
            PaymentDateBeforeCreationError, ScheduleConflictError,
            PaymentRequestNotFoundError, RequestAfterCommitmentError.
        """
        with transaction_boundary(self._session):
            schedule = self._load_for_update(schedule_id)
            if schedule.status == _SENT:
                raise AlreadySentError(schedule.schedule_number)
            if schedule.status == _CANCELLED:
                raise AlreadyCancelledError(schedule.schedule_number)

            commitment = parse_calendar_date("commitment_date", commitment_date)
            payment = parse_calendar_date("payment_date", payment_date)
            created_on = schedule.created_at.date()
            if payment < created_on:
                raise PaymentDateBeforeCreationError(
                    schedule.schedule_number, payment.isoformat(), created_on.isoformat(),
                )

            current_ids = [line.payment_request_id for line in schedule.lines]
            ids = current_ids
            if request_ids:
                ids = _unique_ids(request_ids)
                requests = self._lock_requests(ids)
                self._check_exclusivity(ids, exclude_schedule_id=schedule.id)
            else:
                requests = self._lock_requests(ids)
            ordered = self._in_selection_order(ids, requests)
            # Kept members are checked too: the commitment date may have moved
            self._check_commitment(
                [r for r in ordered if r.status != PaymentRequestStatus.REJECTED.value],
                commitment,
            )

            notes = notes or None
            membership_changed = ids != current_ids
            changed = (
                membership_changed
                or schedule.commitment_date != commitment
                or schedule.payment_date != payment
                or (schedule.notes or None) != notes
            )
            if not changed:
                dto = schedule.to_dto()
                approval_reset = False
            else:
                before = schedule.status
                transition = self._require_transition(schedule, "edit")
                approval_reset = before == _APPROVED

                schedule.commitment_date = commitment
                schedule.payment_date = payment
                schedule.notes = notes
                schedule.status = transition.to_state
                schedule.updated_by = actor
                if approval_reset:
                    schedule.approved_at = None
                    schedule.approved_by = None

                if membership_changed:
                    schedule.lines.clear()
                    # Old rows must be gone before the same requests are re-linked
                    self._session.flush()
                    self._write_lines(schedule, ids)

                self._append_audit(
                    schedule, ScheduleAuditAction.UPDATED, actor,
                    status_before=before,
                    detail={
                        "approval_reset": approval_reset,
                        "membership_changed": membership_changed,
                        "request_count": len(ids),
                    },
                )
                self._session.flush()
                dto = schedule.to_dto()

        if changed:
            logger.info(
                "schedule_updated",
                extra={
                    "schedule_id": str(dto.id),
                    "schedule_number": dto.schedule_number,
                    "approval_reset": approval_reset,
                    "request_count": len(dto.lines),
                },
            )
        return ScheduleUpdateResult(schedule=dto, approval_reset=approval_reset, changed=changed)

    # =========================================================================
    # Schedule State Machine
    # =========================================================================

    def approve(self, schedule_id: UUID, actor: str) -> PaymentSchedule:
        """
        Approve a schedule whose non-rejected members are all approved.

        Re-approving an approved schedule refreshes the approval stamp.

        Raises:
            PaymentScheduleNotFoundError, AlreadySentError,
            AlreadyCancelledError, NotAllApprovedError.
        """
        with transaction_boundary(self._session):
            schedule = self._load_for_update(schedule_id)
            if schedule.status == _SENT:
                raise AlreadySentError(schedule.schedule_number)
            if schedule.status == _CANCELLED:
                raise AlreadyCancelledError(schedule.schedule_number)
            transition = self._require_transition(schedule, "approve")
            self._check_members_approved(schedule)

            before = schedule.status
            schedule.status = transition.to_state
            schedule.approved_at = self._clock.now()
            schedule.approved_by = actor
            schedule.updated_by = actor
            self._append_audit(schedule, ScheduleAuditAction.APPROVED, actor, status_before=before)
            self._session.flush()
            dto = schedule.to_dto()

        logger.info(
            "schedule_approved",
            extra={"schedule_id": str(dto.id), "schedule_number": dto.schedule_number},
        )
        return dto

    def send_to_finance(self, schedule_id: UUID, actor: str) -> PaymentSchedule:
        """
        Hand an approved schedule to finance.  Membership is re-checked
        since edits may have changed it after approval.

        Raises:
            PaymentScheduleNotFoundError, AlreadySentError,
            NotApprovedError, NotAllApprovedError.
        """
        with transaction_boundary(self._session):
            schedule = self._load_for_update(schedule_id)
            if schedule.status == _SENT:
                raise AlreadySentError(schedule.schedule_number)
            if schedule.status != _APPROVED:
                raise NotApprovedError(schedule.schedule_number, schedule.status)
            transition = self._require_transition(schedule, "send_to_finance")
            self._check_members_approved(schedule)

            before = schedule.status
            schedule.status = transition.to_state
            schedule.sent_to_finance_at = self._clock.now()
            schedule.sent_to_finance_by = actor
            schedule.updated_by = actor
            self._append_audit(
                schedule, ScheduleAuditAction.SENT_TO_FINANCE, actor, status_before=before,
            )
            self._session.flush()
            dto = schedule.to_dto()

        logger.info(
            "schedule_sent_to_finance",
            extra={"schedule_id": str(dto.id), "schedule_number": dto.schedule_number},
        )
        return dto

    def restart_flow(self, schedule_id: UUID, actor: str) -> PaymentSchedule:
        """
        Return a schedule to ``pending_approval`` and clear every stamp.

        Restarting a cancelled schedule re-links its boletines, so it fails
        with ``ScheduleConflictError`` if any of them has since joined
        another active schedule.

        Raises:
            PaymentScheduleNotFoundError, AlreadyAtFirstLevelError,
            ScheduleConflictError.
        """
        with transaction_boundary(self._session):
            schedule = self._load_for_update(schedule_id)
            if schedule.status == _PENDING:
                raise AlreadyAtFirstLevelError(schedule.schedule_number)
            transition = self._require_transition(schedule, "restart_flow")

            before = schedule.status
            if before == _CANCELLED:
                ids = [line.payment_request_id for line in schedule.lines]
                self._lock_requests(ids)
                self._check_exclusivity(ids, exclude_schedule_id=schedule.id)
                lines = list(schedule.lines)

                def reactivate() -> None:
                    for line in lines:
                        line.is_active = True

                self._flush_membership(ids, schedule.id, reactivate)

            schedule.status = transition.to_state
            schedule.approved_at = None
            schedule.approved_by = None
            schedule.sent_to_finance_at = None
            schedule.sent_to_finance_by = None
            schedule.updated_by = actor
            self._append_audit(
                schedule, ScheduleAuditAction.FLOW_RESTARTED, actor, status_before=before,
            )
            self._session.flush()
            dto = schedule.to_dto()

        logger.info(
            "schedule_flow_restarted",
            extra={
                "schedule_id": str(dto.id),
                "schedule_number": dto.schedule_number,
                "from_status": before,
            },
        )
        return dto

    def cancel(self, schedule_id: UUID, actor: str) -> PaymentSchedule:
        """
        Cancel a schedule and release its boletines for other schedules.

        Raises:
            PaymentScheduleNotFoundError, AlreadySentError,
            AlreadyCancelledError.
        """
        with transaction_boundary(self._session):
            schedule = self._load_for_update(schedule_id)
            if schedule.status == _SENT:
                raise AlreadySentError(schedule.schedule_number)
            if schedule.status == _CANCELLED:
                raise AlreadyCancelledError(schedule.schedule_number)
            transition = self._require_transition(schedule, "cancel")

            before = schedule.status
            for line in schedule.lines:
                line.is_active = False
            schedule.status = transition.to_state
            schedule.updated_by = actor
            self._append_audit(
                schedule, ScheduleAuditAction.CANCELED, actor,
                status_before=before,
                detail={"released_requests": len(schedule.lines)},
            )
            self._session.flush()
            dto = schedule.to_dto()

        logger.info(
            "schedule_cancelled",
            extra={
                "schedule_id": str(dto.id),
                "schedule_number": dto.schedule_number,
                "released_requests": len(dto.lines),
            },
        )
        return dto

    # =========================================================================
    # Reads
    # =========================================================================

    def get_schedule(self, schedule_id: UUID) -> PaymentSchedule:
        schedule = self._session.get(PaymentScheduleModel, schedule_id)
        if schedule is None:
            raise PaymentScheduleNotFoundError(str(schedule_id))
        return schedule.to_dto()

    def list_schedules(
        self,
        status: PaymentScheduleStatus | None = None,
    ) -> list[PaymentSchedule]:
        """Schedules newest first; audit trails are omitted from the listing."""
        stmt = select(PaymentScheduleModel).order_by(
            PaymentScheduleModel.schedule_sequence.desc(),
        )
        if status is not None:
            stmt = stmt.where(PaymentScheduleModel.status == PaymentScheduleStatus(status).value)
        rows = self._session.execute(stmt).scalars()
        return [row.to_dto(include_audit=False) for row in rows]

    def eligible_requests(self) -> list[PaymentRequest]:
        """Boletines that may join a new schedule (see ``ScheduleSelector``)."""
        return self._selector.eligible_requests()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load_for_update(self, schedule_id: UUID) -> PaymentScheduleModel:
        schedule = self._session.execute(
            select(PaymentScheduleModel)
            .where(PaymentScheduleModel.id == schedule_id)
            .with_for_update()
        ).scalar_one_or_none()
        if schedule is None:
            raise PaymentScheduleNotFoundError(str(schedule_id))
        return schedule

    def _require_transition(self, schedule: PaymentScheduleModel, action: str):
        transition = PAYMENT_SCHEDULE_WORKFLOW.find_transition(schedule.status, action)
        if transition is None:
            raise InvalidScheduleTransitionError(
                schedule.schedule_number, schedule.status, action,
            )
        return transition

    def _lock_requests(self, ids: list[UUID]) -> dict[UUID, PaymentRequestModel]:
        if not ids:
            return {}
        rows = self._session.execute(
            select(PaymentRequestModel)
            .where(PaymentRequestModel.id.in_(ids))
            .order_by(PaymentRequestModel.id)
            .with_for_update()
        ).scalars()
        return {row.id: row for row in rows}

    def _check_exclusivity(
        self,
        ids: list[UUID],
        exclude_schedule_id: UUID | None = None,
    ) -> None:
        links = self._selector.active_schedule_numbers(ids, exclude_schedule_id)
        if links:
            self._raise_conflict(links)

    @staticmethod
    def _raise_conflict(links: dict[UUID, list[str]]) -> None:
        numbers = sorted({n for numbers in links.values() for n in numbers})
        raise ScheduleConflictError(sorted(str(i) for i in links), numbers)

    @staticmethod
    def _in_selection_order(
        ids: list[UUID],
        requests: dict[UUID, PaymentRequestModel],
    ) -> list[PaymentRequestModel]:
        missing = [str(i) for i in ids if i not in requests]
        if missing:
            raise PaymentRequestNotFoundError(missing)
        return [requests[i] for i in ids]

    @staticmethod
    def _check_commitment(
        requests: list[PaymentRequestModel],
        commitment: date,
    ) -> None:
        for request in requests:
            if request.request_date > commitment:
                raise RequestAfterCommitmentError(
                    request.doc_number,
                    request.request_date.isoformat(),
                    commitment.isoformat(),
                )

    def _check_members_approved(self, schedule: PaymentScheduleModel) -> None:
        ids = [line.payment_request_id for line in schedule.lines]
        statuses = {
            request_id: (doc_number, status)
            for request_id, doc_number, status in self._session.execute(
                select(
                    PaymentRequestModel.id,
                    PaymentRequestModel.doc_number,
                    PaymentRequestModel.status,
                ).where(PaymentRequestModel.id.in_(ids))
            )
        }
        pending = [
            statuses[request_id][0]
            for request_id in ids
            if statuses[request_id][1] not in (
                PaymentRequestStatus.APPROVED.value,
                PaymentRequestStatus.REJECTED.value,
            )
        ]
        if pending:
            raise NotAllApprovedError(schedule.schedule_number, pending)

    def _write_lines(self, schedule: PaymentScheduleModel, ids: list[UUID]) -> None:
        def link() -> None:
            schedule.lines.extend(
                PaymentScheduleLineModel(
                    payment_request_id=request_id,
                    position=position,
                    is_active=True,
                )
                for position, request_id in enumerate(ids, start=1)
            )

        self._flush_membership(ids, schedule.id, link)

    def _flush_membership(
        self,
        ids: list[UUID],
        schedule_id: UUID,
        apply: Callable[[], None],
    ) -> None:
        """Run ``apply`` and flush inside a savepoint.  An active-line index
        violation means a concurrent schedule claimed a boletín first."""
        try:
            with self._session.begin_nested():
                apply()
                self._session.flush()
        except IntegrityError:
            links = self._selector.active_schedule_numbers(ids, schedule_id)
            if not links:
                raise
            self._raise_conflict(links)

    def _append_audit(
        self,
        schedule: PaymentScheduleModel,
        action: ScheduleAuditAction,
        actor: str,
        status_before: str | None,
        detail: dict | None = None,
    ) -> None:
        schedule.audit_entries.append(PaymentScheduleAuditModel(
            sequence=len(schedule.audit_entries) + 1,
            action=action.value,
            status_before=status_before,
            status_after=schedule.status,
            detail=detail or {},
            actor=actor,
            timestamp=self._clock.now(),
        ))
