"""
Schedule selectors (``payments_modules.schedule.selectors``).

Read-only queries over schedule membership.  Eligibility is computed fresh
on every call, never cached:

    eligible = all boletines - rejected - linked to an active schedule line
"""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payments_modules.boletin.models import PaymentRequest, PaymentRequestStatus
from payments_modules.boletin.orm import PaymentRequestModel
from payments_modules.schedule.orm import PaymentScheduleLineModel, PaymentScheduleModel


class ScheduleSelector:
    """Queries about which boletines sit in which active schedule."""

    def __init__(self, session: Session):
        self._session = session

    def active_schedule_numbers(
        self,
        request_ids: Iterable[UUID],
        exclude_schedule_id: UUID | None = None,
    ) -> dict[UUID, list[str]]:
        """Map each actively scheduled request id to its schedule numbers."""
        ids = list(request_ids)
        if not ids:
            return {}

        stmt = (
            select(
                PaymentScheduleLineModel.payment_request_id,
                PaymentScheduleModel.schedule_number,
            )
            .join(
                PaymentScheduleModel,
                PaymentScheduleLineModel.schedule_id == PaymentScheduleModel.id,
            )
            .where(
                PaymentScheduleLineModel.payment_request_id.in_(ids),
                PaymentScheduleLineModel.is_active.is_(True),
            )
            .order_by(PaymentScheduleModel.schedule_number)
        )
        if exclude_schedule_id is not None:
            stmt = stmt.where(PaymentScheduleLineModel.schedule_id != exclude_schedule_id)

        links: dict[UUID, list[str]] = {}
        for request_id, schedule_number in self._session.execute(stmt):
            links.setdefault(request_id, []).append(schedule_number)
        return links

    def eligible_requests(self) -> list[PaymentRequest]:
        """Boletines that may be added to a new schedule, oldest first."""
        scheduled = (
            select(PaymentScheduleLineModel.payment_request_id)
            .where(PaymentScheduleLineModel.is_active.is_(True))
        )
        rows = self._session.execute(
            select(PaymentRequestModel)
            .where(
                PaymentRequestModel.status != PaymentRequestStatus.REJECTED.value,
                PaymentRequestModel.id.not_in(scheduled),
            )
            .order_by(PaymentRequestModel.created_at, PaymentRequestModel.doc_sequence)
        ).scalars()
        return [row.to_dto() for row in rows]
