"""
Tests for BoletinService.build_or_update.

Covers:
- Creation: document numbers, totals, header normalization, audit row
- Line validation order (missing unit, unknown unit, unit continuity,
  numeric ranges) and the received-quantity ceiling
- Configured default deductions
- Edits: full line replacement, order mismatch, status and schedule locks
- Failed builds leave no trace
"""

import inspect
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from payments_kernel.exceptions import (
    EmptyBoletinError,
    InvalidLineError,
    MissingUnitError,
    OrderItemNotFoundError,
    OrderMismatchError,
    PaymentRequestNotFoundError,
    QuantityExceededError,
    RequestLockedError,
    UnitMismatchError,
    UnitNotFoundError,
)
from payments_modules.boletin.models import (
    DeductionPercents,
    OrderHeader,
    PaymentRequestStatus,
    PurchaseOrderLine,
    RequestAuditAction,
)
from payments_modules.boletin.orm import OrderLockModel, PaymentRequestLineModel, PaymentRequestModel
from payments_modules.boletin.service import BoletinService
from tests.conftest import APPROVER, HEADER, NO_DEDUCTIONS, TEST_ACTOR, boletin_line


def _order_lines(**received):
    return [
        PurchaseOrderLine(
            order_id="OC-1001",
            item_id=item_id,
            ordered_quantity=Decimal(quantity),
            received_quantity=Decimal(quantity),
            unit_price=Decimal("100"),
        )
        for item_id, quantity in received.items()
    ]


def _request_count(session) -> int:
    return session.execute(select(func.count()).select_from(PaymentRequestModel)).scalar_one()


class TestCreateBoletin:

    def test_first_boletin_gets_first_document_number(self, make_boletin):
        request = make_boletin()

        assert request.doc_number == "BM-000001"
        assert request.status == PaymentRequestStatus.PENDING
        assert request.rejection_reason is None

    def test_document_numbers_increase(self, make_boletin):
        numbers = [make_boletin().doc_number for _ in range(3)]

        assert numbers == ["BM-000001", "BM-000002", "BM-000003"]

    def test_totals_for_single_taxed_line(self, make_boletin):
        """10 x 100 at 18 % tax, no deductions."""
        request = make_boletin(lines=[boletin_line("ITEM-1", "M2", "10", "100", "18")])

        assert request.sub_total == Decimal("1000")
        assert request.tax_amount == Decimal("180")
        assert request.net_total == Decimal("1180")
        assert len(request.lines) == 1
        assert request.lines[0].line_total == Decimal("1180")

    def test_header_and_dates(self, make_boletin, deterministic_clock):
        header = OrderHeader(
            vendor_name="  constructora norte ",
            vendor_fiscal_id="101-55555-1",
            project_name="Torre A",
            measurement_start_date=date(2024, 2, 1),
            measurement_end_date=date(2024, 2, 29),
        )

        request = make_boletin(header=header, external_doc_id="EXT-9", reception_numbers=["R-1"])

        assert request.vendor_name == "CONSTRUCTORA NORTE"
        assert request.vendor_fiscal_id == "101-55555-1"
        assert request.measurement_end_date == date(2024, 2, 29)
        assert request.request_date == deterministic_clock.today()
        assert request.external_doc_id == "EXT-9"
        assert request.reception_numbers == ("R-1",)
        assert request.created_by == TEST_ACTOR

    def test_units_stored_normalized(self, make_boletin):
        request = make_boletin(lines=[boletin_line("ITEM-1", " m3 ")])

        assert request.lines[0].unit_of_measure == "M3"

    def test_lines_numbered_in_input_order(self, make_boletin):
        request = make_boletin(lines=[
            boletin_line("ITEM-B", "KG"),
            boletin_line("ITEM-A", "M2"),
        ])

        assert [(l.line_number, l.item_id) for l in request.lines] == [
            (1, "ITEM-B"),
            (2, "ITEM-A"),
        ]

    def test_default_deductions_come_from_config(self, boletin_service):
        request = boletin_service.build_or_update(
            "OC-1001", HEADER, [boletin_line()], actor=TEST_ACTOR,
        )

        # defaults.yaml withholds a 5 % fondo de reparo
        assert request.retention_percent == Decimal("5")
        assert request.retention_amount == Decimal("50")
        assert request.net_total == Decimal("1130")

    def test_partial_deductions_fall_back_per_field(self, boletin_service):
        request = boletin_service.build_or_update(
            "OC-1001",
            HEADER,
            [boletin_line()],
            actor=TEST_ACTOR,
            deductions=DeductionPercents(advance_percent=Decimal("10")),
        )

        assert request.retention_percent == Decimal("5")
        assert request.advance_amount == Decimal("100")
        assert request.net_total == Decimal("1030")

    def test_creation_writes_audit_row(self, make_boletin, boletin_service):
        request = make_boletin()

        trail = boletin_service.audit_trail(request.id)

        assert [e.action for e in trail] == [RequestAuditAction.CREATED]
        assert trail[0].status_after == "pending"
        assert trail[0].actor == TEST_ACTOR
        assert trail[0].detail["line_count"] == 1
        assert trail[0].sequence == 1

    def test_creation_is_logged(self, make_boletin, captured_logs):
        request = make_boletin()

        created = [r for r in captured_logs() if r["message"] == "boletin_created"]
        assert len(created) == 1
        assert created[0]["doc_number"] == request.doc_number
        assert created[0]["order_id"] == "OC-1001"


class TestLineValidation:

    def test_empty_lines_rejected(self, make_boletin):
        with pytest.raises(EmptyBoletinError):
            make_boletin(lines=[])

    @pytest.mark.parametrize("unit", [None, "", "   "])
    def test_missing_unit(self, make_boletin, unit):
        with pytest.raises(MissingUnitError) as exc_info:
            make_boletin(lines=[boletin_line("ITEM-1", "M2"), boletin_line("ITEM-2", unit)])

        assert exc_info.value.item_id == "ITEM-2"
        assert exc_info.value.line_index == 1

    def test_unknown_unit(self, make_boletin):
        with pytest.raises(UnitNotFoundError) as exc_info:
            make_boletin(lines=[boletin_line("ITEM-1", "PIE")])

        assert exc_info.value.unit_code == "PIE"

    def test_inactive_unit_is_accepted(self, make_boletin):
        request = make_boletin(lines=[boletin_line("ITEM-1", "GL")])

        assert request.lines[0].unit_of_measure == "GL"

    def test_unit_must_match_previous_boletin(self, make_boletin):
        make_boletin(lines=[boletin_line("ITEM-1", "M2")])

        with pytest.raises(UnitMismatchError) as exc_info:
            make_boletin(lines=[boletin_line("ITEM-1", "KG")])

        assert exc_info.value.required_unit == "M2"
        assert exc_info.value.requested_unit == "KG"

    def test_unit_continuity_ignores_case(self, make_boletin):
        make_boletin(lines=[boletin_line("ITEM-1", "M2")])

        request = make_boletin(lines=[boletin_line("ITEM-1", "m2")])

        assert request.doc_number == "BM-000002"

    def test_new_item_may_use_any_unit(self, make_boletin):
        make_boletin(lines=[boletin_line("ITEM-1", "M2")])

        request = make_boletin(lines=[boletin_line("ITEM-2", "KG")])

        assert request.lines[0].unit_of_measure == "KG"

    def test_unit_continuity_is_per_order(self, make_boletin):
        make_boletin(order_id="OC-A", lines=[boletin_line("ITEM-1", "M2")])

        request = make_boletin(order_id="OC-B", lines=[boletin_line("ITEM-1", "KG")])

        assert request.external_order_id == "OC-B"

    def test_missing_unit_reported_before_unknown_unit(self, make_boletin):
        with pytest.raises(MissingUnitError):
            make_boletin(lines=[boletin_line("ITEM-1", None), boletin_line("ITEM-2", "PIE")])

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"quantity": "0"}, "quantity"),
            ({"quantity": "-1"}, "quantity"),
            ({"unit_price": "-0.01"}, "unit_price"),
            ({"tax_percent": "101"}, "tax_percent"),
        ],
    )
    def test_numeric_ranges(self, make_boletin, overrides, field):
        with pytest.raises(InvalidLineError) as exc_info:
            make_boletin(lines=[boletin_line(**overrides)])

        assert exc_info.value.field == field

    def test_line_retention_out_of_range(self, make_boletin):
        with pytest.raises(InvalidLineError) as exc_info:
            make_boletin(lines=[boletin_line(retention_percent=Decimal("-5"))])

        assert exc_info.value.field == "retention_percent"

    def test_header_deduction_out_of_range(self, make_boletin):
        with pytest.raises(InvalidLineError) as exc_info:
            make_boletin(deductions=DeductionPercents(isr_percent=Decimal("150")))

        assert exc_info.value.item_id == "header"
        assert exc_info.value.field == "isr_percent"

    def test_failed_build_leaves_nothing_behind(self, session, make_boletin):
        make_boletin(lines=[boletin_line("ITEM-1", "M2")])

        with pytest.raises(UnitMismatchError):
            make_boletin(lines=[boletin_line("ITEM-2", "KG"), boletin_line("ITEM-1", "ML")])

        assert _request_count(session) == 1
        assert make_boletin().doc_number == "BM-000002"


class TestOrderLock:

    def test_one_lock_row_per_order(self, session, make_boletin):
        make_boletin(order_id="OC-1")
        make_boletin(order_id="OC-1")
        make_boletin(order_id="OC-2")

        orders = session.execute(select(OrderLockModel.external_order_id)).scalars().all()
        assert sorted(orders) == ["OC-1", "OC-2"]

    def test_failed_first_build_leaves_no_lock_row(self, session, make_boletin):
        with pytest.raises(UnitNotFoundError):
            make_boletin(order_id="OC-9", lines=[boletin_line(unit="XYZ")])

        assert session.execute(select(func.count()).select_from(OrderLockModel)).scalar_one() == 0
        assert make_boletin(order_id="OC-9").doc_number == "BM-000001"

    def test_lock_taken_with_row_lock(self):
        source = inspect.getsource(BoletinService._lock_order)

        assert "with_for_update()" in source


class TestQuantityCeiling:

    def test_within_received_quantity(self, make_boletin):
        request = make_boletin(
            lines=[boletin_line("ITEM-1", quantity="10")],
            order_lines=_order_lines(**{"ITEM-1": "10"}),
        )

        assert request.lines[0].quantity == Decimal("10")

    def test_prior_boletines_consume_received_quantity(self, make_boletin):
        order_lines = _order_lines(**{"ITEM-1": "10"})
        make_boletin(lines=[boletin_line("ITEM-1", quantity="6")], order_lines=order_lines)

        with pytest.raises(QuantityExceededError) as exc_info:
            make_boletin(lines=[boletin_line("ITEM-1", quantity="5")], order_lines=order_lines)

        assert Decimal(exc_info.value.available) == Decimal("4")

    def test_repeated_item_lines_are_summed(self, make_boletin):
        with pytest.raises(QuantityExceededError):
            make_boletin(
                lines=[
                    boletin_line("ITEM-1", quantity="6"),
                    boletin_line("ITEM-1", quantity="6"),
                ],
                order_lines=_order_lines(**{"ITEM-1": "10"}),
            )

    def test_rejected_boletin_releases_quantity(self, make_boletin, boletin_service):
        order_lines = _order_lines(**{"ITEM-1": "10"})
        first = make_boletin(lines=[boletin_line("ITEM-1", quantity="8")], order_lines=order_lines)
        boletin_service.set_status(first.id, "rejected", APPROVER, "measured twice")

        second = make_boletin(lines=[boletin_line("ITEM-1", quantity="8")], order_lines=order_lines)

        assert second.doc_number == "BM-000002"

    def test_item_not_in_order(self, make_boletin):
        with pytest.raises(OrderItemNotFoundError) as exc_info:
            make_boletin(
                lines=[boletin_line("ITEM-9")],
                order_lines=_order_lines(**{"ITEM-1": "10"}),
            )

        assert exc_info.value.item_id == "ITEM-9"

    def test_ceiling_skipped_without_order_lines(self, make_boletin):
        request = make_boletin(lines=[boletin_line("ITEM-1", quantity="100000")])

        assert request.lines[0].quantity == Decimal("100000")


class TestEditBoletin:

    def test_edit_replaces_lines_and_totals(self, make_boletin, boletin_service, session):
        request = make_boletin(lines=[boletin_line("ITEM-1"), boletin_line("ITEM-2", "KG")])

        edited = boletin_service.build_or_update(
            "OC-1001",
            HEADER,
            [boletin_line("ITEM-1", quantity="3", tax_percent="0")],
            actor=TEST_ACTOR,
            deductions=NO_DEDUCTIONS,
            editing_request_id=request.id,
        )

        assert edited.id == request.id
        assert edited.doc_number == request.doc_number
        assert [l.item_id for l in edited.lines] == ["ITEM-1"]
        assert edited.net_total == Decimal("300")
        line_rows = session.execute(
            select(func.count()).select_from(PaymentRequestLineModel)
            .where(PaymentRequestLineModel.payment_request_id == request.id)
        ).scalar_one()
        assert line_rows == 1

    def test_edit_may_change_unit_of_only_boletin(self, make_boletin, boletin_service):
        """The edited boletín does not constrain itself."""
        request = make_boletin(lines=[boletin_line("ITEM-1", "M2")])

        edited = boletin_service.build_or_update(
            "OC-1001", HEADER, [boletin_line("ITEM-1", "ML")], actor=TEST_ACTOR,
            editing_request_id=request.id,
        )

        assert edited.lines[0].unit_of_measure == "ML"

    def test_edit_writes_updated_audit(self, make_boletin, boletin_service, deterministic_clock):
        request = make_boletin()
        deterministic_clock.tick()

        boletin_service.build_or_update(
            "OC-1001", HEADER, [boletin_line(quantity="2")], actor="editor",
            editing_request_id=request.id,
        )

        trail = boletin_service.audit_trail(request.id)
        assert [e.action for e in trail] == [RequestAuditAction.CREATED, RequestAuditAction.UPDATED]
        assert trail[1].actor == "editor"

    def test_edit_from_another_order_rejected(self, make_boletin, boletin_service):
        request = make_boletin(order_id="OC-A")

        with pytest.raises(OrderMismatchError):
            boletin_service.build_or_update(
                "OC-B", HEADER, [boletin_line()], actor=TEST_ACTOR,
                editing_request_id=request.id,
            )

    @pytest.mark.parametrize("status, reason", [("approved", None), ("rejected", "bad")])
    def test_decided_boletin_is_locked(self, make_boletin, boletin_service, status, reason):
        request = make_boletin()
        boletin_service.set_status(request.id, status, APPROVER, reason)

        with pytest.raises(RequestLockedError) as exc_info:
            boletin_service.build_or_update(
                "OC-1001", HEADER, [boletin_line()], actor=TEST_ACTOR,
                editing_request_id=request.id,
            )

        assert exc_info.value.status == status

    def test_scheduled_boletin_is_locked(self, make_boletin, boletin_service, schedule_service):
        request = make_boletin()
        schedule = schedule_service.create(
            [request.id], "2024-03-05", "2024-03-10", None, APPROVER,
        )

        with pytest.raises(RequestLockedError) as exc_info:
            boletin_service.build_or_update(
                "OC-1001", HEADER, [boletin_line()], actor=TEST_ACTOR,
                editing_request_id=request.id,
            )

        assert exc_info.value.schedule_numbers == [schedule.schedule_number]

    def test_cancelled_schedule_releases_edit_lock(
        self, make_boletin, boletin_service, schedule_service,
    ):
        request = make_boletin()
        schedule = schedule_service.create(
            [request.id], "2024-03-05", "2024-03-10", None, APPROVER,
        )
        schedule_service.cancel(schedule.id, APPROVER)

        edited = boletin_service.build_or_update(
            "OC-1001", HEADER, [boletin_line(quantity="1")], actor=TEST_ACTOR,
            editing_request_id=request.id,
        )

        assert edited.lines[0].quantity == Decimal("1")

    def test_unknown_request(self, boletin_service):
        with pytest.raises(PaymentRequestNotFoundError):
            boletin_service.build_or_update(
                "OC-1001", HEADER, [boletin_line()], actor=TEST_ACTOR,
                editing_request_id=uuid4(),
            )


class TestBoletinReads:

    def test_list_requests_newest_first(self, make_boletin, boletin_service):
        first = make_boletin()
        second = make_boletin(order_id="OC-2")

        assert [r.id for r in boletin_service.list_requests()] == [second.id, first.id]
        assert [r.id for r in boletin_service.list_requests(order_id="OC-2")] == [second.id]

    def test_list_requests_by_status(self, make_boletin, boletin_service):
        first = make_boletin()
        make_boletin()
        boletin_service.set_status(first.id, "approved", APPROVER)

        approved = boletin_service.list_requests(status="APPROVED")

        assert [r.id for r in approved] == [first.id]

    def test_get_unknown_request(self, boletin_service):
        with pytest.raises(PaymentRequestNotFoundError):
            boletin_service.get_request(uuid4())
