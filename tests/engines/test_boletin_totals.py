"""
Tests for the Boletín Totals engine.

Covers:
- Line amounts (base, tax, line retentions)
- Header deductions over the sub-total
- Net total identity (property-based)
- Engine trace logging and input fingerprint determinism
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from payments_engines.boletin_totals import (
    BoletinTotalsCalculator,
    HeaderDeductions,
    LineFigures,
    percent_of,
)
from payments_engines.tracer import compute_input_fingerprint


class TestLineAmounts:
    """Per-line arithmetic."""

    def setup_method(self):
        self.calculator = BoletinTotalsCalculator()

    def test_base_and_tax(self):
        """10 x 100 at 18 % tax is 1000 + 180."""
        amounts = self.calculator.compute_line(
            LineFigures("ITEM-1", Decimal("10"), Decimal("100"), tax_percent=Decimal("18"))
        )

        assert amounts.base_amount == Decimal("1000")
        assert amounts.tax_amount == Decimal("180")
        assert amounts.retention_amount == Decimal("0")
        assert amounts.line_total == Decimal("1180")

    def test_line_retentions_reduce_total(self):
        amounts = self.calculator.compute_line(
            LineFigures(
                "ITEM-1",
                Decimal("4"),
                Decimal("250"),
                tax_percent=Decimal("18"),
                retention_percent=Decimal("10"),
                tax_retention_percent=Decimal("30"),
            )
        )

        assert amounts.base_amount == Decimal("1000")
        assert amounts.retention_amount == Decimal("100")
        # Tax retention is a share of the tax, not of the base
        assert amounts.tax_retention_amount == Decimal("54")
        assert amounts.line_total == Decimal("1026")

    def test_fractional_quantities_are_not_rounded(self):
        amounts = self.calculator.compute_line(
            LineFigures("ITEM-1", Decimal("2.5"), Decimal("33.333"))
        )

        assert amounts.base_amount == Decimal("83.3325")


class TestBoletinTotals:
    """Header aggregation and deductions."""

    def setup_method(self):
        self.calculator = BoletinTotalsCalculator()

    def test_single_line_without_deductions(self):
        totals = self.calculator.calculate(
            lines=[LineFigures("ITEM-1", Decimal("10"), Decimal("100"), Decimal("18"))],
            deductions=HeaderDeductions.none(),
        )

        assert totals.sub_total == Decimal("1000")
        assert totals.tax_amount == Decimal("180")
        assert totals.net_total == Decimal("1180")
        assert totals.total_deductions == Decimal("0")

    def test_header_deductions_apply_to_sub_total(self):
        totals = self.calculator.calculate(
            lines=[
                LineFigures("ITEM-1", Decimal("10"), Decimal("100"), Decimal("18")),
                LineFigures("ITEM-2", Decimal("5"), Decimal("200"), Decimal("0")),
            ],
            deductions=HeaderDeductions(
                retention_percent=Decimal("5"),
                advance_percent=Decimal("20"),
                isr_percent=Decimal("1"),
            ),
        )

        assert totals.sub_total == Decimal("2000")
        assert totals.tax_amount == Decimal("180")
        assert totals.retention_amount == Decimal("100")
        assert totals.advance_amount == Decimal("400")
        assert totals.isr_amount == Decimal("20")
        assert totals.net_total == Decimal("1660")

    def test_lines_keep_input_order(self):
        totals = self.calculator.calculate(
            lines=[
                LineFigures("B", Decimal("1"), Decimal("1")),
                LineFigures("A", Decimal("1"), Decimal("1")),
            ],
            deductions=HeaderDeductions.none(),
        )

        assert [a.item_id for a in totals.lines] == ["B", "A"]

    def test_empty_lines_total_zero(self):
        totals = self.calculator.calculate(lines=[], deductions=HeaderDeductions.none())

        assert totals.lines == ()
        assert totals.net_total == Decimal("0")

    def test_percent_of(self):
        assert percent_of(Decimal("200"), Decimal("12.5")) == Decimal("25")


_amounts = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=3)
_percents = st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2)


@st.composite
def _line_figures(draw):
    return LineFigures(
        item_id=draw(st.sampled_from(["ITEM-1", "ITEM-2", "ITEM-3"])),
        quantity=draw(st.decimals(min_value=Decimal("0.001"), max_value=Decimal("10000"), places=3)),
        unit_price=draw(_amounts),
        tax_percent=draw(_percents),
        retention_percent=draw(_percents),
        tax_retention_percent=draw(_percents),
    )


class TestNetTotalProperty:
    """net = sub_total + tax - every deduction, for any valid input."""

    @given(
        lines=st.lists(_line_figures(), min_size=1, max_size=8),
        retention=_percents,
        advance=_percents,
        isr=_percents,
    )
    @settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_net_total_identity(self, lines, retention, advance, isr):
        totals = BoletinTotalsCalculator().calculate(
            lines=lines,
            deductions=HeaderDeductions(retention, advance, isr),
        )

        assert totals.sub_total == sum((a.base_amount for a in totals.lines), Decimal("0"))
        assert totals.net_total == (
            totals.sub_total + totals.tax_amount - totals.total_deductions
        )
        assert totals.net_total == (
            sum((a.line_total for a in totals.lines), Decimal("0"))
            - totals.retention_amount
            - totals.advance_amount
            - totals.isr_amount
        )

    @given(lines=st.lists(_line_figures(), min_size=1, max_size=5))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_calculation_is_deterministic(self, lines):
        calculator = BoletinTotalsCalculator()
        first = calculator.calculate(lines=lines, deductions=HeaderDeductions.none())
        second = calculator.calculate(lines=lines, deductions=HeaderDeductions.none())

        assert first == second


class TestEngineTrace:

    def test_calculate_emits_engine_trace(self, captured_logs):
        BoletinTotalsCalculator().calculate(
            lines=[LineFigures("ITEM-1", Decimal("1"), Decimal("1"))],
            deductions=HeaderDeductions.none(),
        )

        traces = [r for r in captured_logs() if r["message"] == "PAYMENTS_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "boletin_totals"
        assert traces[0]["engine_version"] == "1.0"
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_is_stable_and_input_sensitive(self):
        lines = [LineFigures("ITEM-1", Decimal("1"), Decimal("1"))]
        fields = ("lines", "deductions")

        a = compute_input_fingerprint(fields, {"lines": lines, "deductions": HeaderDeductions()})
        b = compute_input_fingerprint(fields, {"lines": list(lines), "deductions": HeaderDeductions()})
        c = compute_input_fingerprint(
            fields,
            {"lines": lines, "deductions": HeaderDeductions(retention_percent=Decimal("5"))},
        )

        assert a == b
        assert a != c

    @pytest.mark.parametrize("missing", ["lines", "deductions"])
    def test_missing_fields_are_fingerprinted_as_null(self, missing):
        kwargs = {"lines": [], "deductions": HeaderDeductions()}
        del kwargs[missing]

        assert compute_input_fingerprint(("lines", "deductions"), kwargs) == (
            compute_input_fingerprint(("lines", "deductions"), {**kwargs, missing: None})
        )
