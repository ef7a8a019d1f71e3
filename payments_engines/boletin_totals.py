"""
Boletín Totals Engine - line and header amounts for a measurement boletín.

Pure functions with no I/O.  Percentages are expressed as percent values
(18 means 18 %), amounts are ``Decimal`` and never rounded here; the
persisted columns carry nine decimal places.

Per line:
    base           = quantity * unit_price
    tax            = base * tax_percent / 100
    retention      = base * retention_percent / 100
    tax_retention  = tax * tax_retention_percent / 100
    line_total     = base + tax - retention - tax_retention

Per boletín (header deductions apply to the sum of line bases):
    retention  = sub_total * retention_percent / 100     (fondo de reparo)
    advance    = sub_total * advance_percent / 100       (amortización de anticipo)
    isr        = sub_total * isr_percent / 100
    net_total  = sub_total + tax - Σline retention - Σline tax retention
                 - retention - advance - isr

Usage:
    from decimal import Decimal
    from payments_engines.boletin_totals import (
        BoletinTotalsCalculator, HeaderDeductions, LineFigures,
    )

    totals = BoletinTotalsCalculator().calculate(
        lines=[LineFigures("ITEM-1", Decimal("10"), Decimal("100"), Decimal("18"))],
        deductions=HeaderDeductions.none(),
    )
    print(totals.net_total)  # 1180
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from payments_engines.tracer import traced_engine
from payments_kernel.logging_config import get_logger

logger = get_logger("engines.boletin_totals")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    """``amount * percent / 100`` without intermediate rounding."""
    return amount * percent / _HUNDRED


@dataclass(frozen=True)
class LineFigures:
    """Numeric inputs of one boletín line."""

    item_id: str
    quantity: Decimal
    unit_price: Decimal
    tax_percent: Decimal = _ZERO
    retention_percent: Decimal = _ZERO
    tax_retention_percent: Decimal = _ZERO


@dataclass(frozen=True)
class HeaderDeductions:
    """Deductions applied to the boletín sub-total."""

    retention_percent: Decimal = _ZERO
    advance_percent: Decimal = _ZERO
    isr_percent: Decimal = _ZERO

    @classmethod
    def none(cls) -> HeaderDeductions:
        return cls()


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts of one boletín line."""

    item_id: str
    base_amount: Decimal
    tax_amount: Decimal
    retention_amount: Decimal
    tax_retention_amount: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class BoletinTotals:
    """Derived amounts of a whole boletín."""

    lines: tuple[LineAmounts, ...]
    sub_total: Decimal
    tax_amount: Decimal
    line_retention_amount: Decimal
    line_tax_retention_amount: Decimal
    retention_amount: Decimal
    advance_amount: Decimal
    isr_amount: Decimal
    net_total: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return (
            self.line_retention_amount
            + self.line_tax_retention_amount
            + self.retention_amount
            + self.advance_amount
            + self.isr_amount
        )


class BoletinTotalsCalculator:
    """
    Stateless calculator for boletín amounts.

    Contract:
        Identical inputs always produce identical outputs.  Lines are
        returned in input order.
    """

    def compute_line(self, line: LineFigures) -> LineAmounts:
        base = line.quantity * line.unit_price
        tax = percent_of(base, line.tax_percent)
        retention = percent_of(base, line.retention_percent)
        tax_retention = percent_of(tax, line.tax_retention_percent)
        return LineAmounts(
            item_id=line.item_id,
            base_amount=base,
            tax_amount=tax,
            retention_amount=retention,
            tax_retention_amount=tax_retention,
            line_total=base + tax - retention - tax_retention,
        )

    @traced_engine("boletin_totals", "1.0", fingerprint_fields=("lines", "deductions"))
    def calculate(
        self,
        *,
        lines: Sequence[LineFigures],
        deductions: HeaderDeductions,
    ) -> BoletinTotals:
        amounts = tuple(self.compute_line(line) for line in lines)

        sub_total = sum((a.base_amount for a in amounts), _ZERO)
        tax = sum((a.tax_amount for a in amounts), _ZERO)
        line_retention = sum((a.retention_amount for a in amounts), _ZERO)
        line_tax_retention = sum((a.tax_retention_amount for a in amounts), _ZERO)

        retention = percent_of(sub_total, deductions.retention_percent)
        advance = percent_of(sub_total, deductions.advance_percent)
        isr = percent_of(sub_total, deductions.isr_percent)

        net = (
            sub_total
            + tax
            - line_retention
            - line_tax_retention
            - retention
            - advance
            - isr
        )

        return BoletinTotals(
            lines=amounts,
            sub_total=sub_total,
            tax_amount=tax,
            line_retention_amount=line_retention,
            line_tax_retention_amount=line_tax_retention,
            retention_amount=retention,
            advance_amount=advance,
            isr_amount=isr,
            net_total=net,
        )
