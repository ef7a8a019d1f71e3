"""
Module: payments_engines
Responsibility:
    Pure calculation layer for the payments engine.  Zero I/O, Decimal-only
    arithmetic, deterministic output.  Services pass every input in
    explicitly (including dates); engines never read the clock.

Usage:
    from payments_engines import BoletinTotalsCalculator, HeaderDeductions, LineFigures
"""

from payments_engines.boletin_totals import (
    BoletinTotals,
    BoletinTotalsCalculator,
    HeaderDeductions,
    LineAmounts,
    LineFigures,
    percent_of,
)

__all__ = [
    "BoletinTotals",
    "BoletinTotalsCalculator",
    "HeaderDeductions",
    "LineAmounts",
    "LineFigures",
    "percent_of",
]
