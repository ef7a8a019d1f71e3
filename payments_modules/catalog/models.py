"""
Catalog Domain Models (``payments_modules.catalog.models``).

Frozen snapshots of the administration-owned catalogs the engine reads:
units of measure and retention types.  The engine never writes them.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID


def normalize_unit_code(code: str | None) -> str:
    """Trim and upper-case a unit code; ``None`` becomes ``""``."""
    return (code or "").strip().upper()


@dataclass(frozen=True)
class UnitOfMeasure:
    id: UUID
    code: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class RetentionType:
    """A named withholding percentage offered when filling a boletín line."""

    id: UUID
    code: str
    name: str
    percentage: Decimal
    description: str | None = None
    is_active: bool = True
