"""
Catalog Gate (``payments_modules.catalog.service``).

Responsibility
--------------
Answers one question for the boletín builder: which of the requested
unit codes exist in the catalog?  Also lists the active units and
retention types offered when a boletín is filled in.

Invariants enforced
-------------------
* Codes are normalized (trim, upper-case) before comparison.
* Existence, not activation, decides validity: a code deactivated after a
  boletín used it stays acceptable so unit continuity can be honoured.
* Empty input returns an empty set without touching the store.

Failure modes
-------------
None.  The caller turns a code missing from the result into
``UnitNotFoundError``.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from payments_kernel.logging_config import get_logger
from payments_modules.catalog.models import (
    RetentionType,
    UnitOfMeasure,
    normalize_unit_code,
)
from payments_modules.catalog.orm import RetentionTypeModel, UnitOfMeasureModel

logger = get_logger("modules.catalog.service")


class CatalogGate:
    """Read-only view over the unit and retention catalogs."""

    def __init__(self, session: Session):
        self._session = session

    def validate_units(self, requested_codes: Iterable[str | None]) -> set[str]:
        """Return the normalized subset of ``requested_codes`` present in the catalog."""
        normalized = {normalize_unit_code(c) for c in requested_codes}
        normalized.discard("")
        if not normalized:
            return set()

        found = set(
            self._session.execute(
                select(UnitOfMeasureModel.code).where(
                    UnitOfMeasureModel.code.in_(sorted(normalized))
                )
            ).scalars()
        )
        logger.debug(
            "catalog_units_validated",
            extra={"requested": sorted(normalized), "found": sorted(found)},
        )
        return found

    def active_units(self) -> list[UnitOfMeasure]:
        rows = self._session.execute(
            select(UnitOfMeasureModel)
            .where(UnitOfMeasureModel.is_active.is_(True))
            .order_by(UnitOfMeasureModel.code)
        ).scalars()
        return [row.to_dto() for row in rows]

    def active_retentions(self) -> list[RetentionType]:
        rows = self._session.execute(
            select(RetentionTypeModel)
            .where(RetentionTypeModel.is_active.is_(True))
            .order_by(RetentionTypeModel.code)
        ).scalars()
        return [row.to_dto() for row in rows]
