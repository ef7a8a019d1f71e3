"""
Catalog ORM Models (``payments_modules.catalog.orm``).

Responsibility
--------------
SQLAlchemy persistence for the unit-of-measure and retention-type
catalogs.  Rows are maintained by catalog administration; the core only
reads them.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``payments_kernel.db.base``
and sibling ``models.py``.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payments_kernel.db.base import TrackedBase


class UnitOfMeasureModel(TrackedBase):
    """
    ORM model for units of measure.

    Guarantees:
        - code is stored upper-case and is unique (uq_units_of_measure_code).
        - Deactivated codes stay in the table; historical boletines keep
          referencing them.
    """

    __tablename__ = "units_of_measure"

    __table_args__ = (
        UniqueConstraint("code", name="uq_units_of_measure_code"),
        Index("idx_units_of_measure_is_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.catalog.models import UnitOfMeasure

        return UnitOfMeasure(
            id=self.id,
            code=self.code,
            name=self.name,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<UnitOfMeasureModel {self.code}: {self.name}>"


class RetentionTypeModel(TrackedBase):
    """
    ORM model for retention types.

    Guarantees:
        - code is unique (uq_retention_types_code).
        - percentage is a percent value between 0 and 100.
    """

    __tablename__ = "retention_types"

    __table_args__ = (
        UniqueConstraint("code", name="uq_retention_types_code"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from payments_modules.catalog.models import RetentionType

        return RetentionType(
            id=self.id,
            code=self.code,
            name=self.name,
            percentage=self.percentage,
            description=self.description,
            is_active=self.is_active,
        )

    def __repr__(self) -> str:
        return f"<RetentionTypeModel {self.code}: {self.percentage}%>"
