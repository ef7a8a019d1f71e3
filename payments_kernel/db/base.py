"""
Declarative base for the payments ORM.

Every persisted entity (boletines, their lines, schedules, schedule lines,
audit rows, catalog entries, sequence counters) derives from ``Base``:

    - primary key ``id`` is a uuid4, stored as ``String(36)`` so PostgreSQL
      and SQLite behave the same;
    - ``Decimal`` annotations map to ``Numeric(38, 9)``.  Amounts,
      quantities and percentages are never floats;
    - ``int`` maps to ``BigInteger`` for document sequence values.

``TrackedBase`` adds who/when columns to the mutable aggregates.  Audit
rows carry their own actor and timestamp and use plain ``Base``.

Nothing here imports from the rest of the engine.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID column stored as its 36-character string form.

    Binds accept ``uuid.UUID`` or any string ``uuid.UUID`` can parse, so ids
    arriving from an API layer as text compare equal to stored ones.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Abstract base adding creation and last-change stamps.

    Services write ``created_at`` from their injected clock, which keeps
    "newest boletín first" ordering deterministic in tests.  The server
    defaults only apply to rows inserted outside a service (catalog seeds,
    migrations).
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255))


UUID = PyUUID
