"""
Document numbering from locked counter rows.

Boletines are numbered ``BM-000001``, ``BM-000002``, ... and payment
schedules ``PP-000001``, ...  Each series is one row of
``sequence_counters``.  Allocation reads that row ``FOR UPDATE``,
increments it and flushes, all inside the caller's transaction:

    - two concurrent creators queue on the row lock and get different values;
    - a rolled-back creation gives its value back, a committed one never
      reuses it;
    - counting existing documents and adding one is not used anywhere, since
      it hands out duplicates under concurrency.

The service never commits; the calling module service owns the boundary.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from payments_kernel.db.base import Base
from payments_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One named series and the last value handed out."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def format_document_number(prefix: str, value: int, width: int = 6) -> str:
    """``format_document_number("BM", 7)`` -> ``"BM-000007"``."""
    return f"{prefix}-{value:0{width}d}"


class SequenceService:
    PAYMENT_REQUEST = "payment_request"
    PAYMENT_SCHEDULE = "payment_schedule"

    KNOWN_SEQUENCES = (PAYMENT_REQUEST, PAYMENT_SCHEDULE)

    def __init__(self, session: Session):
        self._session = session

    def _find(self, sequence_name: str, *, lock: bool) -> SequenceCounter | None:
        stmt = select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._find(sequence_name, lock=True)

    def _create_counter(self, sequence_name: str) -> SequenceCounter | None:
        """Insert the counter at 1 inside a savepoint.

        Returns None when a concurrent transaction created it first; the
        caller then locks the winner's row.
        """
        try:
            with self._session.begin_nested():
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
        except IntegrityError:
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            return None
        return counter

    def next_value(self, sequence_name: str) -> int:
        """Allocate the next value of ``sequence_name`` (first value is 1).

        The counter row stays locked until the caller's transaction ends.
        """
        counter = self._locked_counter(sequence_name)
        if counter is None:
            created = self._create_counter(sequence_name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
                return value
            counter = self._locked_counter(sequence_name)
            if counter is None:
                raise RuntimeError(f"sequence counter {sequence_name!r} vanished during allocation")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_document_number(
        self,
        sequence_name: str,
        prefix: str,
        width: int = 6,
    ) -> tuple[int, str]:
        """Allocate a value and return it with its formatted document number."""
        value = self.next_value(sequence_name)
        return value, format_document_number(prefix, value, width)

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for a series never used."""
        counter = self._find(sequence_name, lock=False)
        return None if counter is None else counter.current_value

    def reset(self, sequence_name: str, value: int = 0) -> None:
        """Set a series to ``value``.  Data migrations and tests only: a
        reset in production re-issues document numbers."""
        counter = self._locked_counter(sequence_name)
        if counter is None:
            self._session.add(SequenceCounter(name=sequence_name, current_value=value))
        else:
            counter.current_value = value
        self._session.flush()

    def initialize_sequences(self) -> None:
        """Create the boletín and schedule series at 0 where missing."""
        for name in self.KNOWN_SEQUENCES:
            if self._find(name, lock=False) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
