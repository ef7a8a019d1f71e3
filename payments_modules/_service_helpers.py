"""
Shared helpers for module services (``payments_modules._service_helpers``).

Each public service method owns its transaction: commit on success,
rollback and re-raise on any exception, so a failed operation never leaves
partial state behind.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy.orm import Session

from payments_kernel.exceptions import InvalidDateError


@contextmanager
def transaction_boundary(session: Session) -> Iterator[Session]:
    """Commit the session when the block succeeds, otherwise rollback."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def parse_calendar_date(field: str, value: date | str | None) -> date:
    """Accept a ``date`` or an ISO ``YYYY-MM-DD`` string.

    Raises:
        InvalidDateError: value is empty or not a calendar date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        raise InvalidDateError(field, str(value))
    text = value.strip()
    try:
        # A full timestamp is accepted and truncated to its date
        if "T" in text:
            return datetime.fromisoformat(text).date()
        return date.fromisoformat(text)
    except ValueError:
        raise InvalidDateError(field, value) from None
