"""
payments_engines.tracer -- PAYMENTS_ENGINE_TRACE for pure engine calls.

Every traced call logs which engine ran, at which version, over which
inputs (a fingerprint, never the amounts themselves) and how long it took.
Two calls over equal inputs produce the same fingerprint, so a boletín's
totals can be tied back to the exact figures that produced them.

Fingerprints:
    - Decimals are normalized first: ``Decimal("10")`` and
      ``Decimal("10.00")`` are the same quantity and hash the same.
    - Dataclasses hash by field, mappings by sorted key, sequences in order.
    - A field absent from the call hashes like an explicit ``None``.

Usage:
    @traced_engine("boletin_totals", "1.0", fingerprint_fields=("lines",))
    def calculate(self, *, lines, deductions):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from payments_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonical(value: Any) -> str:
    if value is None:
        return "~"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f") if value else "0"
    if isinstance(value, Enum):
        return _canonical(value.value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonical({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    if isinstance(value, Mapping):
        body = ",".join(f"{k}={_canonical(v)}" for k, v in sorted(value.items()))
        return "{" + body + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """Short SHA-256 digest over the named keyword arguments."""
    canonical = ";".join(f"{name}:{_canonical(kwargs.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Wrap an engine entry point so each call emits PAYMENTS_ENGINE_TRACE.

    A call that raises is traced at WARNING with the exception type and the
    exception propagates unchanged.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            trace = {
                "trace_type": "PAYMENTS_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": (
                    compute_input_fingerprint(fingerprint_fields, kwargs)
                    if fingerprint_fields else ""
                ),
                "function": func.__qualname__,
            }
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
                _logger.warning(
                    "PAYMENTS_ENGINE_TRACE",
                    extra={**trace, "outcome": "error", "error_type": type(exc).__name__},
                )
                raise
            trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
            _logger.info("PAYMENTS_ENGINE_TRACE", extra={**trace, "outcome": "ok"})
            return result

        return wrapper

    return decorator
