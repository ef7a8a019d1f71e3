"""
Configuration Schema (``payments_config.schema``).

Responsibility
--------------
Frozen dataclasses describing every tunable of the payments engine:
database connection, document numbering, default header deductions,
authority rules, and logging.  Default values mirror ``defaults.yaml``.

Invariants enforced
-------------------
* Percentages are ``Decimal`` in [0, 100] (never ``float``).
* Prefixes are non-empty upper-case strings; width is at least 1.
* ``__post_init__`` raises ``ValueError`` on any violation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite+pysqlite:///payments.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    def __post_init__(self) -> None:
        if not self.url or not self.url.strip():
            raise ValueError("database.url cannot be empty")
        if self.pool_size < 1:
            raise ValueError("database.pool_size must be at least 1")
        if self.max_overflow < 0:
            raise ValueError("database.max_overflow cannot be negative")


@dataclass(frozen=True)
class NumberingSettings:
    """Document number formats: ``{prefix}-{value:0{width}d}``."""

    payment_request_prefix: str = "BM"
    payment_schedule_prefix: str = "PP"
    width: int = 6

    def __post_init__(self) -> None:
        for name in ("payment_request_prefix", "payment_schedule_prefix"):
            value = getattr(self, name)
            if not value or value != value.strip().upper():
                raise ValueError(f"numbering.{name} must be a non-empty upper-case string")
        if self.payment_request_prefix == self.payment_schedule_prefix:
            raise ValueError("numbering prefixes must differ")
        if self.width < 1:
            raise ValueError("numbering.width must be at least 1")


@dataclass(frozen=True)
class DeductionDefaults:
    """Header deductions applied when the caller omits them."""

    retention_percent: Decimal = Decimal("5")
    advance_percent: Decimal = Decimal("0")
    isr_percent: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        for name in ("retention_percent", "advance_percent", "isr_percent"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise ValueError(f"deductions.{name} must be a Decimal")
            if value < 0 or value > _HUNDRED:
                raise ValueError(f"deductions.{name} must be between 0 and 100")


@dataclass(frozen=True)
class AuthoritySettings:
    """Who may drive approval state machines.

    An actor qualifies when their role is in ``privileged_roles`` or, if
    ``finance_flag_grants_approval`` is set, when they carry the
    accounting-access flag.
    """

    privileged_roles: tuple[str, ...] = ("admin",)
    finance_flag_grants_approval: bool = True

    def __post_init__(self) -> None:
        if not self.privileged_roles:
            raise ValueError("authority.privileged_roles cannot be empty")
        for role in self.privileged_roles:
            if not role or not role.strip():
                raise ValueError("authority.privileged_roles entries cannot be blank")


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"

    def __post_init__(self) -> None:
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"logging.level {self.level!r} is not a logging level")


@dataclass(frozen=True)
class PaymentsConfig:
    """Root configuration object returned by ``get_active_config()``."""

    config_id: str = "payments-default"
    version: int = 1
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    deductions: DeductionDefaults = field(default_factory=DeductionDefaults)
    authority: AuthoritySettings = field(default_factory=AuthoritySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""
