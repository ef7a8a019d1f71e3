"""
Configuration Loader (``payments_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``payments_config.schema`` dataclasses.  Runtime callers go through
``payments_config.get_active_config()``; this module is the parsing layer
underneath it and is used directly by tests.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Percentages are parsed through ``str`` into ``Decimal`` -- YAML floats
  never reach arithmetic.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from payments_config.schema import (
    AuthoritySettings,
    DatabaseSettings,
    DeductionDefaults,
    LoggingSettings,
    NumberingSettings,
    PaymentsConfig,
)

_SECTIONS = ("database", "numbering", "deductions", "authority", "logging")
_TOP_LEVEL = {"config_id", "version", *_SECTIONS}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level YAML node must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _decimal(section: str, key: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{section}.{key}: {value!r} is not a number") from exc


def _section(data: dict[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{name} must be a mapping")
    unknown = set(raw) - allowed
    if unknown:
        raise ValueError(f"{name}: unknown keys {sorted(unknown)}")
    return raw


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    raw = _section(data, "database", {"url", "echo", "pool_size", "max_overflow"})
    return DatabaseSettings(**raw)


def parse_numbering(data: dict[str, Any]) -> NumberingSettings:
    raw = _section(
        data,
        "numbering",
        {"payment_request_prefix", "payment_schedule_prefix", "width"},
    )
    return NumberingSettings(**raw)


def parse_deductions(data: dict[str, Any]) -> DeductionDefaults:
    raw = _section(
        data, "deductions", {"retention_percent", "advance_percent", "isr_percent"}
    )
    return DeductionDefaults(
        **{key: _decimal("deductions", key, value) for key, value in raw.items()}
    )


def parse_authority(data: dict[str, Any]) -> AuthoritySettings:
    raw = _section(data, "authority", {"privileged_roles", "finance_flag_grants_approval"})
    if "privileged_roles" in raw:
        raw = {**raw, "privileged_roles": tuple(raw["privileged_roles"] or ())}
    return AuthoritySettings(**raw)


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    raw = _section(data, "logging", {"level"})
    return LoggingSettings(**raw)


def merge_overrides(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Section-wise merge: keys in ``override`` replace those in ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if key in _SECTIONS and isinstance(value, dict):
            merged[key] = {**(base.get(key) or {}), **value}
        else:
            merged[key] = value
    return merged


def parse_config(data: dict[str, Any]) -> PaymentsConfig:
    """Parse a raw mapping into a ``PaymentsConfig``."""
    unknown = set(data) - _TOP_LEVEL
    if unknown:
        raise ValueError(f"unknown configuration sections {sorted(unknown)}")
    return PaymentsConfig(
        config_id=str(data.get("config_id", "payments-default")),
        version=int(data.get("version", 1)),
        database=parse_database(data),
        numbering=parse_numbering(data),
        deductions=parse_deductions(data),
        authority=parse_authority(data),
        logging=parse_logging(data),
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path, defaults_path: Path | None = None) -> PaymentsConfig:
    """
    Load ``path`` layered over ``defaults_path`` (when given).

    Postconditions:
        - Returns a fully validated ``PaymentsConfig`` whose checksum
          covers the merged document.
    """
    data = load_yaml_file(path)
    if defaults_path is not None and Path(defaults_path) != Path(path):
        data = merge_overrides(load_yaml_file(defaults_path), data)
    return parse_config(data)
