"""
Configuration Loader (``royalty_config.loader``).

Responsibility
--------------
Loads the YAML defaults, layers ``ROYALTY_*`` environment overrides on
top, validates every value, and builds a frozen ``CalculationConfig``.
This is internal tooling: runtime callers use
``royalty_config.get_active_config()``.

Architecture position
---------------------
**Config layer**.  Depends on ``royalty_kernel`` for value enums and the
exception base only.  The kernel and engines never import this module.

Invariants enforced
-------------------
* Unknown keys, wrong types and out-of-range values are rejected with
  every problem listed at once; there are no silent defaults for values
  that were supplied.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical
  JSON of the effective settings.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigValidationError``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import fields, replace
from pathlib import Path
from typing import Any

import yaml

from royalty_config.schema import CalculationConfig, FiscalYearConfig
from royalty_kernel.domain.values import RoundingMethod
from royalty_kernel.exceptions import RoyaltyEngineError

ENV_PREFIX = "ROYALTY_"

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})

_INT_FIELDS = (
    "minimum_payout_threshold_cents",
    "vip_minimum_payout_threshold_cents",
    "calculation_timeout_ms",
    "adjustment_approval_threshold_cents",
    "derivative_original_creator_share_bps",
    "dispute_resolution_timeout_days",
    "dispute_reason_min_length",
    "calculation_workers",
    "config_version",
)
_OPTIONAL_INT_FIELDS = ("rounding_tolerance_cents",)
_BOOL_FIELDS = (
    "enable_proration",
    "enable_usage_revenue",
    "enable_derivative_royalty_splits",
)
_FISCAL_FIELDS = ("start_month", "start_day")

_KNOWN_KEYS = frozenset(
    f.name for f in fields(CalculationConfig) if f.name != "checksum"
)


class ConfigValidationError(RoyaltyEngineError, ValueError):
    """Configuration values failed validation; ``errors`` lists each one."""

    code: str = "CONFIG_VALIDATION"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: Mapping[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _env_value(raw: str) -> Any:
    """Environment strings are YAML scalars: '5000', 'true', 'null', 'STANDARD'."""
    return yaml.safe_load(raw) if raw.strip() else None


def apply_environment_overrides(
    data: Mapping[str, Any],
    environ: Mapping[str, str],
) -> dict[str, Any]:
    """
    Return a copy of ``data`` with ``ROYALTY_*`` variables applied.

    ``ROYALTY_<FIELD>`` overrides a top-level key and
    ``ROYALTY_FISCAL_YEAR_<FIELD>`` a fiscal year key.  Variables that
    match no known setting are ignored.
    """
    merged = dict(data)
    fiscal = dict(merged.get("fiscal_year") or {})
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX):].lower()
        if key.startswith("fiscal_year_") and key[len("fiscal_year_"):] in _FISCAL_FIELDS:
            fiscal[key[len("fiscal_year_"):]] = _env_value(raw)
        elif key in _KNOWN_KEYS and key != "fiscal_year":
            merged[key] = _env_value(raw)
    if fiscal:
        merged["fiscal_year"] = fiscal
    return merged


def _as_int(key: str, value: Any, errors: list[str]) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(f"{key} must be an integer, got {value!r}")
        return None
    return value


def _as_bool(key: str, value: Any, errors: list[str]) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in _TRUE | _FALSE:
        return value.lower() in _TRUE
    errors.append(f"{key} must be a boolean, got {value!r}")
    return None


def parse_config(data: Mapping[str, Any]) -> CalculationConfig:
    """
    Validate a settings mapping and build a CalculationConfig.

    Keys absent from ``data`` take the dataclass defaults.

    Raises:
        ConfigValidationError: listing every invalid value.
    """
    errors: list[str] = []
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        errors.append(f"unknown configuration keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key in _INT_FIELDS:
        if key in data:
            values[key] = _as_int(key, data[key], errors)
    for key in _OPTIONAL_INT_FIELDS:
        if key in data:
            values[key] = None if data[key] is None else _as_int(key, data[key], errors)
    for key in _BOOL_FIELDS:
        if key in data:
            values[key] = _as_bool(key, data[key], errors)

    if "rounding_method" in data:
        try:
            values["rounding_method"] = RoundingMethod(str(data["rounding_method"]).upper())
        except ValueError:
            errors.append(
                f"rounding_method must be one of "
                f"{', '.join(m.value for m in RoundingMethod)}, got {data['rounding_method']!r}"
            )

    if "config_id" in data:
        values["config_id"] = str(data["config_id"])

    fiscal_data = data.get("fiscal_year") or {}
    fiscal_values: dict[str, Any] = {}
    for key in _FISCAL_FIELDS:
        if key in fiscal_data:
            fiscal_values[key] = _as_int(f"fiscal_year.{key}", fiscal_data[key], errors)
    extra_fiscal = sorted(set(fiscal_data) - set(_FISCAL_FIELDS))
    if extra_fiscal:
        errors.append(f"unknown fiscal_year keys: {', '.join(extra_fiscal)}")

    if errors:
        raise ConfigValidationError(errors)

    config = CalculationConfig(
        fiscal_year=FiscalYearConfig(**fiscal_values),
        **values,
    )
    _validate_ranges(config)
    return config


def _validate_ranges(config: CalculationConfig) -> None:
    errors: list[str] = []
    non_negative = (
        "minimum_payout_threshold_cents",
        "vip_minimum_payout_threshold_cents",
        "adjustment_approval_threshold_cents",
    )
    for key in non_negative:
        if getattr(config, key) < 0:
            errors.append(f"{key} must be >= 0, got {getattr(config, key)}")
    positive = (
        "calculation_timeout_ms",
        "dispute_resolution_timeout_days",
        "dispute_reason_min_length",
        "calculation_workers",
    )
    for key in positive:
        if getattr(config, key) <= 0:
            errors.append(f"{key} must be > 0, got {getattr(config, key)}")
    if config.rounding_tolerance_cents is not None and config.rounding_tolerance_cents < 0:
        errors.append(
            f"rounding_tolerance_cents must be >= 0, got {config.rounding_tolerance_cents}"
        )
    if not 0 <= config.derivative_original_creator_share_bps <= 10000:
        errors.append(
            "derivative_original_creator_share_bps must be between 0 and 10000, "
            f"got {config.derivative_original_creator_share_bps}"
        )
    if not 1 <= config.fiscal_year.start_month <= 12:
        errors.append(
            f"fiscal_year.start_month must be 1-12, got {config.fiscal_year.start_month}"
        )
    if not 1 <= config.fiscal_year.start_day <= 31:
        errors.append(
            f"fiscal_year.start_day must be 1-31, got {config.fiscal_year.start_day}"
        )
    if errors:
        raise ConfigValidationError(errors)


def load_config(
    path: Path,
    environ: Mapping[str, str] | None = None,
) -> CalculationConfig:
    """
    Build the effective configuration from a YAML file and the environment.

    The checksum covers the effective settings after overrides, so two
    processes with the same YAML but different overrides have different
    checksums.
    """
    data = load_yaml_file(path)
    effective = apply_environment_overrides(data, environ or {})
    config = parse_config(effective)
    checksum = compute_checksum(
        {
            f.name: getattr(config, f.name)
            for f in fields(config)
            if f.name not in ("checksum", "fiscal_year")
        }
        | {"fiscal_year": vars(config.fiscal_year)}
    )
    return replace(config, checksum=checksum)
