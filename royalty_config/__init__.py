"""
royalty_config -- single public entrypoint for royalty calculation settings.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component may read configuration
    files or environment variables directly.  Returns a frozen
    ``CalculationConfig``.

Architecture position:
    Configuration -- sits above ``royalty_kernel`` and below
    ``royalty_services``.  The kernel and engines MUST NEVER import from
    ``royalty_config``; services receive the config object explicitly
    and pass plain values down to the engines.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: an invalid value fails startup, never a run.
    - Deterministic checksum: the same effective settings always produce
      the same SHA-256 checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigValidationError`` -- a setting is unknown, mistyped or out
      of range.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``ROYALTY_CONFIG_TRACE`` log entry with the config id, version and
    checksum.  Runs record the checksum so any statement can be tied back
    to the thresholds and rounding rules that produced it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from royalty_config.loader import ConfigValidationError, load_config
from royalty_config.schema import CalculationConfig, FiscalYearConfig

_logger = logging.getLogger("royalty_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
DEFAULT_CONFIG_PATH = _DEFAULT_CONFIG_DIR / "default.yaml"


def get_active_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> CalculationConfig:
    """The ONLY public configuration entrypoint.

    Contract:
        Reads the YAML defaults, applies ``ROYALTY_*`` environment
        overrides and returns the validated result.

    Guarantees:
        - The returned config has passed type and range validation.
        - A ``ROYALTY_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - No caching.  Call once at startup and hold the result.

    Args:
        config_path: YAML file to load.  Defaults to sets/default.yaml.
        environ: Environment mapping.  Defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigValidationError: If any setting is invalid.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    config = load_config(path, os.environ if environ is None else environ)

    _logger.info(
        "ROYALTY_CONFIG_TRACE",
        extra={
            "trace_type": "ROYALTY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.config_version,
            "checksum": config.checksum,
            "source": str(path),
            "rounding_method": config.rounding_method.value,
            "minimum_payout_threshold_cents": config.minimum_payout_threshold_cents,
            "calculation_timeout_ms": config.calculation_timeout_ms,
        },
    )
    return config


__all__ = [
    "CalculationConfig",
    "ConfigValidationError",
    "DEFAULT_CONFIG_PATH",
    "FiscalYearConfig",
    "get_active_config",
]
