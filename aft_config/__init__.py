"""
aft_config -- single public entrypoint for AFT configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables.

Architecture position:
    Configuration sits above ``aft_kernel``.  The kernel MUST NEVER
    import from ``aft_config``; ``aft_config.bridges`` translates the
    loaded configuration into kernel inputs.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - A configuration with validation errors is never returned.
    - ``AFT_DATABASE_URL`` and ``AFT_LOG_LEVEL`` override the file, and
      are applied here and nowhere else.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- parse or validation failures.

Audit relevance:
    Every successful call emits an ``AFT_CONFIG_TRACE`` log entry with
    the config id, version and checksum, tying workflow behaviour to the
    exact configuration that governed it.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from aft_config.loader import load_config
from aft_config.schema import AftConfig
from aft_config.validator import ConfigValidationResult, validate_configuration

_logger = logging.getLogger("aft_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

ENV_DATABASE_URL = "AFT_DATABASE_URL"
ENV_LOG_LEVEL = "AFT_LOG_LEVEL"


def _apply_environment(config: AftConfig, environ: Mapping[str, str]) -> AftConfig:
    overrides = []
    if environ.get(ENV_DATABASE_URL):
        config = replace(
            config, database=replace(config.database, url=environ[ENV_DATABASE_URL]),
        )
        overrides.append(ENV_DATABASE_URL)
    if environ.get(ENV_LOG_LEVEL):
        config = replace(
            config, logging=replace(config.logging, level=environ[ENV_LOG_LEVEL].upper()),
        )
        overrides.append(ENV_LOG_LEVEL)
    if overrides:
        _logger.info("config_environment_overrides", extra={"overrides": overrides})
    return config


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> AftConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``aft_config/sets/default.yaml``.
        environ: Environment mapping for overrides.  Defaults to
            ``os.environ``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ValueError: If the configuration fails validation.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config = load_config(path)
    config = _apply_environment(config, os.environ if environ is None else environ)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("config_validation_warning", extra={"warning": warning})

    _logger.info(
        "AFT_CONFIG_TRACE",
        extra={
            "trace_type": "AFT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "dispatch_on_submit": config.workflow.dispatch_on_submit,
            "retention_days": config.security_audit.retention_days,
        },
    )
    return config


__all__ = [
    "AftConfig",
    "ConfigValidationResult",
    "DEFAULT_CONFIG_PATH",
    "get_active_config",
    "validate_configuration",
]
