"""
Configuration Loader (``aft_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``aft_config.schema`` dataclasses.  Runtime callers use
``aft_config.get_active_config()`` instead.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Wrongly typed values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from aft_config.schema import (
    AftConfig,
    DatabaseConfig,
    LoggingConfig,
    SecurityAuditConfig,
    WorkflowConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _as_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{name} must be true or false, got {value!r}")
    return value


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=str(data.get("url", "sqlite://")),
        echo=_as_bool(data.get("echo", False), "database.echo"),
        pool_size=_as_int(data.get("pool_size", 10), "database.pool_size"),
        max_overflow=_as_int(data.get("max_overflow", 10), "database.max_overflow"),
    )


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    return LoggingConfig(level=str(data.get("level", "INFO")).upper())


def parse_workflow(data: dict[str, Any]) -> WorkflowConfig:
    raw_chains = data["approval_chains"]
    if not isinstance(raw_chains, dict):
        raise ValueError("workflow.approval_chains must be a mapping")
    chains: dict[str, tuple[str, ...]] = {}
    for direction, roles in raw_chains.items():
        if not isinstance(roles, list):
            raise ValueError(f"approval chain for {direction!r} must be a list")
        chains[str(direction)] = tuple(str(role) for role in roles)
    return WorkflowConfig(
        approval_chains=chains,
        dispatch_on_submit=_as_bool(
            data.get("dispatch_on_submit", True), "workflow.dispatch_on_submit",
        ),
    )


def parse_security_audit(data: dict[str, Any]) -> SecurityAuditConfig:
    return SecurityAuditConfig(
        retention_days=_as_int(
            data.get("retention_days", 365), "security_audit.retention_days",
        ),
    )


def parse_config(data: dict[str, Any], source_path: Path | None = None) -> AftConfig:
    """
    Parse a raw YAML mapping into an ``AftConfig``.

    ``workflow`` is required; the other sections fall back to defaults.
    """
    return AftConfig(
        config_id=str(data["config_id"]),
        version=_as_int(data.get("version", 1), "version"),
        database=parse_database(data.get("database") or {}),
        logging=parse_logging(data.get("logging") or {}),
        workflow=parse_workflow(data["workflow"]),
        security_audit=parse_security_audit(data.get("security_audit") or {}),
        checksum=compute_checksum(data),
        source_path=str(source_path) if source_path else None,
    )


def load_config(path: Path) -> AftConfig:
    return parse_config(load_yaml_file(path), source_path=path)
