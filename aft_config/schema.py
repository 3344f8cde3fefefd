"""
AFT configuration schema.

Frozen dataclasses parsed from YAML by ``aft_config.loader``.  Values
here are plain strings and ints; ``aft_config.bridges`` converts them to
kernel types.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Engine settings passed to ``init_engine_from_url``."""

    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class WorkflowConfig:
    """
    Approval routing.

    ``approval_chains`` maps a transfer direction (``high-to-low`` etc.)
    to its ordered approval roles.
    """

    approval_chains: dict[str, tuple[str, ...]] = field(default_factory=dict)
    dispatch_on_submit: bool = True


@dataclass(frozen=True)
class SecurityAuditConfig:
    retention_days: int = 365


@dataclass(frozen=True)
class AftConfig:
    """A complete, loaded configuration set."""

    config_id: str
    version: int
    database: DatabaseConfig
    logging: LoggingConfig
    workflow: WorkflowConfig
    security_audit: SecurityAuditConfig
    checksum: str = ""
    source_path: str | None = None
