"""
Configuration Validator (``aft_config.validator``).

Validates an ``AftConfig`` before it is handed to the kernel.

Invariants enforced
-------------------
* Every transfer direction has an approval chain.
* Every chain is non-empty, uses only ``dao``, ``approver`` and ``cpso``,
  and keeps their order (a chain may skip a stage, never reorder it).
* ``high-to-low`` starts at ``dao``; every other direction starts at
  ``approver``.
* Security event retention is at least one day.
* The log level is a standard level name.

Failure modes
-------------
* ``ConfigValidationResult.errors`` -> configuration MUST NOT be used.
* ``ConfigValidationResult.warnings`` -> usable but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from aft_config.schema import AftConfig

TRANSFER_DIRECTIONS = ("low-to-low", "low-to-high", "high-to-low", "high-to-high")
STAGE_ORDER = ("dao", "approver", "cpso")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def _validate_chain(direction: str, chain: tuple[str, ...], result: ConfigValidationResult) -> None:
    if not chain:
        result.add_error(f"Approval chain for '{direction}' is empty")
        return
    unknown = [role for role in chain if role not in STAGE_ORDER]
    if unknown:
        result.add_error(
            f"Approval chain for '{direction}' has unknown stages: {', '.join(unknown)}"
        )
        return
    positions = [STAGE_ORDER.index(role) for role in chain]
    if positions != sorted(set(positions)):
        result.add_error(
            f"Approval chain for '{direction}' must follow dao, approver, cpso "
            f"order without repeats, got {list(chain)}"
        )
    expected_first = "dao" if direction == "high-to-low" else "approver"
    if chain[0] != expected_first:
        result.add_error(
            f"Approval chain for '{direction}' must start with '{expected_first}'"
        )
    if chain[-1] != "cpso":
        result.add_warning(f"Approval chain for '{direction}' skips the cpso stage")


def validate_configuration(config: AftConfig) -> ConfigValidationResult:
    """Validate a loaded configuration set."""
    result = ConfigValidationResult()

    chains = config.workflow.approval_chains
    for direction in TRANSFER_DIRECTIONS:
        if direction not in chains:
            result.add_error(f"No approval chain configured for '{direction}'")
    for direction, chain in sorted(chains.items()):
        if direction not in TRANSFER_DIRECTIONS:
            result.add_error(f"Unknown transfer direction '{direction}'")
            continue
        _validate_chain(direction, chain, result)

    if config.security_audit.retention_days < 1:
        result.add_error("security_audit.retention_days must be at least 1")

    if config.logging.level not in LOG_LEVELS:
        result.add_error(f"Unknown log level '{config.logging.level}'")

    if not config.database.url:
        result.add_error("database.url must not be empty")

    return result
