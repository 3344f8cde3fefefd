"""
Workflow policy -- the configurable parts of routing.

The kernel never reads configuration files.  ``aft_config`` builds a
``WorkflowPolicy`` and hands it to the services.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from aft_kernel.domain.statuses import DEFAULT_APPROVAL_CHAINS, Role, TransferType


@dataclass(frozen=True)
class WorkflowPolicy:
    """
    Approval routing and retention settings.

    Guarantees:
        - ``chain_for`` returns a non-empty chain for every transfer type.
        - When ``dispatch_on_submit`` is set, submit routes the request to
          its first approval stage in the same unit of work.
    """

    approval_chains: Mapping[TransferType, tuple[Role, ...]] = field(
        default_factory=lambda: dict(DEFAULT_APPROVAL_CHAINS)
    )
    dispatch_on_submit: bool = True
    security_retention_days: int = 365

    def __post_init__(self) -> None:
        chains = {
            TransferType(tt): tuple(Role(r) for r in chain)
            for tt, chain in self.approval_chains.items()
        }
        missing = set(TransferType) - chains.keys()
        if missing:
            raise ValueError(
                "approval chain missing for: "
                + ", ".join(sorted(t.value for t in missing))
            )
        if any(not chain for chain in chains.values()):
            raise ValueError("approval chains must not be empty")
        if self.security_retention_days < 1:
            raise ValueError("security_retention_days must be at least 1")
        object.__setattr__(self, "approval_chains", chains)

    def chain_for(self, transfer_type: TransferType) -> tuple[Role, ...]:
        return self.approval_chains[TransferType(transfer_type)]


DEFAULT_WORKFLOW_POLICY = WorkflowPolicy()
