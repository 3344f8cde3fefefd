"""
Config -> Kernel Bridges.

Functions that convert an ``AftConfig`` into kernel inputs.  They live
in aft_config because the kernel must NEVER import aft_config.

Usage:
    from aft_config import get_active_config
    from aft_config.bridges import bootstrap, build_workflow_policy

    config = get_active_config()
    policy = bootstrap(config)
    with session_scope() as session:
        RequestLifecycleService(session, policy=policy).submit(...)
"""

from __future__ import annotations

from aft_config.schema import AftConfig
from aft_kernel.db.engine import create_tables, init_engine_from_url
from aft_kernel.db.immutability import register_immutability_listeners
from aft_kernel.domain.policy import WorkflowPolicy
from aft_kernel.domain.statuses import Role, TransferType
from aft_kernel.logging_config import configure_logging


def build_workflow_policy(config: AftConfig) -> WorkflowPolicy:
    """Translate the workflow and retention sections into a WorkflowPolicy."""
    return WorkflowPolicy(
        approval_chains={
            TransferType(direction): tuple(Role(role) for role in chain)
            for direction, chain in config.workflow.approval_chains.items()
        },
        dispatch_on_submit=config.workflow.dispatch_on_submit,
        security_retention_days=config.security_audit.retention_days,
    )


def bootstrap(config: AftConfig, create_schema: bool = True) -> WorkflowPolicy:
    """
    Wire logging, the engine and integrity listeners from ``config``.

    Returns the WorkflowPolicy to pass to the services.
    """
    configure_logging(level=config.logging.level)
    init_engine_from_url(
        config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    register_immutability_listeners()
    if create_schema:
        create_tables()
    return build_workflow_policy(config)
