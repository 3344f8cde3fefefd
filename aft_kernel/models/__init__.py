"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from aft_kernel.models.audit_log import AuditAction, AuditLogEntry
from aft_kernel.models.request import AftRequestModel
from aft_kernel.models.security_event import SecurityAuditEvent, SecurityEventType
from aft_kernel.models.user import UserModel, UserRoleModel


def import_all_models() -> None:
    """Ensure every model module is imported (tables registered on metadata)."""
    from aft_kernel.services import sequence_service  # noqa: F401  (aft_sequence_counters)


__all__ = [
    "AftRequestModel",
    "AuditAction",
    "AuditLogEntry",
    "SecurityAuditEvent",
    "SecurityEventType",
    "UserModel",
    "UserRoleModel",
    "import_all_models",
]
