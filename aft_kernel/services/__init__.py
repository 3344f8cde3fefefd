"""Services for the AFT kernel (write side)."""

from aft_kernel.services.auditor_service import AuditorService
from aft_kernel.services.request_lifecycle_service import RequestLifecycleService
from aft_kernel.services.security_audit_service import SecurityAuditService
from aft_kernel.services.sequence_service import SequenceService
from aft_kernel.services.user_service import UserService

__all__ = [
    "AuditorService",
    "RequestLifecycleService",
    "SecurityAuditService",
    "SequenceService",
    "UserService",
]
