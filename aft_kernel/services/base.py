"""
BaseService -- abstract base for kernel services that write.

Every concrete service receives a SQLAlchemy ``Session`` and uses
``session.flush()`` -- never ``session.commit()``.  The caller
(``session_scope()`` or a test fixture) owns commit and rollback, so a
status change and its audit entry are committed together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from aft_kernel.db.base import Base
from aft_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Contract:
        Accepts a Session from the caller and flushes within its
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide list/report queries; those live in selectors/.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
