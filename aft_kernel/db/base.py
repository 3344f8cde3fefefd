"""
Module: aft_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides
    the type annotation map that keeps column types consistent across
    PostgreSQL and SQLite.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  ALL model files import from here.  MUST NOT import from models/,
    services/, selectors/, or domain/.

Invariants enforced:
    - User identifiers are UUIDs stored as String(36) on every backend.
    - Timestamps are timezone-aware and read back in UTC on every backend.
    - Request ids are integers (autoincrement), so ``int`` maps to Integer
      rather than BigInteger; SQLite only autoincrements INTEGER keys.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always reads back in UTC.

    SQLite stores DATETIME without an offset, so a reloaded row would
    otherwise come back naive while freshly written values are aware.

    Guarantees:
        - process_bind_param: aware values are converted to UTC; naive
          values are taken to be UTC already.
        - process_result_value: every value carries ``timezone.utc``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):

    """
    Declarative base for all AFT models.

    Models declare their own primary keys: users are keyed by UUID,
    requests and log rows by integer.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: Integer,
    }
