"""
Module: booking_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models and the
    column types shared across the schema.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, domain/, or outer layers.

Invariants enforced:
    - Timestamps are stored as UTC and always come back timezone-aware,
      whatever the backend (SQLite drops tzinfo on its own).
    - Identifiers are opaque strings of at most 64 characters.

Failure modes:
    - ValueError on binding a naive datetime: every timestamp in the
      system comes from an aware Clock, so a naive value is a caller bug.
"""

from datetime import datetime, timezone
from typing import ClassVar

from sqlalchemy import DateTime, String
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

ID_LENGTH = 64


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as naive UTC.

    Contract:
        Binds aware datetimes converted to UTC; loads values tagged UTC.

    Guarantees:
        - process_bind_param: aware datetime -> naive UTC datetime.
        - process_result_value: naive datetime -> aware UTC datetime.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = DateTime(timezone=False)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - datetime maps to UTCDateTime -- always timezone-aware.
        - str maps to String(64) unless a column overrides it.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        str: String(ID_LENGTH),
    }
