"""
Declarative base and column mixins for the flag tables.

- TimestampMixin: created_at / updated_at, filled by the database when
  the row is written without them
- VersionMixin: the compare-and-swap counter behind optimistic writes
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models. Datetimes are timezone-aware."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }


class TimestampMixin:
    """Row creation and last-change times, UTC."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class VersionMixin:
    """
    Optimistic concurrency counter.

    Writers never update a row unconditionally; the flag store issues

        UPDATE feature_flags SET ..., version = :expected + 1
        WHERE environment = :env AND key = :key AND version = :expected

    and a zero rowcount means another writer committed first.
    """

    version: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )
