"""
Declarative base for the inventory schema.

Every table gets a uuid4 primary key.  Python annotations decide column types
through ``type_annotation_map``: quantities and prices are ``Decimal`` and map
to Numeric(38, 9), so no float ever reaches the ledger; datetimes are
timezone-aware.  Constraint names follow a fixed convention so that DDL is
identical on SQLite and PostgreSQL.

This module is the bottom of the import graph: it must not import from
models/, services/, selectors/ or domain/.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, MetaData, Numeric, String, func
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """
    Python ``uuid.UUID`` on both sides of the driver.

    Native ``uuid`` on PostgreSQL, CHAR-like String(36) elsewhere.
    """

    impl = String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(postgresql.UUID(as_uuid=False))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, UUID):
            return value
        return UUID(str(value))


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Rows that record who created and last touched them.

    ``created_at`` / ``updated_at`` come from the database clock;
    ``created_by_id`` is mandatory, ``updated_by_id`` is set by services on
    each state change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(),
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())


class SoftDeleteMixin:
    """Master data is retired by flag, never removed; reads choose via ``active_only``."""

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
