"""
Declarative base for storefront models.

Every table has a generated UUID primary key and database-maintained
``created_at``/``updated_at`` columns. Mappers fetch server defaults right
after flush so timestamps are readable without another query.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    __abstract__ = True

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(id={getattr(self, 'id', None)!r})>"


class TimestampMixin:
    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            index=True,
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
        )


class UUIDMixin:
    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            UUID(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """Abstract model with UUID primary key and timestamps."""

    __abstract__ = True

    __mapper_args__ = {"eager_defaults": True}
