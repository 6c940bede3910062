# mediagate/db/base_class.py
from __future__ import annotations

"""
# MediaGate — SQLAlchemy Base & Mixins

SQLAlchemy 2.0 declarative **Base** with:
- Global **naming conventions** (migration-friendly constraint names)
- Automatic **snake_case `__tablename__`** (models may override)
- `TimestampMixin` — server-side `created_at`

Usage:
    from mediagate.db.base_class import Base

    class Project(Base):
        __tablename__ = "projects"
        id = Column(String(64), primary_key=True)
"""

import re

from sqlalchemy import Column, DateTime, MetaData, func
from sqlalchemy.orm import DeclarativeBase, declared_attr

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def _to_snake(name: str) -> str:
    """Convert `CamelCase` to `snake_case` for table names."""
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


class Base(DeclarativeBase):
    """Global declarative base for MediaGate models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    @declared_attr.directive
    def __tablename__(cls) -> str:  # type: ignore[override]
        return _to_snake(cls.__name__)

    def __repr__(self) -> str:  # pragma: no cover
        attrs = [f"{k}={getattr(self, k)!r}" for k in ("id", "name", "title") if hasattr(self, k)]
        return f"{self.__class__.__name__}({', '.join(attrs)})"


class TimestampMixin:
    """Server-side creation timestamp (UTC)."""

    @declared_attr
    def created_at(cls):
        return Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


__all__ = ["Base", "TimestampMixin", "NAMING_CONVENTION"]
