"""
SQLAlchemy declarative base and common model utilities.

All SQLAlchemy models should inherit from Base.
"""
from datetime import datetime
from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
import ulid


def generate_ulid() -> str:
    """Generate a new ULID string (26-character Crockford Base32)."""
    return str(ulid.ULID())


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    Usage:
        from app.core.database.base import Base, generate_ulid

        class Project(Base):
            __tablename__ = "projects"

            id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
            name: Mapped[str] = mapped_column(String(255))
    """
    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.
    """
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


class AuditMixin:
    """
    Mixin recording which user created and last updated a row.

    Both columns are nullable: seeded rows may have no acting user.
    """
    @declared_attr
    def created_by_id(cls) -> Mapped[str | None]:
        return mapped_column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def updated_by_id(cls) -> Mapped[str | None]:
        return mapped_column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
