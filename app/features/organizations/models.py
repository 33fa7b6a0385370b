"""
Organization and membership models.

Organizations are the tenant boundary. A membership links a user to an
organization with a primitive role and, optionally, a custom role whose
permission matrix replaces the primitive role's built-in one.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid


class MembershipRole(str, enum.Enum):
    """Primitive, non-configurable role tiers."""
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


class MembershipStatus(str, enum.Enum):
    """Status of a membership; only active memberships grant anything."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Organization(Base, TimestampMixin):
    """
    Organization (tenant). Roles, templates and overrides are scoped to exactly one.
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    memberships: Mapped[list["Membership"]] = relationship(
        "Membership",
        back_populates="organization",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class Membership(Base, TimestampMixin):
    """
    A user's relationship to an organization.

    ``role`` holds the primitive role as a plain string. Deleting a custom role
    with a replacement copies the replacement's archetype into it, so values
    other than admin/member/viewer can appear and simply receive no built-in grants.
    """
    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", name="uq_memberships_user_org"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    role: Mapped[str] = mapped_column(String(50), nullable=False, default=MembershipRole.MEMBER.value)
    custom_role_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("custom_roles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=MembershipStatus.ACTIVE.value, index=True
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.now)

    user: Mapped["User"] = relationship("User", back_populates="memberships", lazy="selectin")  # type: ignore
    organization: Mapped["Organization"] = relationship(
        "Organization", back_populates="memberships", lazy="raise"
    )
    custom_role: Mapped["CustomRole | None"] = relationship("CustomRole", lazy="raise")  # type: ignore

    def __repr__(self) -> str:
        return (
            f"<Membership(user_id={self.user_id}, org_id={self.organization_id}, "
            f"role={self.role}, custom_role_id={self.custom_role_id})>"
        )
