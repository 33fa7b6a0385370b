"""
Custom role, resource override and permission template models.

This module stores the organization-scoped authorization data:
- Custom roles holding a complete permission matrix
- Per-resource overrides owned by a role
- Permission templates (sparse masks applied to resources)
"""
from typing import Dict, List
from sqlalchemy import String, ForeignKey, JSON, Text, Boolean, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, AuditMixin, generate_ulid
from app.features.permissions.matrix import RoleArchetype


class CustomRole(Base, TimestampMixin, AuditMixin):
    """
    Named permission matrix within an organization.

    System roles are seeded with the organization and are immutable.
    Examples: Administrator, Manager, Member, Guest, Billing Reviewer
    """
    __tablename__ = "custom_roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_custom_roles_org_name"),
    )

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    based_on: Mapped[RoleArchetype] = mapped_column(
        SQLEnum(RoleArchetype, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        default=RoleArchetype.CUSTOM,
        nullable=False,
    )

    # Complete matrix: {category: {action: bool}}
    permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    # Relationships
    resource_permission_overrides: Mapped[List["ResourcePermissionOverride"]] = relationship(
        "ResourcePermissionOverride",
        back_populates="role",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def get_override(self, resource_type: str, resource_id: str) -> "ResourcePermissionOverride | None":
        """Return the override for a resource, if the role has one."""
        for override in self.resource_permission_overrides:
            if override.resource_type == resource_type and override.resource_id == resource_id:
                return override
        return None

    def __repr__(self) -> str:
        return f"<CustomRole(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


class ResourcePermissionOverride(Base, TimestampMixin):
    """
    Replacement matrix for one role on one resource.

    The stored matrix is sparse and used verbatim by the checker; an action it
    does not mention is denied.
    """
    __tablename__ = "role_resource_overrides"
    __table_args__ = (
        UniqueConstraint("role_id", "resource_type", "resource_id", name="uq_role_resource_overrides_target"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("custom_roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)

    permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    role: Mapped["CustomRole"] = relationship("CustomRole", back_populates="resource_permission_overrides")

    def __repr__(self) -> str:
        return (
            f"<ResourcePermissionOverride(role_id={self.role_id}, "
            f"resource={self.resource_type}:{self.resource_id})>"
        )


class PermissionTemplate(Base, TimestampMixin, AuditMixin):
    """
    Reusable mask applied to a resource for every role in the organization.

    Only explicit ``False`` entries take effect, and only for roles not based on admin.
    """
    __tablename__ = "permission_templates"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_permission_templates_org_name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Default templates are seeded with the organization and cannot be deleted
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Sparse mask: {category: {action: bool}}
    permissions: Mapped[Dict[str, Dict[str, bool]]] = mapped_column(JSON, nullable=False, default=dict)

    # Empty list means the template applies to every resource type
    applicable_resource_types: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    def is_applicable_to(self, resource_type: str) -> bool:
        return not self.applicable_resource_types or resource_type in self.applicable_resource_types

    def __repr__(self) -> str:
        return f"<PermissionTemplate(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


