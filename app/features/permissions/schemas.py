"""
Pydantic schemas for permission management.

Request and response models for custom roles, resource overrides, templates
and permission checks. Matrices are validated against the closed permission
schema as part of request parsing.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.matrix import RoleArchetype, normalize_permissions
from app.features.permissions.resources import ResourceType


PermissionMatrixField = Dict[str, Dict[str, bool]]


def _validate_partial_matrix(v: Optional[Dict[str, Any]]) -> Optional[PermissionMatrixField]:
    if v is None:
        return None
    return normalize_permissions(v, partial=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name, unique within the organization")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")


class RoleCreate(RoleBase):
    """Schema for creating a custom role. Missing actions take their defaults."""
    based_on: RoleArchetype = Field(RoleArchetype.CUSTOM, description="Archetype the role is based on")
    permissions: Optional[Dict[str, Any]] = Field(None, description="Permission matrix {category: {action: bool}}")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Role name must not be blank")
        return v.strip()

    @field_validator("permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v):
        return _validate_partial_matrix(v)


class RoleUpdate(BaseModel):
    """Schema for updating a custom role. ``permissions`` is merged, other fields replaced."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    based_on: Optional[RoleArchetype] = None
    permissions: Optional[Dict[str, Any]] = None

    @field_validator("permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v):
        return _validate_partial_matrix(v)


class ResourceOverrideResponse(BaseModel):
    """Schema for a resource override."""
    id: str
    role_id: str
    resource_type: str
    resource_id: str
    permissions: PermissionMatrixField

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    organization_id: str
    is_system_role: bool
    based_on: RoleArchetype
    permissions: PermissionMatrixField
    resource_permission_overrides: List[ResourceOverrideResponse] = []
    created_by_id: Optional[str]
    updated_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CloneRoleRequest(BaseModel):
    """Schema for cloning a role under a new name."""
    name: str = Field(..., min_length=1, max_length=100, description="Name of the new role")


class DeleteRoleRequest(BaseModel):
    """Schema for deleting a role that may still be assigned to members."""
    new_role_id: Optional[str] = Field(None, description="Role to reassign members to")


class DeleteRoleResponse(BaseModel):
    """Schema for role deletion result."""
    message: str
    reassigned_members: int


# ============================================================================
# Resource Override Schemas
# ============================================================================

class ResourceOverrideSet(BaseModel):
    """Schema for installing or replacing a resource override."""
    resource_type: ResourceType = Field(..., description="Resource type")
    resource_id: str = Field(..., min_length=1, description="Resource ID")
    permissions: Dict[str, Any] = Field(..., description="Override matrix; unlisted actions are denied")

    @field_validator("permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v):
        return _validate_partial_matrix(v)


# ============================================================================
# Template Schemas
# ============================================================================

class TemplateBase(BaseModel):
    """Base template schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Template name, unique within the organization")
    description: Optional[str] = Field(None, max_length=1000, description="Template description")


class TemplateCreate(TemplateBase):
    """Schema for creating a template. Only explicit ``false`` entries restrict roles."""
    permissions: Dict[str, Any] = Field(default_factory=dict, description="Sparse permission mask")
    applicable_resource_types: List[ResourceType] = Field(
        default_factory=list, description="Resource types the template applies to (empty for all)"
    )

    @field_validator("permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v):
        return _validate_partial_matrix(v) or {}


class TemplateUpdate(BaseModel):
    """Schema for updating a template. ``permissions`` is merged, other fields replaced."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[Dict[str, Any]] = None
    applicable_resource_types: Optional[List[ResourceType]] = None

    @field_validator("permissions", mode="before")
    @classmethod
    def validate_permissions(cls, v):
        return _validate_partial_matrix(v)


class TemplateResponse(TemplateBase):
    """Schema for template response."""
    id: str
    organization_id: str
    is_default: bool
    permissions: PermissionMatrixField
    applicable_resource_types: List[str]
    created_by_id: Optional[str]
    updated_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApplyTemplateRequest(BaseModel):
    """Schema for applying a template to a resource."""
    resource_type: ResourceType = Field(..., description="Resource type")
    resource_id: str = Field(..., min_length=1, description="Resource ID")


class ApplyTemplateResponse(BaseModel):
    """Schema for template application result."""
    template_id: str
    resource_type: str
    resource_id: str
    overrides: List[ResourceOverrideResponse]


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    resource_type: str
    resource_id: str
    permission: str
    has_permission: bool
