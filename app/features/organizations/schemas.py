"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field

from app.features.organizations.models import MembershipRole, MembershipStatus


# Organization Schemas
class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (admin only)."""
    pass


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of members in this organization")

    model_config = {"from_attributes": True}


# Membership Schemas
class AddMemberRequest(BaseModel):
    """Schema for adding a user to an organization."""
    user_id: str = Field(..., description="ID of the user to add")
    role: MembershipRole = Field(default=MembershipRole.MEMBER, description="Primitive role in the organization")
    custom_role_id: str | None = Field(None, description="Custom role replacing the primitive role's permissions")


class UpdateMemberRequest(BaseModel):
    """Schema for changing a member's roles or status. Send custom_role_id null to clear it."""
    role: MembershipRole | None = None
    custom_role_id: str | None = None
    status: MembershipStatus | None = None


class MembershipResponse(BaseModel):
    """Schema for membership responses."""
    id: str
    user_id: str
    organization_id: str
    role: str
    custom_role_id: str | None = None
    status: str
    joined_at: datetime

    model_config = {"from_attributes": True}
