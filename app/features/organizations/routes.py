"""
Organization feature routes.
"""
from typing import Annotated
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import ConflictError
from app.features.users.models import User
from app.features.users.dependencies import get_current_admin_user
from app.features.organizations.models import Organization, Membership, MembershipRole
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationResponse,
    AddMemberRequest,
    UpdateMemberRequest,
    MembershipResponse,
)
from app.features.organizations.dependencies import get_organization_by_id, get_user_organization
from app.features.permissions.dependencies import require_organization_permission
from app.features.permissions.service import PermissionService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


async def _member_count(db: AsyncSession, organization_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(Membership).where(Membership.organization_id == organization_id)
    )
    return result.scalar_one()


async def _get_membership(db: AsyncSession, organization_id: str, user_id: str) -> Membership:
    result = await db.execute(
        select(Membership).where(
            Membership.organization_id == organization_id,
            Membership.user_id == user_id,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User is not a member of this organization"
        )
    return membership


# Organization endpoints
@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Create a new organization (admin only).

    The creator joins as an admin member, and the system roles and default
    permission templates are seeded.
    """
    new_org = Organization(**org_data.model_dump())
    db.add(new_org)
    await db.flush()

    db.add(Membership(
        user_id=admin.id,
        organization_id=new_org.id,
        role=MembershipRole.ADMIN.value,
        joined_at=datetime.now(),
    ))
    await db.flush()

    service = PermissionService(db)
    await service.create_default_roles(new_org.id, created_by=admin.id, commit=False)
    await service.create_default_templates(new_org.id, created_by=admin.id, commit=False)
    await db.commit()
    await db.refresh(new_org)

    log.info("Organization %s created by %s", new_org.id, admin.id)
    response = OrganizationResponse.model_validate(new_org)
    response.member_count = 1
    return response


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_user_organization)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization by ID (members only)."""
    response = OrganizationResponse.model_validate(organization)
    response.member_count = await _member_count(db, organization.id)
    return response


# Member management endpoints
@router.get("/{organization_id}/members", response_model=list[MembershipResponse])
async def list_members(
    organization_id: str,
    user: Annotated[User, Depends(require_organization_permission("organization.view"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List memberships of an organization."""
    result = await db.execute(
        select(Membership)
        .where(Membership.organization_id == organization_id)
        .order_by(Membership.joined_at)
    )
    return result.scalars().all()


@router.post("/{organization_id}/members", response_model=MembershipResponse, status_code=status.HTTP_201_CREATED)
async def add_member(
    organization_id: str,
    add_data: AddMemberRequest,
    user: Annotated[User, Depends(require_organization_permission("organization.manageMembers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to an organization with a primitive role and optional custom role."""
    await get_organization_by_id(organization_id, db)

    result = await db.execute(select(User).where(User.id == add_data.user_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    existing = await db.execute(
        select(Membership.id).where(
            Membership.organization_id == organization_id,
            Membership.user_id == add_data.user_id,
        )
    )
    if existing.first() is not None:
        raise ConflictError("User is already a member of this organization")

    if add_data.custom_role_id is not None:
        await PermissionService(db).get_custom_role_by_id(add_data.custom_role_id, organization_id)

    membership = Membership(
        user_id=add_data.user_id,
        organization_id=organization_id,
        role=add_data.role.value,
        custom_role_id=add_data.custom_role_id,
        joined_at=datetime.now(),
    )
    db.add(membership)
    await db.commit()
    await db.refresh(membership)

    log.info("User %s added to organization %s as %s", add_data.user_id, organization_id, membership.role)
    return membership


@router.patch("/{organization_id}/members/{user_id}", response_model=MembershipResponse)
async def update_member(
    organization_id: str,
    user_id: str,
    update_data: UpdateMemberRequest,
    user: Annotated[User, Depends(require_organization_permission("organization.manageMembers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a member's primitive role, custom role or status."""
    membership = await _get_membership(db, organization_id, user_id)

    update_dict = update_data.model_dump(exclude_unset=True)
    if update_dict.get("custom_role_id") is not None:
        await PermissionService(db).get_custom_role_by_id(update_dict["custom_role_id"], organization_id)

    if "custom_role_id" in update_dict:
        membership.custom_role_id = update_dict["custom_role_id"]
    if update_dict.get("role") is not None:
        membership.role = update_dict["role"].value
    if update_dict.get("status") is not None:
        membership.status = update_dict["status"].value

    await db.commit()
    await db.refresh(membership)

    log.info("Membership of %s in organization %s updated by %s", user_id, organization_id, user.id)
    return membership


@router.delete("/{organization_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    organization_id: str,
    user_id: str,
    user: Annotated[User, Depends(require_organization_permission("organization.manageMembers"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a user from an organization."""
    membership = await _get_membership(db, organization_id, user_id)
    await db.delete(membership)
    await db.commit()
    log.info("User %s removed from organization %s by %s", user_id, organization_id, user.id)
