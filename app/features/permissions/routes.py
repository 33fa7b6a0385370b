"""
Permission management API routes.

Provides endpoints for managing an organization's custom roles, resource
overrides and permission templates, and for checking the caller's permission
on a resource. Mounted under /organizations/{organization_id}/permissions.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Membership
from app.features.users.models import User
from app.features.permissions.schemas import (
    RoleCreate,
    RoleUpdate,
    RoleResponse,
    CloneRoleRequest,
    DeleteRoleRequest,
    DeleteRoleResponse,
    ResourceOverrideSet,
    ResourceOverrideResponse,
    TemplateCreate,
    TemplateUpdate,
    TemplateResponse,
    ApplyTemplateRequest,
    ApplyTemplateResponse,
    PermissionCheckResponse,
)
from app.features.permissions.dependencies import (
    check_resource_permission,
    require_membership,
    require_organization_permission,
)
from app.features.permissions.service import PermissionService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

can_view = require_organization_permission("organization.view")
can_manage_roles = require_organization_permission("organization.manageRoles")


def get_permission_service(db: AsyncSession = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


# ============================================================================
# Role Routes
# ============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    organization_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_view)
):
    """List all roles of the organization, sorted by name."""
    return await service.get_organization_roles(organization_id)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    organization_id: str,
    role_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_view)
):
    """Get a specific role with its resource overrides."""
    return await service.get_custom_role_by_id(role_id, organization_id)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    organization_id: str,
    role: RoleCreate,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Create a custom role. Unspecified actions take their default values."""
    return await service.create_custom_role(
        organization_id,
        role.name,
        permissions=role.permissions,
        description=role.description,
        based_on=role.based_on,
        created_by=current_user.id,
    )


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    organization_id: str,
    role_id: str,
    role_update: RoleUpdate,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Update a custom role. Permissions are merged into the existing matrix."""
    return await service.update_custom_role(
        role_id,
        organization_id,
        role_update.model_dump(exclude_unset=True),
        updated_by=current_user.id,
    )


@router.delete("/roles/{role_id}", response_model=DeleteRoleResponse)
async def delete_role(
    organization_id: str,
    role_id: str,
    delete_request: Optional[DeleteRoleRequest] = None,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """
    Delete a custom role.

    Members holding the role must be reassigned by passing ``new_role_id``.
    """
    new_role_id = delete_request.new_role_id if delete_request else None
    reassigned = await service.delete_custom_role(role_id, organization_id, new_role_id)

    message = "Role deleted"
    if reassigned:
        message += f" and {reassigned} memberships reassigned"
    return DeleteRoleResponse(message=message, reassigned_members=reassigned)


@router.post("/roles/{role_id}/clone", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def clone_role(
    organization_id: str,
    role_id: str,
    clone_request: CloneRoleRequest,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Clone a role's permissions under a new name."""
    return await service.clone_role(role_id, organization_id, clone_request.name, created_by=current_user.id)


# ============================================================================
# Resource Override Routes
# ============================================================================

@router.put("/roles/{role_id}/resource-overrides", response_model=ResourceOverrideResponse)
async def set_resource_override(
    organization_id: str,
    role_id: str,
    override: ResourceOverrideSet,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Install or replace a role's permission override on a resource."""
    return await service.set_resource_permission_override(
        role_id,
        organization_id,
        override.resource_type,
        override.resource_id,
        override.permissions,
        user_id=current_user.id,
    )


@router.delete(
    "/roles/{role_id}/resource-overrides/{resource_type}/{resource_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_resource_override(
    organization_id: str,
    role_id: str,
    resource_type: str,
    resource_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Remove a role's permission override on a resource. Missing overrides are ignored."""
    await service.remove_resource_permission_override(
        role_id, organization_id, resource_type, resource_id, user_id=current_user.id
    )


# ============================================================================
# Template Routes
# ============================================================================

@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    organization_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_view)
):
    """List all permission templates of the organization, sorted by name."""
    return await service.get_permission_templates(organization_id)


@router.get("/templates/{template_id}", response_model=TemplateResponse)
async def get_template(
    organization_id: str,
    template_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_view)
):
    """Get a specific permission template."""
    return await service.get_permission_template_by_id(template_id, organization_id)


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    organization_id: str,
    template: TemplateCreate,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Create a permission template."""
    return await service.create_permission_template(
        organization_id,
        template.name,
        permissions=template.permissions,
        description=template.description,
        applicable_resource_types=[t.value for t in template.applicable_resource_types],
        created_by=current_user.id,
    )


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    organization_id: str,
    template_id: str,
    template_update: TemplateUpdate,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Update a permission template. Permissions are merged into the existing mask."""
    update_data = template_update.model_dump(exclude_unset=True, mode="json")
    return await service.update_permission_template(
        template_id, organization_id, update_data, updated_by=current_user.id
    )


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    organization_id: str,
    template_id: str,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Delete a permission template. Default templates cannot be deleted."""
    await service.delete_permission_template(template_id, organization_id)


@router.post("/templates/{template_id}/apply", response_model=ApplyTemplateResponse)
async def apply_template(
    organization_id: str,
    template_id: str,
    apply_request: ApplyTemplateRequest,
    service: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(can_manage_roles)
):
    """Apply a template to a resource for every role in the organization."""
    overrides = await service.apply_permission_template(
        organization_id,
        template_id,
        apply_request.resource_type,
        apply_request.resource_id,
        user_id=current_user.id,
    )
    return ApplyTemplateResponse(
        template_id=template_id,
        resource_type=apply_request.resource_type.value,
        resource_id=apply_request.resource_id,
        overrides=[ResourceOverrideResponse.model_validate(o) for o in overrides],
    )


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    organization_id: str,
    resource_type: str = Query(..., description="Resource type"),
    resource_id: str = Query(..., description="Resource ID"),
    permission: str = Query(..., description="Permission string such as tasks.edit"),
    db: AsyncSession = Depends(get_db),
    membership: Membership = Depends(require_membership)
):
    """Check whether the caller has a permission on a resource."""
    allowed = await check_resource_permission(
        db, membership.user_id, organization_id, resource_type, resource_id, permission
    )
    return PermissionCheckResponse(
        resource_type=resource_type,
        resource_id=resource_id,
        permission=permission,
        has_permission=allowed,
    )
