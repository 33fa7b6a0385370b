"""
Permission checking utilities and dependencies.

Implements:
- Resource-level permission checks (membership, custom role, overrides)
- Organization-level checks against a member's base matrix
- FastAPI dependencies for route protection
"""
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Membership, MembershipRole, MembershipStatus
from app.features.permissions.defaults import get_default_permissions_for_role
from app.features.permissions.matrix import lookup_permission
from app.features.permissions.models import CustomRole
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Permission Resolution
# ============================================================================

async def get_active_membership(
    db: AsyncSession,
    user_id: str,
    organization_id: str
) -> Optional[Membership]:
    """Return the user's active membership in the organization, if any."""
    stmt = select(Membership).where(
        Membership.user_id == user_id,
        Membership.organization_id == organization_id,
        Membership.status == MembershipStatus.ACTIVE.value,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _load_custom_role(db: AsyncSession, membership: Membership) -> Optional[CustomRole]:
    if not membership.custom_role_id:
        return None
    stmt = select(CustomRole).where(
        CustomRole.id == membership.custom_role_id,
        CustomRole.organization_id == membership.organization_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


def resolve_permission(
    membership: Optional[Membership],
    custom_role: Optional[CustomRole],
    permission: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
) -> bool:
    """
    Decide a permission from already-loaded membership data.

    Order of precedence:
    1. No active membership denies
    2. Primitive admin role grants everything
    3. Without a custom role, the built-in matrix of the primitive role decides
    4. With a custom role, an override for the resource replaces the role's
       matrix entirely; otherwise the role's matrix decides
    """
    if membership is None or membership.status != MembershipStatus.ACTIVE.value:
        return False

    if membership.role == MembershipRole.ADMIN.value:
        return True

    if custom_role is None:
        return lookup_permission(get_default_permissions_for_role(membership.role), permission)

    if resource_type is not None and resource_id is not None:
        override = custom_role.get_override(resource_type, resource_id)
        if override is not None:
            return lookup_permission(override.permissions, permission)

    return lookup_permission(custom_role.permissions, permission)


async def check_resource_permission(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    resource_type: str,
    resource_id: str,
    permission: str
) -> bool:
    """
    Check if a user may perform ``permission`` on a resource.

    Never raises for unknown permissions or resource types; they are denied.

    Args:
        db: Database session
        user_id: User ID
        organization_id: Organization the resource belongs to
        resource_type: "project", "team" or "task"
        resource_id: Resource ID
        permission: Permission string such as "tasks.edit"

    Returns:
        True if the user has the permission, False otherwise
    """
    membership = await get_active_membership(db, user_id, organization_id)
    custom_role = await _load_custom_role(db, membership) if membership else None

    allowed = resolve_permission(membership, custom_role, permission, resource_type, resource_id)
    log.debug(
        "Permission %s on %s:%s for user %s in org %s: %s",
        permission, resource_type, resource_id, user_id, organization_id,
        "granted" if allowed else "denied",
    )
    return allowed


async def has_organization_permission(
    db: AsyncSession,
    user_id: str,
    organization_id: str,
    permission: str
) -> bool:
    """Check a permission against the member's base matrix, ignoring resource overrides."""
    membership = await get_active_membership(db, user_id, organization_id)
    custom_role = await _load_custom_role(db, membership) if membership else None

    allowed = resolve_permission(membership, custom_role, permission)
    log.debug(
        "Permission %s for user %s in org %s: %s",
        permission, user_id, organization_id, "granted" if allowed else "denied",
    )
    return allowed


# ============================================================================
# FastAPI Dependencies
# ============================================================================

async def require_membership(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
) -> Membership:
    """
    FastAPI dependency requiring an active membership in the path's organization.

    Raises:
        HTTPException: 403 if the user is not an active member
    """
    membership = await get_active_membership(db, current_user.id, organization_id)
    if membership is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization"
        )
    return membership


def require_organization_permission(permission: str):
    """
    FastAPI dependency to require an organization-level permission.

    The organization is taken from the ``organization_id`` path parameter.

    Usage:
        @router.post("/roles")
        async def create_role(
            organization_id: str,
            user: User = Depends(require_organization_permission("organization.manageRoles"))
        ):
            pass

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        HTTPException: 403 if user doesn't have permission
    """
    async def permission_dependency(
        organization_id: str,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        if not await has_organization_permission(db, current_user.id, organization_id, permission):
            log.info("User %s denied %s in org %s", current_user.id, permission, organization_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {permission}"
            )
        return current_user

    return permission_dependency


def require_resource_permission(resource_type: str, permission: str, resource_param: str = "resource_id"):
    """
    FastAPI dependency to require a permission on a specific resource.

    The resource id is read from the path parameter named ``resource_param``.

    Usage:
        @router.put("/tasks/{task_id}")
        async def update_task(
            organization_id: str,
            task_id: str,
            user: User = Depends(require_resource_permission("task", "tasks.edit", "task_id"))
        ):
            pass
    """
    async def permission_dependency(
        organization_id: str,
        request: Request,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user)
    ) -> User:
        resource_id = request.path_params.get(resource_param)
        if not resource_id or not await check_resource_permission(
            db, current_user.id, organization_id, resource_type, resource_id, permission
        ):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {permission} on {resource_type}"
            )
        return current_user

    return permission_dependency
