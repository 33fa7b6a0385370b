"""
Role, template and resource override management.

Every mutating method runs in the caller's session and commits exactly once,
so multi-row changes (membership reassignment, applying a template to every
role) land atomically. Integrity violations surface as ConflictError.

Usage:
    service = PermissionService(db)
    await service.create_default_roles(org.id, created_by=user.id)
    role = await service.create_custom_role(org.id, "Reviewer", permissions={"tasks": {"edit": False}})
"""
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, InvalidDataError, NotFoundError
from app.features.organizations.models import Membership
from app.features.permissions.defaults import DEFAULT_TEMPLATES, DEFAULT_TEMPLATE_RESOURCE_TYPES, SYSTEM_ROLES
from app.features.permissions.matrix import (
    PermissionMatrix,
    RoleArchetype,
    calculate_effective_permissions,
    clone_permissions,
    merge_permissions,
    normalize_permissions,
)
from app.features.permissions.models import CustomRole, PermissionTemplate, ResourcePermissionOverride
from app.features.permissions.resources import parse_resource_type, validate_resource
from app.utils import get_logger


log = get_logger(__name__)


def _parse_archetype(value: Any) -> RoleArchetype:
    try:
        return RoleArchetype(value)
    except ValueError:
        raise InvalidDataError(f"Invalid role archetype: {value!r}") from None


def _parse_resource_types(values: Optional[List[str]]) -> List[str]:
    """Validate a list of resource types, dropping duplicates but keeping order."""
    parsed: List[str] = []
    for value in values or []:
        resource_type = parse_resource_type(value).value
        if resource_type not in parsed:
            parsed.append(resource_type)
    return parsed


class PermissionService:
    """
    Lifecycle operations for custom roles, resource overrides and templates.

    All lookups are scoped to an organization; an id from another organization
    behaves exactly like a missing id.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _commit(self, conflict_message: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            log.warning("%s (%s)", conflict_message, e.orig)
            raise ConflictError(conflict_message) from e

    # ========================================================================
    # Roles
    # ========================================================================

    async def get_organization_roles(self, organization_id: str) -> List[CustomRole]:
        """List every role of an organization, sorted by name."""
        stmt = (
            select(CustomRole)
            .where(CustomRole.organization_id == organization_id)
            .order_by(CustomRole.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_custom_role_by_id(self, role_id: str, organization_id: str) -> CustomRole:
        """
        Raises:
            NotFoundError: if the role does not exist in the organization
        """
        stmt = select(CustomRole).where(
            CustomRole.id == role_id,
            CustomRole.organization_id == organization_id,
        )
        role = (await self.db.execute(stmt)).scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def _role_name_taken(self, organization_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(CustomRole.id).where(
            CustomRole.organization_id == organization_id,
            CustomRole.name == name,
        )
        if exclude_id is not None:
            stmt = stmt.where(CustomRole.id != exclude_id)
        return (await self.db.execute(stmt)).first() is not None

    async def create_default_roles(
        self,
        organization_id: str,
        created_by: Optional[str] = None,
        commit: bool = True,
    ) -> List[CustomRole]:
        """
        Seed the Administrator, Manager, Member and Guest system roles.

        Safe to call repeatedly: names that already exist are skipped. With
        ``commit=False`` the roles are only flushed, leaving the commit to the
        caller.

        Returns:
            The roles created by this call
        """
        existing = {role.name: role for role in await self.get_organization_roles(organization_id)}
        created: List[CustomRole] = []

        for definition in SYSTEM_ROLES:
            current = existing.get(definition["name"])
            if current is not None:
                if not current.is_system_role:
                    log.warning(
                        "Organization %s has a custom role named %r; not seeding the system role",
                        organization_id, definition["name"],
                    )
                continue

            role = CustomRole(
                organization_id=organization_id,
                name=definition["name"],
                description=definition["description"],
                is_system_role=True,
                based_on=definition["based_on"],
                permissions=clone_permissions(definition["permissions"]),
                resource_permission_overrides=[],
                created_by_id=created_by,
                updated_by_id=created_by,
            )
            self.db.add(role)
            created.append(role)

        if created:
            if commit:
                await self._commit("Default roles already exist")
            else:
                await self.db.flush()
            for role in created:
                await self.db.refresh(role)
            log.info("Seeded %d system roles for organization %s", len(created), organization_id)

        return created

    async def create_custom_role(
        self,
        organization_id: str,
        name: str,
        permissions: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
        based_on: RoleArchetype | str = RoleArchetype.CUSTOM,
        created_by: Optional[str] = None,
    ) -> CustomRole:
        """
        Create a non-system role. Actions missing from ``permissions`` get their defaults.

        Raises:
            ConflictError: a role with this name already exists in the organization
            InvalidDataError: the matrix or archetype is invalid
        """
        matrix = normalize_permissions(permissions)
        archetype = _parse_archetype(based_on)

        if await self._role_name_taken(organization_id, name):
            raise ConflictError(f"A role named {name!r} already exists")

        role = CustomRole(
            organization_id=organization_id,
            name=name,
            description=description,
            is_system_role=False,
            based_on=archetype,
            permissions=matrix,
            resource_permission_overrides=[],
            created_by_id=created_by,
            updated_by_id=created_by,
        )
        self.db.add(role)
        await self._commit(f"A role named {name!r} already exists")
        await self.db.refresh(role)

        log.info("Created role %s (%r) in organization %s", role.id, role.name, organization_id)
        return role

    async def update_custom_role(
        self,
        role_id: str,
        organization_id: str,
        updates: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> CustomRole:
        """
        Update a non-system role.

        ``permissions`` is merged into the current matrix one category at a
        time; ``name``, ``description`` and ``based_on`` are replaced.

        Raises:
            NotFoundError: unknown role
            ConflictError: system role, or the new name is already taken
        """
        role = await self.get_custom_role_by_id(role_id, organization_id)
        if role.is_system_role:
            log.warning("Refusing to modify system role %s", role.id)
            raise ConflictError("System roles cannot be modified")

        # Validate every field before assigning any
        name = updates.get("name")
        if name is not None and name != role.name:
            if await self._role_name_taken(organization_id, name, exclude_id=role.id):
                raise ConflictError(f"A role named {name!r} already exists")
        archetype = _parse_archetype(updates["based_on"]) if updates.get("based_on") is not None else None
        partial = (
            normalize_permissions(updates["permissions"], partial=True)
            if updates.get("permissions") is not None
            else None
        )

        if name is not None:
            role.name = name
        if "description" in updates:
            role.description = updates["description"]
        if archetype is not None:
            role.based_on = archetype
        if partial is not None:
            role.permissions = merge_permissions(role.permissions, partial)

        role.updated_by_id = updated_by
        await self._commit(f"A role named {role.name!r} already exists")
        await self.db.refresh(role)

        log.info("Updated role %s in organization %s", role.id, organization_id)
        return role

    async def delete_custom_role(
        self,
        role_id: str,
        organization_id: str,
        new_role_id: Optional[str] = None,
    ) -> int:
        """
        Delete a non-system role together with its resource overrides.

        Memberships holding the role must be moved to ``new_role_id``; they take
        its id and its archetype as their primitive role.

        Returns:
            Number of memberships reassigned

        Raises:
            NotFoundError: unknown role or replacement role
            ConflictError: system role, or the role is in use and no replacement was given
        """
        role = await self.get_custom_role_by_id(role_id, organization_id)
        if role.is_system_role:
            log.warning("Refusing to delete system role %s", role.id)
            raise ConflictError("System roles cannot be deleted")

        count_stmt = select(func.count()).select_from(Membership).where(
            Membership.organization_id == organization_id,
            Membership.custom_role_id == role.id,
        )
        member_count = (await self.db.execute(count_stmt)).scalar_one()

        new_role: Optional[CustomRole] = None
        if new_role_id is not None:
            if new_role_id == role.id:
                raise InvalidDataError("Replacement role must differ from the role being deleted")
            try:
                new_role = await self.get_custom_role_by_id(new_role_id, organization_id)
            except NotFoundError:
                raise NotFoundError("Replacement role not found") from None

        if member_count > 0:
            if new_role is None:
                raise ConflictError(
                    f"This role is assigned to {member_count} members. Please provide a replacement role.",
                    details={"member_count": member_count},
                )
            await self.db.execute(
                update(Membership)
                .where(
                    Membership.organization_id == organization_id,
                    Membership.custom_role_id == role.id,
                )
                .values(custom_role_id=new_role.id, role=new_role.based_on.value)
            )

        await self.db.delete(role)
        await self._commit("Role could not be deleted")

        log.info(
            "Deleted role %s from organization %s, %d memberships reassigned",
            role_id, organization_id, member_count,
        )
        return member_count

    async def clone_role(
        self,
        source_role_id: str,
        organization_id: str,
        new_name: str,
        created_by: Optional[str] = None,
    ) -> CustomRole:
        """
        Copy a role's base matrix and archetype under a new name.

        Resource overrides are not copied.
        """
        source = await self.get_custom_role_by_id(source_role_id, organization_id)
        return await self.create_custom_role(
            organization_id,
            new_name,
            permissions=clone_permissions(source.permissions),
            description=f"Clone of {source.name}",
            based_on=source.based_on,
            created_by=created_by,
        )

    # ========================================================================
    # Resource overrides
    # ========================================================================

    @staticmethod
    def _upsert_override(
        role: CustomRole,
        resource_type: str,
        resource_id: str,
        permissions: PermissionMatrix,
    ) -> ResourcePermissionOverride:
        override = role.get_override(resource_type, resource_id)
        if override is None:
            override = ResourcePermissionOverride(
                resource_type=resource_type,
                resource_id=resource_id,
                permissions=permissions,
            )
            role.resource_permission_overrides.append(override)
        else:
            override.permissions = permissions
        return override

    async def set_resource_permission_override(
        self,
        role_id: str,
        organization_id: str,
        resource_type: str,
        resource_id: str,
        permissions: Mapping[str, Any],
        user_id: Optional[str] = None,
    ) -> ResourcePermissionOverride:
        """
        Install or replace the override of a role on one resource.

        The given matrix is stored as-is (sparse); checks against this
        resource consult only the override from then on.

        Raises:
            NotFoundError: unknown role, or the resource is not in the organization
            ConflictError: the role is a system role
            InvalidDataError: unknown resource type or invalid matrix
        """
        role = await self.get_custom_role_by_id(role_id, organization_id)
        if role.is_system_role:
            log.warning("Refusing to override permissions of system role %s", role.id)
            raise ConflictError("System roles cannot have resource overrides")

        parsed = await validate_resource(self.db, resource_type, resource_id, organization_id)
        matrix = normalize_permissions(permissions, partial=True)

        override = self._upsert_override(role, parsed.value, resource_id, matrix)
        role.updated_by_id = user_id
        await self._commit("Resource override was modified concurrently, retry the request")
        await self.db.refresh(role)

        log.info("Set override for role %s on %s:%s", role.id, parsed.value, resource_id)
        return override

    async def remove_resource_permission_override(
        self,
        role_id: str,
        organization_id: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
    ) -> bool:
        """
        Remove the override of a role on one resource.

        Returns:
            True if an override was removed, False if there was none

        Raises:
            NotFoundError: unknown role
            ConflictError: the role is a system role
        """
        role = await self.get_custom_role_by_id(role_id, organization_id)
        if role.is_system_role:
            log.warning("Refusing to remove an override of system role %s", role.id)
            raise ConflictError("System roles cannot have resource overrides removed")
        parsed = parse_resource_type(resource_type)

        override = role.get_override(parsed.value, resource_id)
        if override is None:
            return False

        role.resource_permission_overrides.remove(override)
        role.updated_by_id = user_id
        await self._commit("Resource override could not be removed")
        await self.db.refresh(role)

        log.info("Removed override for role %s on %s:%s", role.id, parsed.value, resource_id)
        return True

    async def apply_permission_template(
        self,
        organization_id: str,
        template_id: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[str] = None,
    ) -> List[ResourcePermissionOverride]:
        """
        Restrict every role of the organization on one resource with a template.

        For each role (system roles included) the effective matrix is computed
        from the role's base permissions and stored as its override for the
        resource. Re-applying the same template gives the same overrides.

        Raises:
            NotFoundError: unknown template, or the resource is not in the organization
            InvalidDataError: the template does not apply to this resource type
        """
        template = await self.get_permission_template_by_id(template_id, organization_id)
        parsed = parse_resource_type(resource_type)

        if not template.is_applicable_to(parsed.value):
            raise InvalidDataError(f"Template {template.name!r} is not applicable to {parsed.value} resources")

        await validate_resource(self.db, parsed, resource_id, organization_id)

        roles = await self.get_organization_roles(organization_id)
        overrides: List[ResourcePermissionOverride] = []
        for role in roles:
            effective = calculate_effective_permissions(role.permissions, template.permissions, role.based_on)
            overrides.append(self._upsert_override(role, parsed.value, resource_id, effective))
            role.updated_by_id = user_id

        await self._commit("Resource override was modified concurrently, retry the request")
        for role in roles:
            await self.db.refresh(role)

        log.info(
            "Applied template %s to %s:%s for %d roles in organization %s",
            template.id, parsed.value, resource_id, len(roles), organization_id,
        )
        return overrides

    # ========================================================================
    # Templates
    # ========================================================================

    async def get_permission_templates(self, organization_id: str) -> List[PermissionTemplate]:
        """List every template of an organization, sorted by name."""
        stmt = (
            select(PermissionTemplate)
            .where(PermissionTemplate.organization_id == organization_id)
            .order_by(PermissionTemplate.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_permission_template_by_id(self, template_id: str, organization_id: str) -> PermissionTemplate:
        """
        Raises:
            NotFoundError: if the template does not exist in the organization
        """
        stmt = select(PermissionTemplate).where(
            PermissionTemplate.id == template_id,
            PermissionTemplate.organization_id == organization_id,
        )
        template = (await self.db.execute(stmt)).scalar_one_or_none()
        if template is None:
            raise NotFoundError("Template not found")
        return template

    async def _template_name_taken(self, organization_id: str, name: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(PermissionTemplate.id).where(
            PermissionTemplate.organization_id == organization_id,
            PermissionTemplate.name == name,
        )
        if exclude_id is not None:
            stmt = stmt.where(PermissionTemplate.id != exclude_id)
        return (await self.db.execute(stmt)).first() is not None

    async def create_default_templates(
        self,
        organization_id: str,
        created_by: Optional[str] = None,
        commit: bool = True,
    ) -> List[PermissionTemplate]:
        """
        Seed the Full Access, Edit Access and View Only templates.

        Safe to call repeatedly: templates whose name already exists are skipped.
        ``commit=False`` flushes instead of committing.

        Returns:
            The templates created by this call
        """
        existing = {template.name for template in await self.get_permission_templates(organization_id)}
        created: List[PermissionTemplate] = []

        for definition in DEFAULT_TEMPLATES:
            if definition["name"] in existing:
                continue
            template = PermissionTemplate(
                organization_id=organization_id,
                name=definition["name"],
                description=definition["description"],
                is_default=True,
                permissions=clone_permissions(definition["permissions"]),
                applicable_resource_types=list(DEFAULT_TEMPLATE_RESOURCE_TYPES),
                created_by_id=created_by,
                updated_by_id=created_by,
            )
            self.db.add(template)
            created.append(template)

        if created:
            if commit:
                await self._commit("Default templates already exist")
            else:
                await self.db.flush()
            for template in created:
                await self.db.refresh(template)
            log.info("Seeded %d default templates for organization %s", len(created), organization_id)

        return created

    async def create_permission_template(
        self,
        organization_id: str,
        name: str,
        permissions: Optional[Mapping[str, Any]] = None,
        description: Optional[str] = None,
        applicable_resource_types: Optional[List[str]] = None,
        created_by: Optional[str] = None,
    ) -> PermissionTemplate:
        """
        Create a template. The mask keeps only the entries given.

        Raises:
            ConflictError: a template with this name already exists in the organization
        """
        mask = normalize_permissions(permissions, partial=True)
        resource_types = _parse_resource_types(applicable_resource_types)

        if await self._template_name_taken(organization_id, name):
            raise ConflictError(f"A template named {name!r} already exists")

        template = PermissionTemplate(
            organization_id=organization_id,
            name=name,
            description=description,
            is_default=False,
            permissions=mask,
            applicable_resource_types=resource_types,
            created_by_id=created_by,
            updated_by_id=created_by,
        )
        self.db.add(template)
        await self._commit(f"A template named {name!r} already exists")
        await self.db.refresh(template)

        log.info("Created template %s (%r) in organization %s", template.id, template.name, organization_id)
        return template

    async def update_permission_template(
        self,
        template_id: str,
        organization_id: str,
        updates: Mapping[str, Any],
        updated_by: Optional[str] = None,
    ) -> PermissionTemplate:
        """
        Update a template.

        ``permissions`` is merged into the current mask; ``name``,
        ``description`` and ``applicable_resource_types`` are replaced. The
        default flag cannot be changed. A ``None`` value leaves a field as it is,
        except for ``description``.
        """
        template = await self.get_permission_template_by_id(template_id, organization_id)

        name = updates.get("name")
        if name is not None and name != template.name:
            if await self._template_name_taken(organization_id, name, exclude_id=template.id):
                raise ConflictError(f"A template named {name!r} already exists")
        resource_types = (
            _parse_resource_types(updates["applicable_resource_types"])
            if updates.get("applicable_resource_types") is not None
            else None
        )
        partial = (
            normalize_permissions(updates["permissions"], partial=True)
            if updates.get("permissions") is not None
            else None
        )

        if name is not None:
            template.name = name
        if "description" in updates:
            template.description = updates["description"]
        if resource_types is not None:
            template.applicable_resource_types = resource_types
        if partial is not None:
            template.permissions = merge_permissions(template.permissions, partial)

        template.updated_by_id = updated_by
        await self._commit(f"A template named {template.name!r} already exists")
        await self.db.refresh(template)

        log.info("Updated template %s in organization %s", template.id, organization_id)
        return template

    async def delete_permission_template(self, template_id: str, organization_id: str) -> None:
        """
        Raises:
            NotFoundError: unknown template
            ConflictError: the template is a default template
        """
        template = await self.get_permission_template_by_id(template_id, organization_id)
        if template.is_default:
            log.warning("Refusing to delete default template %s", template.id)
            raise ConflictError("Default templates cannot be deleted")

        await self.db.delete(template)
        await self._commit("Template could not be deleted")
        log.info("Deleted template %s from organization %s", template_id, organization_id)


def summarize_roles(roles: List[CustomRole]) -> Dict[str, int]:
    """Count roles by kind, used for seeding reports."""
    system = sum(1 for role in roles if role.is_system_role)
    return {"system": system, "custom": len(roles) - system}
