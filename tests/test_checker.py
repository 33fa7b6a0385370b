"""Tests for resource permission checks."""

from __future__ import annotations

import pytest

from app.features.permissions.dependencies import check_resource_permission, has_organization_permission
from app.features.permissions.service import PermissionService


async def test_no_membership_denies(db, factory) -> None:
    org = await factory.organization()
    task = await factory.task(await factory.project(org))
    outsider = await factory.user()

    assert await check_resource_permission(db, outsider.id, org.id, "task", task.id, "tasks.view") is False


@pytest.mark.parametrize("status", ["inactive", "suspended"])
async def test_inactive_membership_denies(db, factory, status) -> None:
    org = await factory.organization()
    task = await factory.task(await factory.project(org))
    user = await factory.user()
    await factory.membership(user, org, role="admin", status=status)

    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.view") is False


@pytest.mark.parametrize(
    "resource_type, permission",
    [
        ("task", "tasks.delete"),
        ("project", "organization.manageBilling"),
        ("team", "teams.delete"),
        ("note", "tasks.edit"),
        ("task", "not-a-permission"),
        ("task", "notes.view"),
    ],
)
async def test_admin_bypass(db, factory, resource_type, permission) -> None:
    org = await factory.organization()
    service = PermissionService(db)
    guest = next(r for r in await service.get_organization_roles(org.id) if r.name == "Guest")
    user = await factory.user()
    await factory.membership(user, org, role="admin", custom_role_id=guest.id)

    assert await check_resource_permission(db, user.id, org.id, resource_type, "anything", permission) is True


async def test_primitive_roles_use_builtin_matrices(db, factory) -> None:
    org = await factory.organization()
    task = await factory.task(await factory.project(org))
    member = await factory.user()
    viewer = await factory.user()
    await factory.membership(member, org, role="member")
    await factory.membership(viewer, org, role="viewer")

    assert await check_resource_permission(db, member.id, org.id, "task", task.id, "tasks.edit") is True
    assert await check_resource_permission(db, member.id, org.id, "task", task.id, "tasks.delete") is False
    assert await check_resource_permission(db, viewer.id, org.id, "task", task.id, "tasks.view") is True
    assert await check_resource_permission(db, viewer.id, org.id, "task", task.id, "tasks.edit") is False


async def test_unknown_primitive_role_grants_nothing(db, factory) -> None:
    org = await factory.organization()
    task = await factory.task(await factory.project(org))
    user = await factory.user()
    await factory.membership(user, org, role="manager")

    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.view") is False


async def test_custom_role_base_matrix(db, factory) -> None:
    org = await factory.organization()
    task = await factory.task(await factory.project(org))
    service = PermissionService(db)
    role = await service.create_custom_role(org.id, "Closer", permissions={"tasks": {"delete": True}})
    user = await factory.user()
    await factory.membership(user, org, custom_role_id=role.id)

    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.delete") is True
    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.reassign") is False
    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.bogus") is False


async def test_override_shadows_base_matrix(db, factory) -> None:
    org = await factory.organization()
    project = await factory.project(org)
    task = await factory.task(project)
    other_task = await factory.task(project, "Other")
    service = PermissionService(db)
    role = await service.create_custom_role(org.id, "Contractor")
    user = await factory.user()
    await factory.membership(user, org, custom_role_id=role.id)

    await service.set_resource_permission_override(role.id, org.id, "task", task.id, {"tasks": {"edit": True}})

    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.edit") is True
    # Absent from the override, so denied even though the base matrix grants it
    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.view") is False

    await service.update_custom_role(role.id, org.id, {"permissions": {"tasks": {"edit": False, "view": True}}})

    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.edit") is True
    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.view") is False
    assert await check_resource_permission(db, user.id, org.id, "task", other_task.id, "tasks.edit") is False
    assert await check_resource_permission(db, user.id, org.id, "task", other_task.id, "tasks.view") is True


async def test_applied_template_restricts_only_that_resource(db, factory) -> None:
    org = await factory.organization()
    project = await factory.project(org)
    task = await factory.task(project)
    other_task = await factory.task(project, "Other")
    service = PermissionService(db)
    role = await service.create_custom_role(org.id, "Writer", permissions={"tasks": {"edit": True}})
    template = await service.create_permission_template(
        org.id, "Frozen Task", permissions={"tasks": {"edit": False}}, applicable_resource_types=["task"]
    )
    user = await factory.user()
    await factory.membership(user, org, custom_role_id=role.id)

    await service.apply_permission_template(org.id, template.id, "task", task.id)

    role = await service.get_custom_role_by_id(role.id, org.id)
    override = role.get_override("task", task.id)
    assert override is not None
    assert override.permissions["tasks"]["edit"] is False
    assert await check_resource_permission(db, user.id, org.id, "task", task.id, "tasks.edit") is False
    assert await check_resource_permission(db, user.id, org.id, "task", other_task.id, "tasks.edit") is True


async def test_check_is_scoped_to_organization(db, factory) -> None:
    org = await factory.organization("Acme")
    other = await factory.organization("Globex")
    task = await factory.task(await factory.project(other))
    user = await factory.user()
    await factory.membership(user, org, role="admin")

    assert await check_resource_permission(db, user.id, other.id, "task", task.id, "tasks.view") is False


async def test_organization_permission_ignores_overrides(db, factory) -> None:
    org = await factory.organization()
    project = await factory.project(org)
    service = PermissionService(db)
    role = await service.create_custom_role(org.id, "Contractor", permissions={"organization": {"manageRoles": True}})
    user = await factory.user()
    await factory.membership(user, org, custom_role_id=role.id)
    await service.set_resource_permission_override(role.id, org.id, "project", project.id, {})

    assert await has_organization_permission(db, user.id, org.id, "organization.manageRoles") is True
    assert await has_organization_permission(db, user.id, org.id, "organization.manageMembers") is False
