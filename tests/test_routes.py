"""HTTP tests for the organization and permission routes."""

from __future__ import annotations

import jwt
import pytest
from fastapi import APIRouter, Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.core import config
from app.core.database.engine import get_db
from app.features.organizations.models import Organization
from app.features.permissions.dependencies import require_resource_permission
from app.features.permissions.models import CustomRole
from app.features.permissions.service import PermissionService
from app.features.users.auth import create_access_token
from app.main import app


def _base(org_id: str) -> str:
    return f"/organizations/{org_id}/permissions"


@pytest.fixture
async def seeded(db, factory):
    """An organization with an admin, a plain member and a project."""
    org = await factory.organization()
    admin = await factory.user("Alice Admin")
    member = await factory.user("Bob Member")
    await factory.membership(admin, org, role="admin")
    await factory.membership(member, org, role="member")
    project = await factory.project(org)
    return {"org": org, "admin": admin, "member": member, "project": project}


class TestAuthentication:
    async def test_missing_token_is_rejected(self, client, seeded) -> None:
        response = await client.get(f"{_base(seeded['org'].id)}/roles")
        assert response.status_code in (401, 403)

    async def test_expired_token_is_rejected(self, client, seeded) -> None:
        admin = seeded["admin"]
        token = create_access_token(admin.id, admin.email, admin.name, exp_minutes=-1)

        response = await client.get(
            f"{_base(seeded['org'].id)}/roles", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Token has expired"

    async def test_token_with_wrong_secret_is_rejected(self, client, seeded) -> None:
        token = jwt.encode({"sub": seeded["admin"].id}, "wrong-secret", algorithm=config.JWT_ALGORITHM)

        response = await client.get(
            f"{_base(seeded['org'].id)}/roles", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401

    async def test_unknown_subject_is_created_on_first_sight(self, client, seeded) -> None:
        token = create_access_token("01HNEWUSERNEWUSERNEWUSER00", "new@example.com", "New User")

        response = await client.get(
            f"/organizations/{seeded['org'].id}", headers={"Authorization": f"Bearer {token}"}
        )

        # Created, but not a member
        assert response.status_code == 403


class TestOrganizations:
    async def test_platform_admin_creates_seeded_organization(self, client, factory, auth_headers) -> None:
        creator = await factory.user("Root", is_admin=True)

        response = await client.post("/organizations/", json={"name": "Initech"}, headers=auth_headers(creator))
        assert response.status_code == 201
        org = response.json()
        assert org["member_count"] == 1

        roles = await client.get(f"{_base(org['id'])}/roles", headers=auth_headers(creator))
        templates = await client.get(f"{_base(org['id'])}/templates", headers=auth_headers(creator))
        assert [r["name"] for r in roles.json()] == ["Administrator", "Guest", "Manager", "Member"]
        assert [t["name"] for t in templates.json()] == ["Edit Access", "Full Access", "View Only"]

    async def test_failed_seeding_rolls_back_organization(
        self, client, db, factory, auth_headers, monkeypatch
    ) -> None:
        creator = await factory.user("Root", is_admin=True)

        async def broken_seed(self, organization_id, created_by=None, commit=True):
            raise RuntimeError("seeding failed")

        monkeypatch.setattr(PermissionService, "create_default_templates", broken_seed)
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as failing_client:
            response = await failing_client.post(
                "/organizations/", json={"name": "Half Made"}, headers=auth_headers(creator)
            )

        assert response.status_code == 500
        orgs = (await db.execute(select(Organization).where(Organization.name == "Half Made"))).scalars().all()
        roles = (await db.execute(select(CustomRole))).scalars().all()
        assert orgs == []
        assert roles == []

    async def test_regular_user_cannot_create_organization(self, client, seeded, auth_headers) -> None:
        response = await client.post("/organizations/", json={"name": "Nope"}, headers=auth_headers(seeded["member"]))
        assert response.status_code == 403

    async def test_get_organization_counts_members(self, client, seeded, auth_headers) -> None:
        response = await client.get(f"/organizations/{seeded['org'].id}", headers=auth_headers(seeded["member"]))
        assert response.status_code == 200
        assert response.json()["member_count"] == 2

    async def test_member_management(self, client, seeded, factory, auth_headers) -> None:
        org_id = seeded["org"].id
        newcomer = await factory.user("Carol")
        headers = auth_headers(seeded["admin"])
        roles = (await client.get(f"{_base(org_id)}/roles", headers=headers)).json()
        manager_id = next(r["id"] for r in roles if r["name"] == "Manager")

        added = await client.post(
            f"/organizations/{org_id}/members",
            json={"user_id": newcomer.id, "role": "member", "custom_role_id": manager_id},
            headers=headers,
        )
        assert added.status_code == 201
        assert added.json()["custom_role_id"] == manager_id

        duplicate = await client.post(f"/organizations/{org_id}/members", json={"user_id": newcomer.id}, headers=headers)
        assert duplicate.status_code == 409

        patched = await client.patch(
            f"/organizations/{org_id}/members/{newcomer.id}",
            json={"custom_role_id": None, "status": "suspended"},
            headers=headers,
        )
        assert patched.status_code == 200
        assert patched.json()["custom_role_id"] is None
        assert patched.json()["status"] == "suspended"

        removed = await client.delete(f"/organizations/{org_id}/members/{newcomer.id}", headers=headers)
        assert removed.status_code == 204

    async def test_member_cannot_manage_members(self, client, seeded, factory, auth_headers) -> None:
        newcomer = await factory.user("Dave")
        response = await client.post(
            f"/organizations/{seeded['org'].id}/members",
            json={"user_id": newcomer.id},
            headers=auth_headers(seeded["member"]),
        )
        assert response.status_code == 403

    async def test_add_member_with_foreign_custom_role(self, client, seeded, factory, auth_headers) -> None:
        other = await factory.organization("Globex")
        foreign_role = await PermissionService(factory.db).create_custom_role(other.id, "Outsider")
        newcomer = await factory.user("Eve")

        response = await client.post(
            f"/organizations/{seeded['org'].id}/members",
            json={"user_id": newcomer.id, "custom_role_id": foreign_role.id},
            headers=auth_headers(seeded["admin"]),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestRoleRoutes:
    async def test_member_can_view_but_not_manage_roles(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["member"])
        base = _base(seeded["org"].id)

        assert (await client.get(f"{base}/roles", headers=headers)).status_code == 200
        response = await client.post(f"{base}/roles", json={"name": "Sneaky"}, headers=headers)
        assert response.status_code == 403

    async def test_non_member_cannot_view_roles(self, client, seeded, factory, auth_headers) -> None:
        outsider = await factory.user("Mallory")
        response = await client.get(f"{_base(seeded['org'].id)}/roles", headers=auth_headers(outsider))
        assert response.status_code == 403

    async def test_role_crud(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["admin"])
        base = _base(seeded["org"].id)

        created = await client.post(
            f"{base}/roles",
            json={"name": "Reviewer", "based_on": "member", "permissions": {"tasks": {"edit": False}}},
            headers=headers,
        )
        assert created.status_code == 201
        role = created.json()
        assert role["permissions"]["tasks"]["edit"] is False
        assert role["permissions"]["tasks"]["view"] is True
        assert role["created_by_id"] == seeded["admin"].id

        fetched = await client.get(f"{base}/roles/{role['id']}", headers=headers)
        assert fetched.json()["name"] == "Reviewer"

        updated = await client.put(
            f"{base}/roles/{role['id']}",
            json={"description": "Reviews work", "permissions": {"reports": {"export": True}}},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["description"] == "Reviews work"
        assert updated.json()["permissions"]["reports"]["export"] is True
        assert updated.json()["permissions"]["tasks"]["edit"] is False

        cloned = await client.post(f"{base}/roles/{role['id']}/clone", json={"name": "Reviewer 2"}, headers=headers)
        assert cloned.status_code == 201
        assert cloned.json()["description"] == "Clone of Reviewer"

        deleted = await client.delete(f"{base}/roles/{role['id']}", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json() == {"message": "Role deleted", "reassigned_members": 0}
        assert (await client.get(f"{base}/roles/{role['id']}", headers=headers)).status_code == 404

    async def test_invalid_matrix_is_a_validation_error(self, client, seeded, auth_headers) -> None:
        response = await client.post(
            f"{_base(seeded['org'].id)}/roles",
            json={"name": "Broken", "permissions": {"notes": {"view": True}}},
            headers=auth_headers(seeded["admin"]),
        )
        assert response.status_code == 400
        assert "permissions" in response.json()

    async def test_duplicate_role_name_conflicts(self, client, seeded, auth_headers) -> None:
        response = await client.post(
            f"{_base(seeded['org'].id)}/roles", json={"name": "Manager"}, headers=auth_headers(seeded["admin"])
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    async def test_system_role_update_conflicts(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["admin"])
        base = _base(seeded["org"].id)
        roles = (await client.get(f"{base}/roles", headers=headers)).json()
        guest_id = next(r["id"] for r in roles if r["name"] == "Guest")

        response = await client.put(f"{base}/roles/{guest_id}", json={"description": "x"}, headers=headers)
        assert response.status_code == 409

    async def test_delete_role_in_use(self, client, seeded, factory, auth_headers) -> None:
        org = seeded["org"]
        headers = auth_headers(seeded["admin"])
        base = _base(org.id)
        role = (await client.post(f"{base}/roles", json={"name": "Contractor"}, headers=headers)).json()
        for _ in range(3):
            await factory.membership(await factory.user(), org, custom_role_id=role["id"])
        roles = (await client.get(f"{base}/roles", headers=headers)).json()
        guest = next(r for r in roles if r["name"] == "Guest")

        refused = await client.delete(f"{base}/roles/{role['id']}", headers=headers)
        assert refused.status_code == 409
        assert refused.json()["member_count"] == 3
        assert "3 members" in refused.json()["message"]

        deleted = await client.request(
            "DELETE", f"{base}/roles/{role['id']}", json={"new_role_id": guest["id"]}, headers=headers
        )
        assert deleted.status_code == 200
        assert deleted.json()["reassigned_members"] == 3

        members = (await client.get(f"/organizations/{org.id}/members", headers=headers)).json()
        moved = [m for m in members if m["custom_role_id"] == guest["id"]]
        assert len(moved) == 3
        assert all(m["role"] == "guest" for m in moved)


class TestOverrideAndTemplateRoutes:
    async def test_override_routes(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["admin"])
        base = _base(seeded["org"].id)
        project_id = seeded["project"].id
        role = (await client.post(f"{base}/roles", json={"name": "Contractor"}, headers=headers)).json()

        for edit in (True, False):
            response = await client.put(
                f"{base}/roles/{role['id']}/resource-overrides",
                json={"resource_type": "project", "resource_id": project_id, "permissions": {"projects": {"edit": edit}}},
                headers=headers,
            )
            assert response.status_code == 200

        fetched = (await client.get(f"{base}/roles/{role['id']}", headers=headers)).json()
        assert len(fetched["resource_permission_overrides"]) == 1
        assert fetched["resource_permission_overrides"][0]["permissions"] == {"projects": {"edit": False}}

        removed = await client.delete(
            f"{base}/roles/{role['id']}/resource-overrides/project/{project_id}", headers=headers
        )
        assert removed.status_code == 204
        fetched = (await client.get(f"{base}/roles/{role['id']}", headers=headers)).json()
        assert fetched["resource_permission_overrides"] == []

    async def test_override_on_unknown_resource_is_not_found(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["admin"])
        base = _base(seeded["org"].id)
        role = (await client.post(f"{base}/roles", json={"name": "Contractor"}, headers=headers)).json()

        response = await client.put(
            f"{base}/roles/{role['id']}/resource-overrides",
            json={"resource_type": "team", "resource_id": "missing", "permissions": {}},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Team not found or not part of the organization"

    async def test_template_routes_and_apply(self, client, seeded, factory, auth_headers) -> None:
        org = seeded["org"]
        headers = auth_headers(seeded["admin"])
        base = _base(org.id)
        task = await factory.task(seeded["project"])
        other_task = await factory.task(seeded["project"], "Other")
        writer = (await client.post(f"{base}/roles", json={"name": "Writer"}, headers=headers)).json()
        user = await factory.user("Wendy Writer")
        await factory.membership(user, org, custom_role_id=writer["id"])

        created = await client.post(
            f"{base}/templates",
            json={"name": "Frozen", "permissions": {"tasks": {"edit": False}}, "applicable_resource_types": ["task"]},
            headers=headers,
        )
        assert created.status_code == 201
        template = created.json()
        assert template["is_default"] is False

        updated = await client.put(
            f"{base}/templates/{template['id']}", json={"description": "No edits"}, headers=headers
        )
        assert updated.json()["description"] == "No edits"
        assert updated.json()["permissions"] == {"tasks": {"edit": False}}

        not_applicable = await client.post(
            f"{base}/templates/{template['id']}/apply",
            json={"resource_type": "project", "resource_id": seeded["project"].id},
            headers=headers,
        )
        assert not_applicable.status_code == 400

        applied = await client.post(
            f"{base}/templates/{template['id']}/apply",
            json={"resource_type": "task", "resource_id": task.id},
            headers=headers,
        )
        assert applied.status_code == 200
        assert len(applied.json()["overrides"]) == 5

        user_headers = auth_headers(user)
        frozen = await client.get(
            f"{base}/check", params={"resource_type": "task", "resource_id": task.id, "permission": "tasks.edit"},
            headers=user_headers,
        )
        free = await client.get(
            f"{base}/check", params={"resource_type": "task", "resource_id": other_task.id, "permission": "tasks.edit"},
            headers=user_headers,
        )
        assert frozen.json()["has_permission"] is False
        assert free.json()["has_permission"] is True

        deleted = await client.delete(f"{base}/templates/{template['id']}", headers=headers)
        assert deleted.status_code == 204

    async def test_default_template_cannot_be_deleted(self, client, seeded, auth_headers) -> None:
        headers = auth_headers(seeded["admin"])
        base = _base(seeded["org"].id)
        templates = (await client.get(f"{base}/templates", headers=headers)).json()

        response = await client.delete(f"{base}/templates/{templates[0]['id']}", headers=headers)

        assert response.status_code == 409

    async def test_check_requires_membership(self, client, seeded, factory, auth_headers) -> None:
        outsider = await factory.user("Oscar")
        response = await client.get(
            f"{_base(seeded['org'].id)}/check",
            params={"resource_type": "project", "resource_id": seeded["project"].id, "permission": "projects.view"},
            headers=auth_headers(outsider),
        )
        assert response.status_code == 403

    async def test_check_with_malformed_permission_denies(self, client, seeded, auth_headers) -> None:
        response = await client.get(
            f"{_base(seeded['org'].id)}/check",
            params={"resource_type": "project", "resource_id": seeded["project"].id, "permission": "projects"},
            headers=auth_headers(seeded["member"]),
        )
        assert response.status_code == 200
        assert response.json()["has_permission"] is False


async def test_require_resource_permission_guard(session_factory, seeded, auth_headers) -> None:
    router = APIRouter()

    @router.delete("/organizations/{organization_id}/tasks/{task_id}")
    async def delete_task(user=Depends(require_resource_permission("task", "tasks.delete", "task_id"))):
        return {"deleted_by": user.id}

    async def override_get_db():
        async with session_factory() as session:
            yield session

    test_app = FastAPI()
    test_app.include_router(router)
    test_app.dependency_overrides[get_db] = override_get_db

    url = f"/organizations/{seeded['org'].id}/tasks/anything"
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as c:
        allowed = await c.delete(url, headers=auth_headers(seeded["admin"]))
        denied = await c.delete(url, headers=auth_headers(seeded["member"]))

    assert allowed.status_code == 200
    assert allowed.json() == {"deleted_by": seeded["admin"].id}
    assert denied.status_code == 403
