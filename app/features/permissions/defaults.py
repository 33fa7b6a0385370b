"""
Seed data: system roles, default permission templates and the built-in
matrices used for members without a custom role.
"""
from typing import Any, Dict, List

from app.features.permissions.matrix import PermissionMatrix, RoleArchetype, clone_permissions


ADMINISTRATOR_PERMISSIONS: PermissionMatrix = {
    "organization": {"view": True, "edit": True, "delete": True, "manageMembers": True,
                     "manageSettings": True, "manageRoles": True, "manageBilling": True},
    "projects": {"create": True, "view": True, "edit": True, "delete": True,
                 "manageMembers": True, "manageTeams": True},
    "teams": {"create": True, "view": True, "edit": True, "delete": True, "manageMembers": True},
    "tasks": {"create": True, "view": True, "edit": True, "delete": True,
              "reassign": True, "timeTracking": True},
    "timeTracking": {"track": True, "editOwn": True, "editOthers": True,
                     "viewOwn": True, "viewTeam": True, "viewAll": True},
    "reports": {"viewOwn": True, "viewTeam": True, "viewAll": True, "export": True},
    "comments": {"create": True, "edit": True, "delete": True, "resolve": True},
    "integrations": {"view": True, "edit": True, "calendar": True, "invoice": True},
    "analytics": {"viewPersonal": True, "viewTeam": True, "viewOrganization": True},
    "customFields": {"view": True, "edit": True},
}

MANAGER_PERMISSIONS: PermissionMatrix = {
    "organization": {"view": True, "edit": False, "delete": False, "manageMembers": False,
                     "manageSettings": False, "manageRoles": False, "manageBilling": False},
    "projects": {"create": True, "view": True, "edit": True, "delete": False,
                 "manageMembers": True, "manageTeams": True},
    "teams": {"create": True, "view": True, "edit": True, "delete": False, "manageMembers": True},
    "tasks": {"create": True, "view": True, "edit": True, "delete": True,
              "reassign": True, "timeTracking": True},
    "timeTracking": {"track": True, "editOwn": True, "editOthers": True,
                     "viewOwn": True, "viewTeam": True, "viewAll": False},
    "reports": {"viewOwn": True, "viewTeam": True, "viewAll": False, "export": True},
    "comments": {"create": True, "edit": True, "delete": True, "resolve": True},
    "integrations": {"view": True, "edit": False, "calendar": True, "invoice": True},
    "analytics": {"viewPersonal": True, "viewTeam": True, "viewOrganization": False},
    "customFields": {"view": True, "edit": False},
}

MEMBER_PERMISSIONS: PermissionMatrix = {
    "organization": {"view": True, "edit": False, "delete": False, "manageMembers": False,
                     "manageSettings": False, "manageRoles": False, "manageBilling": False},
    "projects": {"create": False, "view": True, "edit": False, "delete": False,
                 "manageMembers": False, "manageTeams": False},
    "teams": {"create": False, "view": True, "edit": False, "delete": False, "manageMembers": False},
    "tasks": {"create": True, "view": True, "edit": True, "delete": False,
              "reassign": False, "timeTracking": True},
    "timeTracking": {"track": True, "editOwn": True, "editOthers": False,
                     "viewOwn": True, "viewTeam": False, "viewAll": False},
    "reports": {"viewOwn": True, "viewTeam": False, "viewAll": False, "export": False},
    "comments": {"create": True, "edit": True, "delete": False, "resolve": True},
    "integrations": {"view": True, "edit": False, "calendar": True, "invoice": False},
    "analytics": {"viewPersonal": True, "viewTeam": False, "viewOrganization": False},
    "customFields": {"view": True, "edit": False},
}

GUEST_PERMISSIONS: PermissionMatrix = {
    "organization": {"view": True, "edit": False, "delete": False, "manageMembers": False,
                     "manageSettings": False, "manageRoles": False, "manageBilling": False},
    "projects": {"create": False, "view": True, "edit": False, "delete": False,
                 "manageMembers": False, "manageTeams": False},
    "teams": {"create": False, "view": True, "edit": False, "delete": False, "manageMembers": False},
    "tasks": {"create": False, "view": True, "edit": False, "delete": False,
              "reassign": False, "timeTracking": False},
    "timeTracking": {"track": False, "editOwn": False, "editOthers": False,
                     "viewOwn": True, "viewTeam": False, "viewAll": False},
    "reports": {"viewOwn": True, "viewTeam": False, "viewAll": False, "export": False},
    "comments": {"create": True, "edit": False, "delete": False, "resolve": False},
    "integrations": {"view": False, "edit": False, "calendar": False, "invoice": False},
    "analytics": {"viewPersonal": False, "viewTeam": False, "viewOrganization": False},
    "customFields": {"view": True, "edit": False},
}


SYSTEM_ROLES: List[Dict[str, Any]] = [
    {
        "name": "Administrator",
        "description": "Full access to all features",
        "based_on": RoleArchetype.ADMIN,
        "permissions": ADMINISTRATOR_PERMISSIONS,
    },
    {
        "name": "Manager",
        "description": "Can manage projects and teams",
        "based_on": RoleArchetype.MANAGER,
        "permissions": MANAGER_PERMISSIONS,
    },
    {
        "name": "Member",
        "description": "Standard team member",
        "based_on": RoleArchetype.MEMBER,
        "permissions": MEMBER_PERMISSIONS,
    },
    {
        "name": "Guest",
        "description": "Limited access, view-only for most features",
        "based_on": RoleArchetype.GUEST,
        "permissions": GUEST_PERMISSIONS,
    },
]


# "note" has no resource validator, so seeded templates only target validated types
DEFAULT_TEMPLATE_RESOURCE_TYPES = ["project", "team", "task"]

DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    {
        "name": "Full Access",
        "description": "Complete access to all resources",
        "permissions": ADMINISTRATOR_PERMISSIONS,
    },
    {
        "name": "Edit Access",
        "description": "Can view and edit but not delete",
        "permissions": {
            "organization": {"view": True, "edit": False, "delete": False, "manageMembers": False,
                             "manageSettings": False, "manageRoles": False, "manageBilling": False},
            "projects": {"create": False, "view": True, "edit": True, "delete": False,
                         "manageMembers": False, "manageTeams": False},
            "teams": {"create": False, "view": True, "edit": True, "delete": False, "manageMembers": False},
            "tasks": {"create": True, "view": True, "edit": True, "delete": False,
                      "reassign": False, "timeTracking": True},
            "timeTracking": {"track": True, "editOwn": True, "editOthers": False,
                             "viewOwn": True, "viewTeam": True, "viewAll": False},
            "reports": {"viewOwn": True, "viewTeam": True, "viewAll": False, "export": True},
            "comments": {"create": True, "edit": True, "delete": False, "resolve": True},
            "integrations": {"view": True, "edit": False, "calendar": True, "invoice": False},
            "analytics": {"viewPersonal": True, "viewTeam": True, "viewOrganization": False},
            "customFields": {"view": True, "edit": True},
        },
    },
    {
        "name": "View Only",
        "description": "Can only view resources",
        "permissions": {
            "organization": {"view": True, "edit": False, "delete": False, "manageMembers": False,
                             "manageSettings": False, "manageRoles": False, "manageBilling": False},
            "projects": {"create": False, "view": True, "edit": False, "delete": False,
                         "manageMembers": False, "manageTeams": False},
            "teams": {"create": False, "view": True, "edit": False, "delete": False, "manageMembers": False},
            "tasks": {"create": False, "view": True, "edit": False, "delete": False,
                      "reassign": False, "timeTracking": False},
            "timeTracking": {"track": False, "editOwn": False, "editOthers": False,
                             "viewOwn": True, "viewTeam": False, "viewAll": False},
            "reports": {"viewOwn": True, "viewTeam": False, "viewAll": False, "export": False},
            "comments": {"create": True, "edit": False, "delete": False, "resolve": False},
            "integrations": {"view": False, "edit": False, "calendar": False, "invoice": False},
            "analytics": {"viewPersonal": True, "viewTeam": False, "viewOrganization": False},
            "customFields": {"view": True, "edit": False},
        },
    },
]


# Built-in matrices for memberships that carry no custom role. Admins never reach this lookup.
PRIMITIVE_ROLE_PERMISSIONS: Dict[str, PermissionMatrix] = {
    "member": MEMBER_PERMISSIONS,
    "viewer": GUEST_PERMISSIONS,
}


def get_default_permissions_for_role(role: str) -> PermissionMatrix:
    """Return a copy of the built-in matrix for a primitive role, empty when there is none."""
    return clone_permissions(PRIMITIVE_ROLE_PERMISSIONS.get(role, {}))
