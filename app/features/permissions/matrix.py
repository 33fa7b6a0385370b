"""
Permission matrix schema and the pure operations on it.

A permission matrix is a JSON-friendly mapping ``{category: {action: bool}}``.
The set of categories and the actions inside each category are closed: the
schema below is the only source of valid keys, and anything else is rejected
when a matrix is parsed.

Permission strings use the wire format ``"category.action"``, e.g.
``"tasks.edit"`` or ``"timeTracking.viewAll"``.
"""
import enum
from typing import Any, Dict, Mapping, Tuple

from app.core.errors import InvalidDataError
from app.utils import get_logger


log = get_logger(__name__)

PermissionMatrix = Dict[str, Dict[str, bool]]


class PermissionCategory(str, enum.Enum):
    """Top-level permission categories."""
    ORGANIZATION = "organization"
    PROJECTS = "projects"
    TEAMS = "teams"
    TASKS = "tasks"
    TIME_TRACKING = "timeTracking"
    REPORTS = "reports"
    COMMENTS = "comments"
    INTEGRATIONS = "integrations"
    ANALYTICS = "analytics"
    CUSTOM_FIELDS = "customFields"


class RoleArchetype(str, enum.Enum):
    """Archetype a role is based on; admin-based roles are never restricted by templates."""
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"
    GUEST = "guest"
    CUSTOM = "custom"


# Actions per category with the value used when a role leaves them unspecified
PERMISSION_SCHEMA: Dict[PermissionCategory, Dict[str, bool]] = {
    PermissionCategory.ORGANIZATION: {
        "view": True,
        "edit": False,
        "delete": False,
        "manageMembers": False,
        "manageSettings": False,
        "manageRoles": False,
        "manageBilling": False,
    },
    PermissionCategory.PROJECTS: {
        "create": False,
        "view": True,
        "edit": False,
        "delete": False,
        "manageMembers": False,
        "manageTeams": False,
    },
    PermissionCategory.TEAMS: {
        "create": False,
        "view": True,
        "edit": False,
        "delete": False,
        "manageMembers": False,
    },
    PermissionCategory.TASKS: {
        "create": True,
        "view": True,
        "edit": True,
        "delete": False,
        "reassign": False,
        "timeTracking": True,
    },
    PermissionCategory.TIME_TRACKING: {
        "track": True,
        "editOwn": True,
        "editOthers": False,
        "viewOwn": True,
        "viewTeam": False,
        "viewAll": False,
    },
    PermissionCategory.REPORTS: {
        "viewOwn": True,
        "viewTeam": False,
        "viewAll": False,
        "export": False,
    },
    PermissionCategory.COMMENTS: {
        "create": True,
        "edit": True,
        "delete": False,
        "resolve": True,
    },
    PermissionCategory.INTEGRATIONS: {
        "view": True,
        "edit": False,
        "calendar": True,
        "invoice": False,
    },
    PermissionCategory.ANALYTICS: {
        "viewPersonal": True,
        "viewTeam": False,
        "viewOrganization": False,
    },
    PermissionCategory.CUSTOM_FIELDS: {
        "view": True,
        "edit": False,
    },
}


def _parse_category(name: Any) -> PermissionCategory:
    try:
        return PermissionCategory(name)
    except ValueError:
        raise InvalidDataError(f"Unknown permission category: {name!r}") from None


def parse_permission(permission: str) -> Tuple[PermissionCategory, str]:
    """
    Parse a ``"category.action"`` string against the schema.

    Raises:
        InvalidDataError: if the string is malformed or names an unknown
            category or action
    """
    if not isinstance(permission, str) or "." not in permission:
        raise InvalidDataError(f"Malformed permission string: {permission!r}")

    category_name, action = permission.split(".", 1)
    category = _parse_category(category_name)
    if action not in PERMISSION_SCHEMA[category]:
        raise InvalidDataError(f"Unknown action {action!r} for category {category.value!r}")
    return category, action


def default_permissions() -> PermissionMatrix:
    """Return a complete matrix holding the schema defaults."""
    return {category.value: dict(actions) for category, actions in PERMISSION_SCHEMA.items()}


def normalize_permissions(data: Mapping[str, Any] | None, partial: bool = False) -> PermissionMatrix:
    """
    Validate a matrix against the closed schema and return a fresh copy.

    Args:
        data: Matrix to validate (``None`` is treated as empty)
        partial: Keep only the entries present in ``data``. When false, every
            category/action missing from ``data`` is filled with its default.

    Raises:
        InvalidDataError: on unknown categories/actions or non-boolean values
    """
    data = data or {}
    if not isinstance(data, Mapping):
        raise InvalidDataError("Permissions must be an object of categories")

    result: PermissionMatrix = {} if partial else default_permissions()

    for category_name, actions in data.items():
        category = _parse_category(category_name)
        if not isinstance(actions, Mapping):
            raise InvalidDataError(f"Permissions for {category.value!r} must be an object of actions")

        schema = PERMISSION_SCHEMA[category]
        target = result.setdefault(category.value, {})
        for action, value in actions.items():
            if action not in schema:
                raise InvalidDataError(f"Unknown action {action!r} for category {category.value!r}")
            if not isinstance(value, bool):
                raise InvalidDataError(f"Permission {category.value}.{action} must be a boolean")
            target[action] = value

    return result


def clone_permissions(matrix: Mapping[str, Mapping[str, bool]]) -> PermissionMatrix:
    """Copy a matrix category by category."""
    return {category: dict(actions) for category, actions in matrix.items()}


def merge_permissions(
    base: Mapping[str, Mapping[str, bool]],
    partial: Mapping[str, Mapping[str, bool]],
) -> PermissionMatrix:
    """
    Shallow-merge ``partial`` into ``base`` one category at a time.

    Actions of ``base`` that ``partial`` does not mention survive, and
    categories missing from ``partial`` are left untouched.
    """
    merged = clone_permissions(base)
    for category, actions in partial.items():
        merged[category] = {**merged.get(category, {}), **actions}
    return merged


def lookup_permission(matrix: Mapping[str, Mapping[str, bool]] | None, permission: str) -> bool:
    """
    Return whether ``permission`` is granted by ``matrix``.

    Deny by default: a malformed string, an unknown or absent category or action,
    and any value other than ``True`` all resolve to ``False``.
    """
    try:
        category, action = parse_permission(permission)
    except InvalidDataError as e:
        log.debug("Denying unresolvable permission %r: %s", permission, e)
        return False

    if not matrix:
        return False
    actions = matrix.get(category.value)
    if not isinstance(actions, Mapping):
        return False
    return actions.get(action) is True


def calculate_effective_permissions(
    role_permissions: Mapping[str, Mapping[str, bool]],
    template_permissions: Mapping[str, Mapping[str, bool]],
    archetype: RoleArchetype,
) -> PermissionMatrix:
    """
    Restrict a role's permissions with a template mask.

    Admin-based roles come back unchanged. For every other role an explicit
    ``False`` in the template forces a deny; ``True`` and missing entries leave
    the role's value as it is, so applying a template never adds a grant.
    """
    result = clone_permissions(role_permissions)
    if archetype == RoleArchetype.ADMIN:
        return result

    for category, actions in template_permissions.items():
        if not isinstance(actions, Mapping):
            continue
        for action, value in actions.items():
            if value is False:
                result.setdefault(category, {})[action] = False

    return result
