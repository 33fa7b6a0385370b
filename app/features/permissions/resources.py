"""
Resource types that can carry permission overrides, and their validators.

Each validator answers one question: does this resource exist and does it
belong to the organization? Tasks belong to an organization through their project.
"""
import enum
from typing import Awaitable, Callable, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidDataError, NotFoundError
from app.features.projects.models import Project, Task, Team
from app.utils import get_logger


log = get_logger(__name__)


class ResourceType(str, enum.Enum):
    PROJECT = "project"
    TEAM = "team"
    TASK = "task"


ResourceValidator = Callable[[AsyncSession, str, str], Awaitable[bool]]


def parse_resource_type(value: str | ResourceType) -> ResourceType:
    """
    Raises:
        InvalidDataError: if ``value`` is not a known resource type
    """
    try:
        return ResourceType(value)
    except ValueError:
        raise InvalidDataError(f"Invalid resource type: {value!r}") from None


async def _project_in_organization(db: AsyncSession, resource_id: str, organization_id: str) -> bool:
    stmt = select(Project.id).where(Project.id == resource_id, Project.organization_id == organization_id)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def _team_in_organization(db: AsyncSession, resource_id: str, organization_id: str) -> bool:
    stmt = select(Team.id).where(Team.id == resource_id, Team.organization_id == organization_id)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def _task_in_organization(db: AsyncSession, resource_id: str, organization_id: str) -> bool:
    stmt = (
        select(Task.id)
        .join(Project, Project.id == Task.project_id)
        .where(Task.id == resource_id, Project.organization_id == organization_id)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


RESOURCE_VALIDATORS: Dict[ResourceType, ResourceValidator] = {
    ResourceType.PROJECT: _project_in_organization,
    ResourceType.TEAM: _team_in_organization,
    ResourceType.TASK: _task_in_organization,
}


async def validate_resource(
    db: AsyncSession,
    resource_type: str | ResourceType,
    resource_id: str,
    organization_id: str,
) -> ResourceType:
    """
    Ensure a resource exists and is owned by the organization.

    Returns:
        The parsed resource type

    Raises:
        InvalidDataError: unknown resource type
        NotFoundError: the resource is missing or belongs to another organization
    """
    parsed = parse_resource_type(resource_type)
    validator = RESOURCE_VALIDATORS[parsed]

    if not await validator(db, resource_id, organization_id):
        log.warning(
            "Resource %s:%s not found in organization %s", parsed.value, resource_id, organization_id
        )
        raise NotFoundError(f"{parsed.value.capitalize()} not found or not part of the organization")

    return parsed
