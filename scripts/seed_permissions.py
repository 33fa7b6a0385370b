"""
Seed script to populate system roles and default permission templates.

Run this script after database initialization to make sure every
organization has:
- The Administrator, Manager, Member and Guest system roles
- The Full Access, Edit Access and View Only templates

Organizations that already have them are left untouched, so the script can
be run repeatedly.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.organizations.models import Organization
from app.features.permissions.service import PermissionService, summarize_roles
from app.utils import get_logger


log = get_logger(__name__)


async def seed_organization(db: AsyncSession, organization: Organization) -> tuple[int, int]:
    """
    Seed one organization.

    Returns:
        Number of roles and templates created
    """
    service = PermissionService(db)
    roles = await service.create_default_roles(organization.id)
    templates = await service.create_default_templates(organization.id)

    if roles or templates:
        log.info(
            f"Organization '{organization.name}': created {len(roles)} roles and {len(templates)} templates"
        )
    else:
        log.debug(f"Organization '{organization.name}' already seeded, skipping")

    return len(roles), len(templates)


async def seed_all(db: AsyncSession) -> tuple[int, int]:
    """Seed every organization. Returns totals of created roles and templates."""
    result = await db.execute(select(Organization).order_by(Organization.created_at))
    organizations = result.scalars().all()
    log.info(f"Seeding {len(organizations)} organizations...")

    total_roles = total_templates = 0
    for organization in organizations:
        roles, templates = await seed_organization(db, organization)
        total_roles += roles
        total_templates += templates

        counts = summarize_roles(await PermissionService(db).get_organization_roles(organization.id))
        log.debug(f"Organization '{organization.name}' roles: {counts}")

    return total_roles, total_templates


async def main():
    """Main function to seed roles and templates."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            total_roles, total_templates = await seed_all(db)
            log.info("Permission seeding completed successfully!")
            log.info(f"Created {total_roles} roles and {total_templates} templates")
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
