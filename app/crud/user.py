"""User CRUD operations."""
from typing import Iterable, List, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload
from app.crud.base import CRUDBase
from app.models.user import Organization, User, Role


class CRUDUser(CRUDBase[User, dict, dict]):
    """CRUD operations for User."""

    async def get_by_email(self, db: AsyncSession, *, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)."""
        result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return result.scalar_one_or_none()

    async def get_with_roles(self, db: AsyncSession, *, id: UUID) -> Optional[User]:
        """Get user with roles loaded."""
        result = await db.execute(
            select(User)
            .where(User.id == id)
            .options(selectinload(User.roles))
        )
        return result.scalar_one_or_none()

    async def get_active_by_emails(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        emails: Iterable[str],
    ) -> List[User]:
        """Get the organization's active users whose email matches any of the lowercased emails."""
        lowered = sorted({email.strip().lower() for email in emails if email})
        if not lowered:
            return []
        result = await db.execute(
            select(User).where(
                User.organization_id == organization_id,
                User.is_active == True,  # noqa: E712
                func.lower(User.email).in_(lowered),
            )
        )
        return list(result.scalars().all())


class CRUDRole(CRUDBase[Role, dict, dict]):
    """CRUD operations for Role."""

    async def get_by_name(self, db: AsyncSession, *, name: str) -> Optional[Role]:
        """Get role by name."""
        result = await db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()


class CRUDOrganization(CRUDBase[Organization, dict, dict]):
    """CRUD operations for Organization."""

    async def list_sync_target_ids(self, db: AsyncSession, *, require_sheet: bool = True) -> List[UUID]:
        """Ids of the organizations the scheduled sync visits, ordered by name."""
        query = select(Organization.id).order_by(Organization.name, Organization.id)
        if require_sheet:
            query = query.where(Organization.sheet_url.is_not(None), Organization.sheet_url != "")
        result = await db.execute(query)
        return list(result.scalars().all())


user = CRUDUser(User)
role = CRUDRole(Role)
organization = CRUDOrganization(Organization)
