"""Bootstrap utilities for ensuring core roles and a first organization admin exist."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import ROLE_PERMISSIONS
from app.models.user import Organization, Role, User

logger = logging.getLogger(__name__)

DEFAULT_ROLE_DESCRIPTIONS = {
    "admin": "Plans weeks, imports sheets and manages every task",
    "supervisor": "Triggers syncs and reviews task evidence",
    "worker": "Acknowledges assigned tasks and uploads evidence",
}


async def ensure_roles(
    db: AsyncSession,
    *,
    role_names: Iterable[str],
) -> Dict[str, Role]:
    """Create missing roles and align stored permissions with ROLE_PERMISSIONS."""
    names = list(role_names)
    result = await db.execute(select(Role).where(Role.name.in_(names)))
    role_map: Dict[str, Role] = {role.name: role for role in result.scalars().all()}
    changed = False

    for role_name in names:
        permissions = [permission.value for permission in ROLE_PERMISSIONS.get(role_name, [])]
        role_obj = role_map.get(role_name)
        if role_obj is None:
            role_obj = Role(
                name=role_name,
                permissions=permissions,
                description=DEFAULT_ROLE_DESCRIPTIONS.get(role_name),
            )
            db.add(role_obj)
            role_map[role_name] = role_obj
            changed = True
        elif sorted(role_obj.permissions or []) != sorted(permissions):
            logger.info("Updating permissions of role %s", role_name)
            role_obj.permissions = permissions
            changed = True

    if changed:
        await db.commit()

    return role_map


async def ensure_organization_admin(
    db: AsyncSession,
    *,
    organization_name: str,
    email: str,
    full_name: Optional[str] = None,
    sheet_url: Optional[str] = None,
) -> User:
    """Ensure an organization and its admin account exist and return the admin."""
    role_map = await ensure_roles(db, role_names={"admin"})
    admin_role = role_map["admin"]

    result = await db.execute(select(User).where(User.email == email.lower()))
    admin_user = result.scalar_one_or_none()
    if admin_user:
        if admin_role not in admin_user.roles:
            admin_user.roles.append(admin_role)
            await db.commit()
        return admin_user

    result = await db.execute(select(Organization).where(Organization.name == organization_name))
    organization = result.scalar_one_or_none()
    if organization is None:
        organization = Organization(name=organization_name, sheet_url=sheet_url)
        db.add(organization)
        await db.flush()

    admin_user = User(
        organization_id=organization.id,
        email=email.lower(),
        full_name=full_name,
        is_active=True,
    )
    admin_user.roles = [admin_role]
    db.add(admin_user)
    await db.commit()
    await db.refresh(admin_user)
    return admin_user
