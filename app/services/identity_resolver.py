"""Resolution of sheet emails to directory accounts."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.crud.user import user as user_crud

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedIdentity:
    user_id: UUID
    email: str
    full_name: Optional[str] = None


@dataclass
class IdentityResolution:
    """Resolved identities keyed by lowercased email, plus the emails nobody matched."""

    resolved: Dict[str, ResolvedIdentity] = field(default_factory=dict)
    unresolved: Set[str] = field(default_factory=set)

    def assignee_for(self, email: str) -> Tuple[Optional[UUID], str]:
        """(assignee_id, assignee_name) for a task; unresolved emails keep the raw email as name."""
        identity = self.resolved.get(email.lower())
        if identity is None:
            return None, email
        return identity.user_id, identity.full_name or email


class IdentityResolver:
    """Organization-scoped, case-insensitive email lookup."""

    async def resolve(
        self,
        db: AsyncSession,
        *,
        organization_id: UUID,
        emails: Iterable[str],
    ) -> IdentityResolution:
        wanted = {email.strip().lower() for email in emails if email and email.strip()}
        resolution = IdentityResolution()
        if not wanted:
            return resolution

        users = await user_crud.get_active_by_emails(db, organization_id=organization_id, emails=wanted)
        for account in users:
            key = account.email.lower()
            resolution.resolved[key] = ResolvedIdentity(user_id=account.id, email=key, full_name=account.full_name)

        resolution.unresolved = wanted - set(resolution.resolved)
        if resolution.unresolved:
            logger.info(
                "Unresolved assignees for organization %s: %s",
                organization_id,
                ", ".join(sorted(resolution.unresolved)),
            )
        return resolution


identity_resolver = IdentityResolver()
