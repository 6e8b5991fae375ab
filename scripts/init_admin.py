"""Script to create the default roles, a first organization and its admin."""
import argparse
import asyncio
import sys
from datetime import timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.security import ROLE_PERMISSIONS
from app.database import AsyncSessionLocal, init_db
from app.services.bootstrap_service import ensure_organization_admin, ensure_roles
from app.utils.security import create_access_token


async def init_admin(organization_name: str, email: str, full_name: str, sheet_url: str = None):
    """Create roles, organization and admin user if they don't exist."""
    await init_db()
    async with AsyncSessionLocal() as db:
        await ensure_roles(db, role_names=ROLE_PERMISSIONS.keys())
        print("✓ Roles ready:", ", ".join(ROLE_PERMISSIONS.keys()))

        admin_user = await ensure_organization_admin(
            db,
            organization_name=organization_name,
            email=email,
            full_name=full_name,
            sheet_url=sheet_url,
        )
        print(f"✓ Admin {admin_user.email} in organization {admin_user.organization_id}")

        # Development token; production tokens come from the identity provider.
        token = create_access_token({"sub": str(admin_user.id), "email": admin_user.email}, timedelta(days=1))
        print("\n" + "=" * 50)
        print("Bearer token (24h):")
        print(f"  {token}")
        print("=" * 50)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--organization", default="Default organization")
    parser.add_argument("--email", default="admin@example.com")
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--sheet-url", default=None)
    args = parser.parse_args()
    asyncio.run(init_admin(args.organization, args.email, args.name, args.sheet_url))
