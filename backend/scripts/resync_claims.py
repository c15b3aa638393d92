"""Rewrite every user's auth claims from their entitlement record.

Claims normally follow billing events in the same transaction as the
entitlement write. Run this on a schedule (or after a manual DB fix) to repair
any drift between the two.

Run inside Docker:
    docker compose exec backend python -m scripts.resync_claims
    docker compose exec backend python -m scripts.resync_claims --email someone@example.com
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add backend to path so imports work when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy import select

from quillsign.billing.claims import sync_claims
from quillsign.database import async_session_factory, engine
from quillsign.models.user import User


async def resync(email: str | None = None) -> int:
    """Re-derive claims for all users (or one, by email). Returns how many changed."""
    changed = 0
    async with async_session_factory() as session:
        query = select(User).order_by(User.created_at)
        if email:
            query = query.where(User.email == email)
        users = (await session.execute(query)).scalars().all()

        if email and not users:
            print(f"⚠️  No user with email '{email}'")

        for user in users:
            before = dict(user.custom_claims or {})
            claims = await sync_claims(session, user)
            if claims != before:
                changed += 1
                print(f"   🔁 {user.email}: {before.get('subscriptionStatus')} -> {claims['subscriptionStatus']}")

        await session.commit()

    print(f"✅ Checked {len(users)} user(s), updated {changed}")
    return changed


async def main(email: str | None = None) -> None:
    try:
        await resync(email)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--email", help="Only re-sync this user")
    args = parser.parse_args()
    asyncio.run(main(args.email))
