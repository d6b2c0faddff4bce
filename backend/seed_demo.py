"""Seed a demo holder with credentials to drive the verification flow against."""
import asyncio
import sys
from datetime import timedelta

from sqlalchemy import select

from trustlessid.credentials.service import generate_credential_hash
from trustlessid.database import async_session, create_tables
from trustlessid.models import CREDENTIAL_ACTIVE, CREDENTIAL_EXPIRED, Credential, User, utcnow

DEMO_EMAIL = "demo@trustlessid.com"

# (type, days since issuance, verification count, status)
DEMO_CREDENTIALS = [
    ("identity", 10, 3, CREDENTIAL_ACTIVE),
    ("address", 45, 12, CREDENTIAL_ACTIVE),
    ("age", 400, 7, CREDENTIAL_EXPIRED),
]


async def seed(email: str) -> None:
    await create_tables()
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(email=email, name="Alex Thompson", verified=True)
            db.add(user)
            await db.flush()

        now = utcnow()
        for cred_type, age_days, count, status in DEMO_CREDENTIALS:
            issued_at = now - timedelta(days=age_days)
            db.add(Credential(
                user_id=user.id, type=cred_type, status=status,
                hash=generate_credential_hash(str(user.id), None, issued_at.isoformat()),
                issued_at=issued_at, expires_at=issued_at + timedelta(days=365),
                verification_count=count,
            ))

        await db.commit()

        result = await db.execute(select(Credential).where(Credential.user_id == user.id))
        print(f"Seeded {email} ({user.id})")
        for cred in result.scalars().all():
            print(f"  {cred.type:<9} {cred.status:<8} {cred.id}")


if __name__ == "__main__":
    asyncio.run(seed(sys.argv[1] if len(sys.argv) > 1 else DEMO_EMAIL))
