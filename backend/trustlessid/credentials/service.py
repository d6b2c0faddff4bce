"""Credential store: issuance, lookup, revocation and the verification counter."""

import hashlib
import logging
import secrets
import uuid
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.config import settings
from trustlessid.models import CREDENTIAL_REVOKED, Credential, parse_uuid, utcnow

logger = logging.getLogger(__name__)

INCREMENT_ATTEMPTS = 2


def sha256_hex(material: str) -> str:
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def generate_credential_hash(
    user_id: str,
    document_id: str | None,
    timestamp: str,
    evidence_hash: str | None = None,
    salt: str | None = None,
) -> str:
    salt = salt or secrets.token_hex(16)
    material = f"{user_id}:{document_id or 'none'}:{timestamp}:{evidence_hash or 'no-evidence'}:{salt}"
    return f"sha256:{sha256_hex(material)}"


async def get_credential(db: AsyncSession, credential_id) -> Credential | None:
    cred_uuid = parse_uuid(credential_id)
    if cred_uuid is None:
        return None
    result = await db.execute(select(Credential).where(Credential.id == cred_uuid))
    return result.scalar_one_or_none()


async def issue_credential(
    db: AsyncSession,
    user_id: uuid.UUID,
    credential_type: str,
    document_id: str | None = None,
    evidence_hash: str | None = None,
) -> Credential:
    issued_at = utcnow()
    credential = Credential(
        user_id=user_id,
        document_id=document_id,
        hash=generate_credential_hash(str(user_id), document_id, issued_at.isoformat(), evidence_hash),
        source_document_hash=evidence_hash,
        type=credential_type,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(days=settings.credential_validity_days),
        verification_count=0,
    )
    db.add(credential)
    await db.commit()
    await db.refresh(credential)
    logger.info("Issued %s credential %s for user %s", credential_type, credential.id, user_id)
    return credential


async def revoke_credential(db: AsyncSession, credential: Credential) -> Credential:
    credential.status = CREDENTIAL_REVOKED
    await db.commit()
    logger.info("Revoked credential %s", credential.id)
    return credential


async def increment_verification_count(db: AsyncSession, credential_id: uuid.UUID) -> bool:
    """Bump the counter inside a savepoint; never fails the caller.

    The counter only feeds future trust scores, so a lost increment leaves a
    slightly stale score rather than a security hole. Returns whether the
    increment landed.
    """
    for attempt in range(1, INCREMENT_ATTEMPTS + 1):
        try:
            async with db.begin_nested():
                await db.execute(
                    update(Credential)
                    .where(Credential.id == credential_id)
                    .values(verification_count=Credential.verification_count + 1)
                    .execution_options(synchronize_session=False)
                )
            return True
        except SQLAlchemyError:
            logger.warning(
                "Verification count increment for credential %s failed (attempt %d/%d)",
                credential_id, attempt, INCREMENT_ATTEMPTS, exc_info=True,
            )
    logger.error("Verification count for credential %s is stale", credential_id)
    return False
