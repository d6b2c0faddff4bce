"""Lifecycle of a verification request.

    pending  -> approved | rejected | expired
    approved -> consumed | expired

rejected, expired and consumed are terminal. Expiry is detected lazily when a
request is touched; nothing sweeps in the background. Every transition is a
conditional update on the current status, so two racing writers cannot both
move the same request.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.config import settings
from trustlessid.credentials.service import get_credential
from trustlessid.errors import Expired, InvalidInput, InvalidState, NotFound
from trustlessid.models import (
    STATUS_APPROVED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    STATUS_REJECTED,
    VerificationRequest,
    parse_uuid,
    utcnow,
)
from trustlessid.tokens.service import TokenService

logger = logging.getLogger(__name__)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"


def request_ttl() -> timedelta:
    return timedelta(seconds=settings.request_ttl_seconds)


async def get_request(db: AsyncSession, request_id) -> VerificationRequest | None:
    req_uuid = parse_uuid(request_id)
    if req_uuid is None:
        return None
    result = await db.execute(select(VerificationRequest).where(VerificationRequest.id == req_uuid))
    return result.scalar_one_or_none()


async def transition(db: AsyncSession, request: VerificationRequest, expected: str, **values) -> bool:
    """Move ``request`` out of ``expected`` status. False if someone else moved it first."""
    result = await db.execute(
        update(VerificationRequest)
        .where(VerificationRequest.id == request.id, VerificationRequest.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    for key, value in values.items():
        setattr(request, key, value)
    return True


async def create_request(
    db: AsyncSession,
    credential_id: str,
    verifier_name: str,
    verifier_domain: str,
    purpose: str,
    policy: dict | None = None,
    requested_fields: list[str] | None = None,
) -> VerificationRequest:
    credential = await get_credential(db, credential_id)
    if credential is None:
        raise NotFound("Credential not found")

    created_at = utcnow()
    request = VerificationRequest(
        credential_id=credential.id,
        verifier_name=verifier_name,
        verifier_domain=verifier_domain,
        purpose=purpose,
        policy=policy or {},
        # de-duplicated, first occurrence wins
        requested_fields=list(dict.fromkeys(requested_fields or [])),
        nonce=secrets.token_urlsafe(24),
        status=STATUS_PENDING,
        created_at=created_at,
        expires_at=created_at + request_ttl(),
    )
    db.add(request)
    await db.commit()
    logger.info(
        "Verification request %s created by %s (%s) for credential %s",
        request.id, verifier_name, verifier_domain, credential.id,
    )
    return request


async def decide_request(
    db: AsyncSession,
    tokens: TokenService,
    request_id: str,
    decision: str,
) -> tuple[VerificationRequest, str | None]:
    """Apply the holder's decision. Returns the request and, on approval, the proof token."""
    if decision not in (DECISION_APPROVE, DECISION_REJECT):
        raise InvalidInput("decision must be 'approve' or 'reject'")

    request = await get_request(db, request_id)
    if request is None:
        raise NotFound("Verification request not found")
    if request.status != STATUS_PENDING:
        raise InvalidState("Verification request is not pending")

    now = utcnow()
    if request.expires_at < now:
        # Expiry beats a late decision.
        await transition(db, request, STATUS_PENDING, status=STATUS_EXPIRED)
        await db.commit()
        logger.info("Verification request %s expired before a decision", request.id)
        raise Expired("Verification request expired")

    if decision == DECISION_REJECT:
        if not await transition(db, request, STATUS_PENDING, status=STATUS_REJECTED):
            raise InvalidState("Verification request is not pending")
        await db.commit()
        logger.info("Verification request %s rejected by holder", request.id)
        return request, None

    if not await transition(db, request, STATUS_PENDING, status=STATUS_APPROVED, approved_at=now):
        raise InvalidState("Verification request is not pending")
    proof_token = tokens.issue_proof_token(
        request_id=str(request.id),
        credential_id=str(request.credential_id),
        verifier_name=request.verifier_name,
        verifier_domain=request.verifier_domain,
        purpose=request.purpose,
        nonce=request.nonce,
    )
    await db.commit()
    logger.info("Verification request %s approved by holder, proof issued", request.id)
    return request, proof_token
