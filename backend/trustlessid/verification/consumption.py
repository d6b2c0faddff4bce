"""Redeeming a one-time verification proof.

A proof is honoured at most once. The approved -> consumed move is a single
conditional UPDATE, and everything after it (credential lookup, scoring,
receipt) happens in the same transaction: if any later step fails, the
request stays approved and no receipt exists.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.credentials.service import get_credential, increment_verification_count, sha256_hex
from trustlessid.errors import (
    AlreadyConsumed,
    Expired,
    IdentityMismatch,
    InvalidProof,
    InvalidState,
    NotFound,
)
from trustlessid.models import (
    DECISION_FAIL,
    DECISION_PASS,
    STATUS_APPROVED,
    STATUS_CONSUMED,
    STATUS_EXPIRED,
    Credential,
    VerificationReceipt,
    VerificationRequest,
    parse_uuid,
    utcnow,
)
from trustlessid.tokens.service import TokenService

from .requests import get_request, transition
from .trust import TrustBreakdown, compute_trust_breakdown, is_valid

logger = logging.getLogger(__name__)

SUMMARY_PASS = "Verification passed with consent-bound one-time proof."
SUMMARY_FAIL = "Verification failed because credential is not active."


@dataclass
class PolicyCheck:
    name: str
    passed: bool
    detail: str


@dataclass
class ConsumptionResult:
    request: VerificationRequest
    credential: Credential
    receipt: VerificationReceipt
    trust: TrustBreakdown
    policy_checks: list[PolicyCheck] = field(default_factory=list)
    summary: str = ""


def _same(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def compute_receipt_hash(
    request_id, credential_id, verifier_domain: str, consumed_at: datetime, trust_score: int
) -> str:
    material = f"{request_id}:{credential_id}:{verifier_domain}:{consumed_at.isoformat()}:{trust_score}"
    return f"sha256:{sha256_hex(material)}"


def receipt_hash_matches(receipt: VerificationReceipt, request: VerificationRequest) -> bool:
    if request.consumed_at is None:
        return False
    expected = compute_receipt_hash(
        request.id, receipt.credential_id, request.verifier_domain, request.consumed_at, receipt.trust_score
    )
    return expected == receipt.receipt_hash


def disclosed_fields(credential: Credential) -> dict:
    """The only credential facts a verifier ever sees."""
    return {
        "credentialType": credential.type,
        "issueDate": credential.issued_at.isoformat(),
        "isValid": is_valid(credential),
    }


def build_policy_checks(
    credential: Credential, request: VerificationRequest, verifier_name: str, verifier_domain: str
) -> list[PolicyCheck]:
    return [
        PolicyCheck(
            name="Credential is active",
            passed=is_valid(credential),
            detail=f"status={credential.status}",
        ),
        PolicyCheck(
            name="Request approved by holder",
            passed=request.approved_at is not None,
            detail=f"approved_at={request.approved_at.isoformat() if request.approved_at else None}",
        ),
        PolicyCheck(
            name="Request not expired",
            passed=request.consumed_at is not None and request.consumed_at <= request.expires_at,
            detail=f"expires_at={request.expires_at.isoformat()}",
        ),
        PolicyCheck(
            name="Verifier identity matches token",
            passed=True,
            detail=f"{verifier_name} ({verifier_domain})",
        ),
        PolicyCheck(
            name="Replay protection",
            passed=request.status == STATUS_CONSUMED,
            detail="Proof consumed exactly once and request marked as consumed",
        ),
    ]


async def get_receipt(db: AsyncSession, receipt_id) -> VerificationReceipt | None:
    receipt_uuid = parse_uuid(receipt_id)
    if receipt_uuid is None:
        return None
    result = await db.execute(select(VerificationReceipt).where(VerificationReceipt.id == receipt_uuid))
    return result.scalar_one_or_none()


async def consume_proof(
    db: AsyncSession,
    tokens: TokenService,
    proof_token: str,
    verifier_name: str,
    verifier_domain: str,
) -> ConsumptionResult:
    claims = tokens.verify_proof_token(proof_token)
    if claims is None:
        raise InvalidProof("Invalid or expired proof token")

    if not (_same(claims.verifier_name, verifier_name) and _same(claims.verifier_domain, verifier_domain)):
        logger.warning(
            "Proof for request %s presented by %s (%s), issued to %s (%s)",
            claims.request_id, verifier_name, verifier_domain, claims.verifier_name, claims.verifier_domain,
        )
        raise IdentityMismatch("Proof token does not match verifier identity")

    request = await get_request(db, claims.request_id)
    if request is None:
        raise NotFound("Verification request not found")
    if request.nonce != claims.nonce or str(request.credential_id) != claims.credential_id:
        logger.warning("Proof for request %s is not bound to it", request.id)
        raise InvalidProof("Invalid or expired proof token")

    if request.status == STATUS_CONSUMED:
        logger.warning("Replay of consumed proof for request %s blocked", request.id)
        raise AlreadyConsumed("Replay blocked: verification proof already consumed")
    if request.status != STATUS_APPROVED:
        raise InvalidState(f"Verification request is {request.status}, not approved")

    consumed_at = utcnow()
    if request.expires_at < consumed_at:
        await transition(db, request, STATUS_APPROVED, status=STATUS_EXPIRED)
        await db.commit()
        logger.info("Verification request %s expired before its proof was consumed", request.id)
        raise Expired("Verification request expired")

    if not await transition(db, request, STATUS_APPROVED, status=STATUS_CONSUMED, consumed_at=consumed_at):
        logger.warning("Concurrent consumption of request %s lost the race", request.id)
        raise AlreadyConsumed("Replay blocked: verification proof already consumed")

    credential = await get_credential(db, request.credential_id)
    if credential is None:
        # Leaving the transaction uncommitted keeps the request approved.
        raise NotFound("Credential not found")

    trust = compute_trust_breakdown(credential, now=consumed_at)
    decision = DECISION_PASS if is_valid(credential) else DECISION_FAIL
    await increment_verification_count(db, credential.id)

    receipt = VerificationReceipt(
        verification_request_id=request.id,
        credential_id=credential.id,
        verifier_name=request.verifier_name,
        verifier_domain=request.verifier_domain,
        purpose=request.purpose,
        decision=decision,
        disclosed_data=disclosed_fields(credential),
        trust_score=trust.final_score,
        receipt_hash=compute_receipt_hash(
            request.id, credential.id, request.verifier_domain, consumed_at, trust.final_score
        ),
        created_at=consumed_at,
    )
    db.add(receipt)
    await db.commit()
    logger.info(
        "Verification request %s consumed: decision=%s trust_score=%d receipt=%s",
        request.id, decision, trust.final_score, receipt.id,
    )

    return ConsumptionResult(
        request=request,
        credential=credential,
        receipt=receipt,
        trust=trust,
        policy_checks=build_policy_checks(credential, request, verifier_name, verifier_domain),
        summary=SUMMARY_PASS if decision == DECISION_PASS else SUMMARY_FAIL,
    )


async def score_credential(db: AsyncSession, credential_id) -> tuple[Credential, TrustBreakdown]:
    """Stateless score lookup outside the consent flow."""
    credential = await get_credential(db, credential_id)
    if credential is None:
        raise NotFound("Credential not found")
    trust = compute_trust_breakdown(credential)
    await increment_verification_count(db, credential.id)
    await db.commit()
    return credential, trust
