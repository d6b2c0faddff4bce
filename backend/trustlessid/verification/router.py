from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.database import get_db
from trustlessid.errors import InvalidInput, NotFound
from trustlessid.models import utcnow
from trustlessid.tokens.service import TokenService, get_token_service

from .consumption import consume_proof, get_receipt, receipt_hash_matches, score_credential
from .requests import create_request, decide_request, get_request
from .schemas import (
    ConsumeRequest,
    ConsumeResponse,
    CreateVerificationRequest,
    DecisionRequest,
    DecisionResponse,
    Explainability,
    PolicyCheckResponse,
    PublicVerificationResponse,
    ReceiptResponse,
    TrustBreakdownResponse,
    VerificationRequestDetail,
    VerificationRequestResponse,
)
from .trust import is_valid

router = APIRouter(prefix="/verify", tags=["verify"])


@router.get("", response_model=PublicVerificationResponse)
@router.get("/", response_model=PublicVerificationResponse, include_in_schema=False)
async def lookup(
    credential_id: str | None = Query(default=None, alias="id"),
    db: AsyncSession = Depends(get_db),
):
    """Public, non-consent-bound score lookup."""
    if not credential_id:
        raise InvalidInput("Credential ID is required")
    credential, trust = await score_credential(db, credential_id)
    return PublicVerificationResponse(
        credential_id=credential.id,
        is_valid=is_valid(credential),
        trust_score=trust.final_score,
        issue_date=credential.issued_at,
        credential_type=credential.type,
        verified_at=utcnow(),
    )


@router.post("/request", response_model=VerificationRequestResponse)
async def request_verification(body: CreateVerificationRequest, db: AsyncSession = Depends(get_db)):
    req = await create_request(
        db,
        credential_id=body.credential_id,
        verifier_name=body.verifier_name,
        verifier_domain=body.verifier_domain,
        purpose=body.purpose,
        policy=body.policy,
        requested_fields=body.requested_fields,
    )
    return _request_view(req, VerificationRequestResponse)


@router.get("/request/{request_id}", response_model=VerificationRequestDetail)
async def request_status(request_id: str, db: AsyncSession = Depends(get_db)):
    req = await get_request(db, request_id)
    if req is None:
        raise NotFound("Verification request not found")
    return _request_view(
        req,
        VerificationRequestDetail,
        policy=req.policy or {},
        requested_fields=req.requested_fields or [],
        created_at=req.created_at,
        approved_at=req.approved_at,
        consumed_at=req.consumed_at,
    )


@router.post("/approve", response_model=DecisionResponse, response_model_exclude_none=True)
async def approve(
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    req, proof_token = await decide_request(db, tokens, body.request_id, body.decision)
    return DecisionResponse(
        request_id=req.id,
        status=req.status,
        approved_at=req.approved_at,
        proof_token=proof_token,
    )


@router.post("/consume", response_model=ConsumeResponse)
async def consume(
    body: ConsumeRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    result = await consume_proof(db, tokens, body.proof_token, body.verifier_name, body.verifier_domain)
    return ConsumeResponse(
        request_id=result.request.id,
        credential_id=result.credential.id,
        is_valid=result.receipt.disclosed_data["isValid"],
        decision=result.receipt.decision,
        trust_score=result.receipt.trust_score,
        credential_type=result.credential.type,
        issue_date=result.credential.issued_at,
        verified_at=result.request.consumed_at,
        receipt_id=result.receipt.id,
        receipt_hash=result.receipt.receipt_hash,
        explainability=Explainability(
            policy_checks=[
                PolicyCheckResponse(name=c.name, passed=c.passed, detail=c.detail)
                for c in result.policy_checks
            ],
            trust_breakdown=TrustBreakdownResponse(**result.trust.to_dict()),
            summary=result.summary,
        ),
    )


@router.get("/receipts/{receipt_id}", response_model=ReceiptResponse)
async def receipt(receipt_id: str, db: AsyncSession = Depends(get_db)):
    rec = await get_receipt(db, receipt_id)
    if rec is None:
        raise NotFound("Receipt not found")
    req = await get_request(db, rec.verification_request_id)
    return ReceiptResponse(
        id=rec.id,
        verification_request_id=rec.verification_request_id,
        credential_id=rec.credential_id,
        verifier_name=rec.verifier_name,
        verifier_domain=rec.verifier_domain,
        purpose=rec.purpose,
        decision=rec.decision,
        disclosed_data=rec.disclosed_data,
        trust_score=rec.trust_score,
        receipt_hash=rec.receipt_hash,
        created_at=rec.created_at,
        hash_verified=req is not None and receipt_hash_matches(rec, req),
    )


def _request_view(req, schema, **extra):
    return schema(
        request_id=req.id,
        credential_id=req.credential_id,
        verifier_name=req.verifier_name,
        verifier_domain=req.verifier_domain,
        purpose=req.purpose,
        nonce=req.nonce,
        expires_at=req.expires_at,
        status=req.status,
        **extra,
    )
