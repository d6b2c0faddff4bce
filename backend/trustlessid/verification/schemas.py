import uuid
from datetime import datetime
from typing import Literal

from pydantic import Field

from trustlessid.schemas import CamelModel


class CreateVerificationRequest(CamelModel):
    credential_id: str = Field(min_length=1)
    verifier_name: str = Field(min_length=1, max_length=255)
    verifier_domain: str = Field(min_length=1, max_length=255)
    purpose: str = Field(min_length=1)
    policy: dict | None = None
    requested_fields: list[str] | None = None


class VerificationRequestResponse(CamelModel):
    request_id: uuid.UUID
    credential_id: uuid.UUID
    verifier_name: str
    verifier_domain: str
    purpose: str
    nonce: str
    expires_at: datetime
    status: str


class VerificationRequestDetail(VerificationRequestResponse):
    policy: dict
    requested_fields: list[str]
    created_at: datetime
    approved_at: datetime | None = None
    consumed_at: datetime | None = None


class DecisionRequest(CamelModel):
    request_id: str = Field(min_length=1)
    decision: Literal["approve", "reject"]


class DecisionResponse(CamelModel):
    request_id: uuid.UUID
    status: str
    approved_at: datetime | None = None
    proof_token: str | None = None


class ConsumeRequest(CamelModel):
    proof_token: str = Field(min_length=1)
    verifier_name: str = Field(min_length=1)
    verifier_domain: str = Field(min_length=1)


class PolicyCheckResponse(CamelModel):
    name: str
    passed: bool
    detail: str


class TrustBreakdownResponse(CamelModel):
    base: int
    verification_points: int
    age_points: int
    expired_penalty: int
    final_score: int


class Explainability(CamelModel):
    policy_checks: list[PolicyCheckResponse]
    trust_breakdown: TrustBreakdownResponse
    summary: str


class ConsumeResponse(CamelModel):
    request_id: uuid.UUID
    credential_id: uuid.UUID
    is_valid: bool
    decision: str
    trust_score: int
    credential_type: str
    issue_date: datetime
    verified_at: datetime
    receipt_id: uuid.UUID
    receipt_hash: str
    explainability: Explainability


class PublicVerificationResponse(CamelModel):
    credential_id: uuid.UUID
    is_valid: bool
    trust_score: int
    issue_date: datetime
    credential_type: str
    verified_at: datetime


class ReceiptResponse(CamelModel):
    id: uuid.UUID
    verification_request_id: uuid.UUID
    credential_id: uuid.UUID
    verifier_name: str
    verifier_domain: str
    purpose: str
    decision: str
    disclosed_data: dict
    trust_score: int
    receipt_hash: str
    created_at: datetime
    hash_verified: bool
