"""Redeeming one-time proofs: at-most-once, expiry, identity binding, receipts."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trustlessid.errors import AlreadyConsumed, Expired, IdentityMismatch, InvalidProof, InvalidState, NotFound
from trustlessid.models import Credential, VerificationReceipt, VerificationRequest
from trustlessid.tokens.schemas import PROOF_TOKEN_TYPE
from trustlessid.verification.consumption import consume_proof, receipt_hash_matches
from trustlessid.verification.requests import create_request, decide_request

from conftest import VERIFIER_DOMAIN, VERIFIER_NAME, expire_now, fetch, in_session


@pytest.fixture
def approved_proof(session_factory, tokens, make_credential):
    """Create and approve a request; returns (credential, request, proof token)."""

    async def _approved(**credential_fields):
        credential = await make_credential(**credential_fields)
        req = await in_session(
            session_factory, create_request, str(credential.id), VERIFIER_NAME, VERIFIER_DOMAIN, "Account opening"
        )
        req, proof = await in_session(session_factory, decide_request, tokens, str(req.id), "approve")
        return credential, req, proof

    return _approved


async def consume(session_factory, tokens, proof, name=VERIFIER_NAME, domain=VERIFIER_DOMAIN):
    return await in_session(session_factory, consume_proof, tokens, proof, name, domain)


async def receipt_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(VerificationReceipt))


class TestConsume:
    async def test_active_credential_passes(self, session_factory, tokens, approved_proof):
        credential, req, proof = await approved_proof(verification_count=3, age_days=10)

        result = await consume(session_factory, tokens, proof)

        assert result.trust.to_dict() == {
            "base": 70,
            "verification_points": 3,
            "age_points": 10,
            "expired_penalty": 0,
            "final_score": 83,
        }
        assert result.receipt.decision == "pass"
        assert result.receipt.trust_score == 83
        assert result.receipt.disclosed_data == {
            "credentialType": "identity",
            "issueDate": credential.issued_at.isoformat(),
            "isValid": True,
        }
        assert result.receipt.receipt_hash.startswith("sha256:")
        assert result.summary == "Verification passed with consent-bound one-time proof."
        assert [c.name for c in result.policy_checks] == [
            "Credential is active",
            "Request approved by holder",
            "Request not expired",
            "Verifier identity matches token",
            "Replay protection",
        ]
        assert all(c.passed for c in result.policy_checks)

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "consumed"
        assert stored.consumed_at is not None
        assert stored.approved_at is not None
        assert receipt_hash_matches(result.receipt, stored)

        refreshed = await fetch(session_factory, Credential, credential.id)
        assert refreshed.verification_count == 4

    async def test_expired_credential_fails_with_penalty(self, session_factory, tokens, approved_proof):
        _, _, proof = await approved_proof(status="expired", verification_count=3, age_days=10)
        result = await consume(session_factory, tokens, proof)
        assert result.receipt.decision == "fail"
        assert result.trust.expired_penalty == 50
        assert result.trust.final_score == 33
        assert result.policy_checks[0].passed is False
        assert result.summary == "Verification failed because credential is not active."

    async def test_revoked_credential_fails_without_penalty(self, session_factory, tokens, approved_proof):
        _, _, proof = await approved_proof(status="revoked")
        result = await consume(session_factory, tokens, proof)
        assert result.receipt.decision == "fail"
        assert result.trust.expired_penalty == 0
        assert result.receipt.disclosed_data["isValid"] is False

    async def test_replay_is_already_consumed(self, session_factory, tokens, approved_proof):
        _, _, proof = await approved_proof()
        await consume(session_factory, tokens, proof)

        with pytest.raises(AlreadyConsumed) as excinfo:
            await consume(session_factory, tokens, proof)
        assert "Replay blocked" in excinfo.value.detail
        assert excinfo.value.status_code == 409
        assert await receipt_count(session_factory) == 1

    async def test_expired_request_is_rejected(self, session_factory, tokens, approved_proof):
        _, req, proof = await approved_proof()
        await expire_now(session_factory, req.id)

        with pytest.raises(Expired):
            await consume(session_factory, tokens, proof)

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "expired"
        assert stored.consumed_at is None
        assert await receipt_count(session_factory) == 0

    async def test_identity_must_match(self, session_factory, tokens, approved_proof):
        _, req, proof = await approved_proof()
        with pytest.raises(IdentityMismatch):
            await consume(session_factory, tokens, proof, name="Evil Corp")
        with pytest.raises(IdentityMismatch):
            await consume(session_factory, tokens, proof, domain="evil.example")

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "approved"

    async def test_identity_match_ignores_case(self, session_factory, tokens, approved_proof):
        _, _, proof = await approved_proof()
        result = await consume(session_factory, tokens, proof, name="ACME BANK", domain="Acme.Example")
        assert result.receipt.verifier_domain == VERIFIER_DOMAIN

    @pytest.mark.parametrize(
        "name, domain",
        [
            (f"  {VERIFIER_NAME}  ", VERIFIER_DOMAIN),
            (VERIFIER_NAME, f"{VERIFIER_DOMAIN} "),
            (VERIFIER_NAME, "ACME.EXAMPLE\t"),
        ],
    )
    async def test_identity_match_is_not_whitespace_tolerant(
        self, session_factory, tokens, approved_proof, name, domain
    ):
        _, req, proof = await approved_proof()
        with pytest.raises(IdentityMismatch):
            await consume(session_factory, tokens, proof, name=name, domain=domain)

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "approved"
        assert await receipt_count(session_factory) == 0

    async def test_pending_request_is_invalid_state(self, session_factory, tokens, make_credential):
        credential = await make_credential()
        req = await in_session(
            session_factory, create_request, str(credential.id), VERIFIER_NAME, VERIFIER_DOMAIN, "Account opening"
        )
        # A correctly signed proof for a request the holder never approved.
        proof = tokens.issue_proof_token(
            request_id=str(req.id),
            credential_id=str(credential.id),
            verifier_name=VERIFIER_NAME,
            verifier_domain=VERIFIER_DOMAIN,
            purpose="Account opening",
            nonce=req.nonce,
        )
        with pytest.raises(InvalidState):
            await consume(session_factory, tokens, proof)

    async def test_nonce_must_bind_to_request(self, session_factory, tokens, approved_proof):
        credential, req, _ = await approved_proof()
        forged = tokens.issue_proof_token(
            request_id=str(req.id),
            credential_id=str(credential.id),
            verifier_name=VERIFIER_NAME,
            verifier_domain=VERIFIER_DOMAIN,
            purpose="Account opening",
            nonce="not-the-nonce",
        )
        with pytest.raises(InvalidProof):
            await consume(session_factory, tokens, forged)

    async def test_expired_proof_token(self, session_factory, tokens, approved_proof):
        credential, req, _ = await approved_proof()
        stale = tokens.issue(
            {
                "requestId": str(req.id),
                "credentialId": str(credential.id),
                "verifierName": VERIFIER_NAME,
                "verifierDomain": VERIFIER_DOMAIN,
                "purpose": "Account opening",
                "nonce": req.nonce,
            },
            PROOF_TOKEN_TYPE,
            timedelta(seconds=-1),
        )
        with pytest.raises(InvalidProof):
            await consume(session_factory, tokens, stale)

    async def test_session_token_is_not_a_proof(self, session_factory, tokens):
        session_token = tokens.issue_session_token("user-1", "holder@trustlessid.com")
        with pytest.raises(InvalidProof):
            await consume(session_factory, tokens, session_token)

    async def test_missing_credential_rolls_back_consumption(self, session_factory, tokens, approved_proof):
        credential, req, proof = await approved_proof()
        async with session_factory() as session:
            await session.execute(delete(Credential).where(Credential.id == credential.id))
            await session.commit()

        with pytest.raises(NotFound):
            await consume(session_factory, tokens, proof)

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "approved"
        assert stored.consumed_at is None
        assert await receipt_count(session_factory) == 0

    async def test_counter_failure_does_not_fail_consumption(
        self, session_factory, tokens, approved_proof, monkeypatch
    ):
        credential, _, proof = await approved_proof(verification_count=3)

        def savepoint_unavailable(self, *args, **kwargs):
            raise SQLAlchemyError("savepoint unavailable")

        monkeypatch.setattr(AsyncSession, "begin_nested", savepoint_unavailable)
        result = await consume(session_factory, tokens, proof)

        assert result.receipt.decision == "pass"
        refreshed = await fetch(session_factory, Credential, credential.id)
        assert refreshed.verification_count == 3


class TestConcurrentConsume:
    @pytest.mark.parametrize("n", [2, 5, 8])
    async def test_exactly_one_consumer_wins(self, session_factory, tokens, approved_proof, n):
        _, req, proof = await approved_proof()

        results = await asyncio.gather(
            *(consume(session_factory, tokens, proof) for _ in range(n)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == n - 1
        assert all(isinstance(e, (AlreadyConsumed, InvalidState)) for e in losers)
        assert await receipt_count(session_factory) == 1

        stored = await fetch(session_factory, VerificationRequest, req.id)
        assert stored.status == "consumed"
