"""HMAC-signed, time-bound, typed tokens (JWS via python-jose)."""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from jose import JWTError, jwt
from pydantic import ValidationError

from trustlessid.config import settings

from .schemas import PROOF_TOKEN_TYPE, SESSION_TOKEN_TYPE, ProofClaims

logger = logging.getLogger(__name__)

SESSION_TTL = timedelta(days=7)
PROOF_TTL = timedelta(minutes=2)

_RESERVED_CLAIMS = ("type", "iat", "exp", "iss", "jti")


class TokenService:
    """Issues and verifies signed tokens for one signing secret.

    Every token carries a ``type`` purpose tag. ``verify`` fails closed: a bad
    signature, a malformed payload, an expired token, a foreign issuer and a
    wrong purpose all produce the same ``None``.
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        issuer: str = "TrustlessID",
        session_ttl: timedelta = SESSION_TTL,
        proof_ttl: timedelta = PROOF_TTL,
    ):
        if not secret:
            raise ValueError("A signing secret is required")
        if not algorithm.startswith("HS"):
            raise ValueError(f"Only HMAC algorithms are supported, got {algorithm}")
        self._secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.session_ttl = session_ttl
        self.proof_ttl = proof_ttl

    def issue(self, claims: dict, purpose: str, ttl: timedelta) -> str:
        """Sign ``claims`` with purpose tag and absolute expiry ``now + ttl``."""
        clashing = [k for k in _RESERVED_CLAIMS if k in claims]
        if clashing:
            raise ValueError(f"Claims may not set reserved fields: {', '.join(clashing)}")
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": purpose,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "iss": self.issuer,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str, purpose: str | None = None) -> dict | None:
        """Return the claims of a valid token, or None."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": True, "require_exp": True, "require_iat": True},
            )
        except (JWTError, AttributeError, TypeError):
            return None
        if purpose is not None and payload.get("type") != purpose:
            logger.debug("Rejected token with purpose %r, expected %r", payload.get("type"), purpose)
            return None
        return payload

    # -- session tokens ---------------------------------------------------

    def issue_session_token(self, user_id: str, email: str) -> str:
        return self.issue({"sub": user_id, "email": email}, SESSION_TOKEN_TYPE, self.session_ttl)

    def verify_session_token(self, token: str) -> str | None:
        """Return the user id of a valid session token."""
        payload = self.verify(token, SESSION_TOKEN_TYPE)
        if payload is None:
            return None
        return payload.get("sub")

    # -- verification proofs ----------------------------------------------

    def issue_proof_token(
        self,
        *,
        request_id: str,
        credential_id: str,
        verifier_name: str,
        verifier_domain: str,
        purpose: str,
        nonce: str,
    ) -> str:
        claims = {
            "requestId": request_id,
            "credentialId": credential_id,
            "verifierName": verifier_name,
            "verifierDomain": verifier_domain,
            "purpose": purpose,
            "nonce": nonce,
        }
        return self.issue(claims, PROOF_TOKEN_TYPE, self.proof_ttl)

    def verify_proof_token(self, token: str) -> ProofClaims | None:
        payload = self.verify(token, PROOF_TOKEN_TYPE)
        if payload is None:
            return None
        try:
            return ProofClaims.model_validate(payload)
        except ValidationError:
            return None


@lru_cache
def get_token_service() -> TokenService:
    """FastAPI dependency: the token service configured from settings."""
    return TokenService(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        issuer=settings.token_issuer,
        session_ttl=timedelta(days=settings.session_ttl_days),
        proof_ttl=timedelta(seconds=settings.proof_ttl_seconds),
    )
