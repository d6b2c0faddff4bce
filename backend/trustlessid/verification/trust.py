"""Trust score for a credential: base 70, plus usage and age, minus an expiry penalty, clamped to 0-100."""

from dataclasses import asdict, dataclass
from datetime import datetime

from trustlessid.models import CREDENTIAL_ACTIVE, CREDENTIAL_EXPIRED, Credential, utcnow

BASE_SCORE = 70
MAX_VERIFICATION_POINTS = 10
MAX_AGE_POINTS = 20
EXPIRED_PENALTY = 50


@dataclass(frozen=True)
class TrustBreakdown:
    base: int
    verification_points: int
    age_points: int
    expired_penalty: int
    final_score: int

    def to_dict(self) -> dict:
        return asdict(self)


def days_since(moment: datetime, now: datetime | None = None) -> int:
    now = now or utcnow()
    return (now - moment).days


def compute_trust_breakdown(credential: Credential, now: datetime | None = None) -> TrustBreakdown:
    verification_points = min(credential.verification_count or 0, MAX_VERIFICATION_POINTS)
    # A credential dated in the future earns no age points.
    age_points = max(0, min(days_since(credential.issued_at, now), MAX_AGE_POINTS))
    expired_penalty = EXPIRED_PENALTY if credential.status == CREDENTIAL_EXPIRED else 0

    raw = BASE_SCORE + verification_points + age_points - expired_penalty
    return TrustBreakdown(
        base=BASE_SCORE,
        verification_points=verification_points,
        age_points=age_points,
        expired_penalty=expired_penalty,
        final_score=min(100, max(0, raw)),
    )


def is_valid(credential: Credential) -> bool:
    return credential.status == CREDENTIAL_ACTIVE
