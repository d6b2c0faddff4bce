import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from trustlessid.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# Credential status
CREDENTIAL_ACTIVE = "active"
CREDENTIAL_REVOKED = "revoked"
CREDENTIAL_EXPIRED = "expired"

CREDENTIAL_TYPES = ("identity", "address", "age")

# VerificationRequest status
STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_EXPIRED = "expired"
STATUS_CONSUMED = "consumed"

TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_EXPIRED, STATUS_CONSUMED})

DECISION_PASS = "pass"
DECISION_FAIL = "fail"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    verified = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    credentials = relationship("Credential", back_populates="user", cascade="all, delete-orphan")


class Credential(Base):
    __tablename__ = "credentials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    document_id = Column(String(255))
    hash = Column(String(100), unique=True, nullable=False)  # sha256:<hex>
    source_document_hash = Column(String(100))
    type = Column(String(50), nullable=False)  # identity, address, age
    status = Column(String(20), nullable=False, default=CREDENTIAL_ACTIVE)  # active, revoked, expired
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime)
    verification_count = Column(Integer, nullable=False, default=0)

    user = relationship("User", back_populates="credentials")


class VerificationRequest(Base):
    __tablename__ = "verification_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    credential_id = Column(Uuid, ForeignKey("credentials.id"), nullable=False, index=True)
    verifier_name = Column(String(255), nullable=False)
    verifier_domain = Column(String(255), nullable=False)
    purpose = Column(Text, nullable=False)
    policy = Column(JSON, nullable=False, default=dict)  # e.g. {"requiresActiveCredential": true}
    requested_fields = Column(JSON, nullable=False, default=list)
    nonce = Column(String(64), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    approved_at = Column(DateTime)
    consumed_at = Column(DateTime)


class VerificationReceipt(Base):
    __tablename__ = "verification_receipts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    verification_request_id = Column(
        Uuid, ForeignKey("verification_requests.id"), unique=True, nullable=False
    )
    credential_id = Column(Uuid, ForeignKey("credentials.id"), nullable=False, index=True)
    verifier_name = Column(String(255), nullable=False)
    verifier_domain = Column(String(255), nullable=False)
    purpose = Column(Text, nullable=False)
    decision = Column(String(10), nullable=False)  # pass, fail
    disclosed_data = Column(JSON, nullable=False)  # credentialType, issueDate, isValid only
    trust_score = Column(Integer, nullable=False)
    receipt_hash = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


def parse_uuid(value) -> uuid.UUID | None:
    """Parse a wire id; malformed ids resolve to nothing rather than erroring."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None
