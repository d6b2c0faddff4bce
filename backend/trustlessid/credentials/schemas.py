import uuid
from datetime import datetime
from typing import Literal

from pydantic import Field

from trustlessid.schemas import CamelModel


class IssueCredentialRequest(CamelModel):
    type: Literal["identity", "address", "age"]
    document_id: str | None = None
    evidence_hash: str | None = Field(default=None, pattern=r"^sha256:[a-f0-9]{64}$")


class CredentialResponse(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    hash: str
    source_document_hash: str | None
    type: str
    status: str
    issued_at: datetime
    expires_at: datetime | None
    verification_count: int
