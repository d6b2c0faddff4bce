from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PROOF_TOKEN_TYPE = "verification_proof"
SESSION_TOKEN_TYPE = "session"


class ProofClaims(BaseModel):
    """Payload of a one-time verification proof, keyed in camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str
    request_id: str
    credential_id: str
    verifier_name: str
    verifier_domain: str
    purpose: str
    nonce: str
    iat: int
    exp: int = Field(gt=0)
