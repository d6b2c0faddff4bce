"""Failure kinds of the verification flow.

Each error carries the HTTP status and a stable ``code`` so clients can tell
the failure modes apart (a replayed proof is ``already_consumed``, never a
generic state error).
"""


class VerificationError(Exception):
    """Base class for every user-facing verification failure."""

    status_code = 400
    code = "verification_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidInput(VerificationError):
    """Missing or malformed input."""

    code = "validation_error"


class NotFound(VerificationError):
    status_code = 404
    code = "not_found"


class InvalidState(VerificationError):
    """The request is not in the lifecycle stage the operation needs."""

    code = "invalid_state"


class Expired(VerificationError):
    code = "expired"


class AlreadyConsumed(VerificationError):
    """The one-time proof was already redeemed."""

    status_code = 409
    code = "already_consumed"


class IdentityMismatch(VerificationError):
    status_code = 403
    code = "identity_mismatch"


class InvalidProof(VerificationError):
    """Bad signature, expiry or purpose tag. The detail never names the failed check."""

    status_code = 401
    code = "invalid_proof"


class Unauthorized(VerificationError):
    """Missing, malformed or expired holder session."""

    status_code = 401
    code = "unauthorized"


class InternalError(VerificationError):
    status_code = 500
    code = "internal_error"
