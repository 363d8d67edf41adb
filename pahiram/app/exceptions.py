"""
Authentication exception hierarchy.

Every LoginError maps to a terminal state of the login flow and carries
the HTTP status and the client-safe message for that state. The message
of the underlying cause is logged, never returned.
"""

from typing import Any, Dict


class LoginError(Exception):
    """Base for failures of the login federation flow."""

    status_code: int = 500
    public_message: str = "Unexpected error"
    state: str = "Unexpected"


class RemoteUnavailable(LoginError):
    """APCIS could not be reached (timeout, connection error)."""

    public_message = "APCIS API login request failed"
    state = "RemoteError"


class MalformedRemoteResponse(LoginError):
    """APCIS answered with something that is not a login envelope."""

    state = "RemoteError"


class RemoteDenied(LoginError):
    """APCIS rejected the credentials; its body is passed through."""

    status_code = 401
    state = "RemoteDenied"

    def __init__(self, payload: Dict[str, Any]):
        super().__init__("APCIS rejected the login")
        self.payload = payload


class PersistenceError(LoginError):
    """A database write failed (constraint violation, unavailable DB)."""

    public_message = "User creation failed"
    state = "UserCreationFailed"


class MalformedRemoteToken(LoginError):
    """apcis_token.expires_at could not be parsed."""

    public_message = "Token issuance failed"
    state = "TokenPersistenceFailed"


class InvalidSessionToken(Exception):
    """A bearer token failed verification or was revoked."""


class TokenPersistenceError(PersistenceError):
    """Writing the APCIS token or the session token failed."""

    public_message = "Token issuance failed"
    state = "TokenPersistenceFailed"
