"""
Session Token Management Module
===============================

Issues, verifies and revokes Pahiram session tokens, and stores the APCIS
access token that came with each login.

A session token is an HS256/384/512 JWT whose `jti` names a row in
`personal_access_tokens`. Only the sha256 of the token is stored, so the
plain-text value exists exactly once: in the login response. Deleting the
row revokes the token even though its signature stays valid.

The token's `exp` is not chosen here: it is copied from the APCIS token's
`expires_at`, and the same datetime is written to both token tables.
"""

import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.db.models import ApcisTokenRecord, PersonalAccessToken, User, utcnow
from app.db.session import get_db
from app.exceptions import InvalidSessionToken, MalformedRemoteToken, TokenPersistenceError

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenIssuer:
    """
    Session-scoped token operations.

    Nothing here commits; the caller owns the transaction so the two
    token rows of a login are written together or not at all.
    """

    def __init__(self, session: AsyncSession, settings: Settings):
        self.session = session
        self.settings = settings

    # =========================================================================
    # Expiry
    # =========================================================================

    def parse_expires_at(self, raw: Any) -> datetime:
        """
        Parse APCIS's textual expires_at into a naive UTC datetime.

        Raises:
            MalformedRemoteToken: If the value does not match
                                  APCIS_EXPIRES_AT_FORMAT
        """
        if not isinstance(raw, str):
            raise MalformedRemoteToken(f"expires_at is not a string: {type(raw).__name__}")
        try:
            local = datetime.strptime(raw, self.settings.APCIS_EXPIRES_AT_FORMAT)
        except ValueError as e:
            raise MalformedRemoteToken(f"Unparseable expires_at: {raw!r}") from e

        aware = local.replace(tzinfo=self.settings.apcis_zone)
        return aware.astimezone(timezone.utc).replace(tzinfo=None)

    # =========================================================================
    # Token Creation
    # =========================================================================

    async def issue_session_token(self, user: User, expires_at: datetime) -> str:
        """
        Create a session token for `user` expiring at `expires_at`.

        Args:
            user: Persisted user (must have an id)
            expires_at: Naive UTC expiry, shared with the APCIS token row

        Returns:
            The plain-text token. It is not recoverable afterwards.

        Raises:
            TokenPersistenceError: If the token row cannot be written
        """
        jti = uuid.uuid4().hex
        now = utcnow()
        payload = {
            "sub": str(user.id),
            "jti": jti,
            "iss": self.settings.SESSION_JWT_ISSUER,
            "iat": now.replace(tzinfo=timezone.utc),
            "exp": expires_at.replace(tzinfo=timezone.utc),
        }
        token = jwt.encode(
            payload,
            self.settings.SESSION_JWT_SECRET,
            algorithm=self.settings.SESSION_JWT_ALGORITHM,
        )

        row = PersonalAccessToken(
            user_id=user.id,
            name=self.settings.SESSION_TOKEN_NAME,
            jti=jti,
            token_hash=hash_token(token),
            abilities=["*"],
            expires_at=expires_at,
        )
        self.session.add(row)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise TokenPersistenceError(f"Session token insert failed: {e}") from e

        logger.debug(
            "Issued session token",
            extra={"user_id": user.id, "token_id": row.id, "expires_at": expires_at.isoformat()},
        )
        return token

    async def persist_remote_token(
        self,
        user_id: int,
        access_token: str,
        expires_at: datetime,
    ) -> ApcisTokenRecord:
        """Record the APCIS access token handed out with this login."""
        record = ApcisTokenRecord(user_id=user_id, token=access_token, expires_at=expires_at)
        self.session.add(record)
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise TokenPersistenceError(f"APCIS token insert failed: {e}") from e
        return record

    # =========================================================================
    # Token Verification
    # =========================================================================

    def decode(self, token: str) -> Dict[str, Any]:
        """
        Verify signature, expiry and issuer of a session token.

        Raises:
            InvalidSessionToken: With a reason safe to show to the client
        """
        try:
            return jwt.decode(
                token,
                self.settings.SESSION_JWT_SECRET,
                algorithms=[self.settings.SESSION_JWT_ALGORITHM],
                issuer=self.settings.SESSION_JWT_ISSUER,
                options={"require": ["exp", "iat", "sub", "jti", "iss"]},
            )
        except ExpiredSignatureError as e:
            raise InvalidSessionToken("Token has expired") from e
        except InvalidTokenError as e:
            raise InvalidSessionToken("Invalid token") from e

    async def authenticate(self, token: str) -> PersonalAccessToken:
        """
        Resolve a bearer token to its stored row.

        Raises:
            InvalidSessionToken: If the token is forged, expired or revoked
        """
        claims = self.decode(token)

        result = await self.session.execute(
            select(PersonalAccessToken).where(PersonalAccessToken.jti == claims["jti"])
        )
        row: Optional[PersonalAccessToken] = result.scalar_one_or_none()
        if row is None or not hmac.compare_digest(row.token_hash, hash_token(token)):
            raise InvalidSessionToken("Token has been revoked")
        if row.expires_at <= utcnow():
            raise InvalidSessionToken("Token has expired")

        row.last_used_at = utcnow()
        return row

    # =========================================================================
    # Token Revocation
    # =========================================================================

    async def revoke(self, row: PersonalAccessToken) -> None:
        """Delete exactly this session token."""
        await self.session.delete(row)

    async def revoke_all(self, user_id: int) -> Dict[str, int]:
        """
        Delete every session token and every APCIS token row of a user.

        Both deletes run in the caller's transaction; commit once after.
        """
        sessions = await self.session.execute(
            delete(PersonalAccessToken).where(PersonalAccessToken.user_id == user_id)
        )
        remote = await self.session.execute(
            delete(ApcisTokenRecord).where(ApcisTokenRecord.user_id == user_id)
        )
        return {"session_tokens": sessions.rowcount, "apcis_tokens": remote.rowcount}


# =============================================================================
# Helper Functions
# =============================================================================

def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or its format is invalid
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_token_issuer(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TokenIssuer:
    return TokenIssuer(db, settings)


async def get_current_token(
    authorization: Optional[str] = Header(None),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> PersonalAccessToken:
    """
    FastAPI dependency resolving the bearer token of the request.

    Usage in routes:
        @router.delete("/logout")
        async def logout(token: PersonalAccessToken = Depends(get_current_token)):
            ...

    Raises:
        HTTPException: 401 if authentication fails
    """
    token = extract_token_from_header(authorization)
    try:
        return await issuer.authenticate(token)
    except InvalidSessionToken as e:
        logger.warning(f"Rejected session token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


__all__ = [
    "TokenIssuer",
    "hash_token",
    "extract_token_from_header",
    "get_token_issuer",
    "get_current_token",
]
