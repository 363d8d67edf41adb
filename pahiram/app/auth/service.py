"""
Login federation flow.

LoginService.login walks the states

    Start -> RemoteCallPending -> RemoteDenied | RemoteError | UserResolved
    UserResolved -> UserCreationFailed | TokenIssued
    TokenIssued -> TokenPersistenceFailed | Complete

and always returns a LoginResult; no exception escapes it. Every terminal
failure is logged with its cause, and only the fixed public message of
that state reaches the response body. The one exception is RemoteDenied,
whose APCIS body is passed through with HTTP 401.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.apcis_client import ApcisClient
from app.auth.session import TokenIssuer
from app.config import Settings
from app.exceptions import (
    LoginError,
    PersistenceError,
    RemoteDenied,
    TokenPersistenceError,
)
from app.models import ApcisLoginEnvelope, LoginRequest
from app.users.defaults import DefaultsPolicy
from app.users.repository import UserRepository


class LoginState(str, enum.Enum):
    START = "Start"
    REMOTE_CALL_PENDING = "RemoteCallPending"
    REMOTE_DENIED = "RemoteDenied"
    REMOTE_ERROR = "RemoteError"
    USER_RESOLVED = "UserResolved"
    USER_CREATION_FAILED = "UserCreationFailed"
    TOKEN_ISSUED = "TokenIssued"
    TOKEN_PERSISTENCE_FAILED = "TokenPersistenceFailed"
    COMPLETE = "Complete"
    UNEXPECTED = "Unexpected"


@dataclass
class LoginResult:
    status_code: int
    body: Dict[str, Any]
    state: LoginState


def error_body(message: str, method: str = "POST") -> Dict[str, Any]:
    return {"status": False, "error": message, "method": method}


class LoginService:
    """
    Sequences ApcisClient, UserRepository and TokenIssuer for one login.

    Collaborators are injected so tests can substitute any of them;
    `session` is the request's database session.
    """

    def __init__(
        self,
        session: AsyncSession,
        apcis_client: ApcisClient,
        defaults_policy: DefaultsPolicy,
        settings: Settings,
        logger: Optional[logging.Logger] = None,
    ):
        self.session = session
        self.apcis_client = apcis_client
        self.defaults_policy = defaults_policy
        self.users = UserRepository(session)
        self.tokens = TokenIssuer(session, settings)
        self.logger = logger or logging.getLogger(__name__)

    async def login(self, credentials: LoginRequest) -> LoginResult:
        state = LoginState.START
        try:
            state = self._enter(LoginState.REMOTE_CALL_PENDING)
            envelope = await self.apcis_client.login(credentials)

            user = await self._resolve_user(envelope)
            state = self._enter(LoginState.USER_RESOLVED, user_id=user.id)

            # Lookups run before any token row exists
            profile = await self._profile(user)

            pahiram_token = await self._issue_tokens(user, envelope)
            state = self._enter(LoginState.TOKEN_ISSUED, user_id=user.id)

            body = self._build_response(profile, pahiram_token, envelope)
            self._enter(LoginState.COMPLETE, user_id=user.id)
            return LoginResult(200, body, LoginState.COMPLETE)

        except RemoteDenied as e:
            return LoginResult(e.status_code, e.payload, LoginState.REMOTE_DENIED)

        except LoginError as e:
            await self._rollback()
            terminal = LoginState(e.state)
            self.logger.error(
                f"Login failed in state {state.value}: {e}",
                extra={"state": terminal.value, "exception_type": type(e).__name__},
            )
            return LoginResult(e.status_code, error_body(e.public_message), terminal)

        except Exception as e:
            await self._rollback()
            self.logger.error(
                f"Unexpected exception during login: {e}",
                extra={"state": state.value, "exception_type": type(e).__name__},
                exc_info=True,
            )
            return LoginResult(500, error_body("Unexpected error"), LoginState.UNEXPECTED)

    # =========================================================================
    # Steps
    # =========================================================================

    async def _resolve_user(self, envelope: ApcisLoginEnvelope):
        """Course and user lookup-or-create, committed on success."""
        data = envelope.data
        course = await self.users.find_or_create_course(data.course)
        user = await self.users.find_or_create_user(data.user, course, self.defaults_policy)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Commit of user failed: {e}") from e
        return user

    async def _issue_tokens(self, user, envelope: ApcisLoginEnvelope) -> str:
        """
        Persist the APCIS token and issue the session token, both with
        the APCIS expiry. Either both rows are committed or neither.
        """
        remote_token = envelope.data.apcis_token
        expires_at = self.tokens.parse_expires_at(remote_token.expires_at)

        await self.tokens.persist_remote_token(user.id, remote_token.access_token, expires_at)
        pahiram_token = await self.tokens.issue_session_token(user, expires_at)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            raise TokenPersistenceError(f"Commit of tokens failed: {e}") from e
        return pahiram_token

    async def _profile(self, user) -> Dict[str, Any]:
        """User columns with role and department codes in place of their ids."""
        role = await self.users.role_name(user.user_role_id)
        department = await self.users.department_code(user.department_id)
        return {
            **user.to_dict(),
            "department_code": department,
            "role": role,
        }

    def _build_response(
        self,
        profile: Dict[str, Any],
        pahiram_token: str,
        envelope: ApcisLoginEnvelope,
    ) -> Dict[str, Any]:
        return {
            "status": True,
            "data": {
                "user": profile,
                "pahiram_token": pahiram_token,
                "apcis_token": envelope.data.apcis_token.access_token,
            },
            "method": "POST",
        }

    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError as e:
            self.logger.error(f"Rollback after failed login also failed: {e}", exc_info=True)

    def _enter(self, state: LoginState, **context) -> LoginState:
        self.logger.debug(f"Login state -> {state.value}", extra=context)
        return state
