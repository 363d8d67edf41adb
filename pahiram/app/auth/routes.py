"""
Authentication routes for APCIS login federation and logout.

Endpoints:
- POST   /login       Exchange APCIS credentials for a Pahiram session token
- DELETE /logout      Revoke the token used for this request
- DELETE /logout-all  Revoke every session token and APCIS token of the user
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.apcis_client import ApcisClient
from app.auth.service import LoginService, error_body
from app.auth.session import TokenIssuer, get_current_token, get_token_issuer
from app.config import Settings, get_settings
from app.db.models import PersonalAccessToken
from app.db.session import get_db
from app.models import ErrorResponse, LoginRequest, LoginResponse, MessageResponse
from app.users.defaults import RoleDefaultsPolicy

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(tags=["authentication"])


# =============================================================================
# Dependencies
# =============================================================================

def get_apcis_client(request: Request) -> ApcisClient:
    """
    Dependency to get the APCIS client from app state.

    Raises:
        HTTPException: 503 if the client was not initialized
    """
    app_state = getattr(request.app.state, "app_state", None)
    client = getattr(app_state, "apcis_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="APCIS client not initialized",
        )
    return client


def get_login_service(
    db: AsyncSession = Depends(get_db),
    apcis_client: ApcisClient = Depends(get_apcis_client),
    settings: Settings = Depends(get_settings),
) -> LoginService:
    return LoginService(
        session=db,
        apcis_client=apcis_client,
        defaults_policy=RoleDefaultsPolicy(settings.DEFAULT_USER_ROLE),
        settings=settings,
        logger=logging.getLogger("app.auth.login"),
    )


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.post(
    "/login",
    responses={
        200: {"model": LoginResponse},
        401: {"description": "APCIS rejected the credentials; body passed through"},
        500: {"model": ErrorResponse},
    },
)
async def login(
    credentials: LoginRequest,
    service: LoginService = Depends(get_login_service),
) -> JSONResponse:
    """
    Log in through APCIS.

    Returns:
        200 with user profile, pahiram_token and apcis_token;
        401 with APCIS's own body if APCIS rejected the credentials;
        500 with a generic error otherwise.
    """
    result = await service.login(credentials)
    return JSONResponse(status_code=result.status_code, content=result.body)


# =============================================================================
# Logout Endpoints
# =============================================================================

@auth_router.delete(
    "/logout",
    responses={200: {"model": MessageResponse}, 500: {"model": ErrorResponse}},
)
async def logout(
    current_token: PersonalAccessToken = Depends(get_current_token),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> JSONResponse:
    """Delete the session token that authenticated this request."""
    user_id = current_token.user_id
    try:
        await issuer.revoke(current_token)
        await issuer.session.commit()
    except SQLAlchemyError as e:
        await issuer.session.rollback()
        logger.error(
            f"Logout failed: {e}",
            extra={"user_id": user_id},
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Unexpected error", method="DELETE"),
        )

    logger.info("User logged out", extra={"user_id": user_id})
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": True, "message": "Logged out", "method": "DELETE"},
    )


@auth_router.delete(
    "/logout-all",
    responses={200: {"model": MessageResponse}, 500: {"model": ErrorResponse}},
)
async def logout_all_devices(
    current_token: PersonalAccessToken = Depends(get_current_token),
    issuer: TokenIssuer = Depends(get_token_issuer),
) -> JSONResponse:
    """
    Delete every session token and every stored APCIS token of the user.

    Both deletes share one transaction: either the user is logged out
    everywhere or nothing changes.
    """
    user_id = current_token.user_id
    try:
        removed = await issuer.revoke_all(user_id)
        await issuer.session.commit()
    except SQLAlchemyError as e:
        await issuer.session.rollback()
        logger.error(
            f"Logout from all devices failed: {e}",
            extra={"user_id": user_id},
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("Unexpected error", method="DELETE"),
        )

    logger.info("User logged out from all devices", extra={"user_id": user_id, **removed})
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": True, "message": "Logged out from all devices", "method": "DELETE"},
    )
