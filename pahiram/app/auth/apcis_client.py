"""
APCIS identity API client.

Performs the single outbound login call and turns the response into an
ApcisLoginEnvelope, or into one of the LoginError subclasses:

- transport failure / timeout   -> RemoteUnavailable
- body is not a login envelope  -> MalformedRemoteResponse
- "status": false               -> RemoteDenied (body passed through)
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.exceptions import MalformedRemoteResponse, RemoteDenied, RemoteUnavailable
from app.models import ApcisLoginEnvelope, LoginRequest

logger = logging.getLogger(__name__)


class ApcisClient:
    """
    Thin wrapper around a shared httpx.AsyncClient.

    No retries: a struggling APCIS degrades logins up to the timeout and
    the failure is returned to the caller.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        login_url: str,
        timeout: float = 10.0,
    ):
        self._http = http_client
        self._login_url = login_url
        self._timeout = timeout

    async def login(self, credentials: LoginRequest) -> ApcisLoginEnvelope:
        """
        Exchange credentials with APCIS.

        Args:
            credentials: Validated login request, forwarded as-is

        Returns:
            Parsed envelope of an accepted login

        Raises:
            RemoteUnavailable, MalformedRemoteResponse, RemoteDenied
        """
        try:
            response = await self._http.post(
                self._login_url,
                json=credentials.model_dump(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(
                f"APCIS login request timed out: {e!r}",
                extra={"url": self._login_url, "timeout": self._timeout},
            )
            raise RemoteUnavailable(f"Timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            logger.error(
                f"APCIS login request failed: {e}",
                extra={"url": self._login_url, "exception_type": type(e).__name__},
            )
            raise RemoteUnavailable(str(e)) from e

        payload = _decode_body(response)
        if payload is None or "status" not in payload:
            logger.error(
                "APCIS returned an unrecognised body",
                extra={"status_code": response.status_code},
            )
            raise MalformedRemoteResponse(
                f"Unexpected APCIS response (HTTP {response.status_code})"
            )

        if not payload["status"]:
            logger.info(
                "APCIS rejected login",
                extra={"status_code": response.status_code},
            )
            raise RemoteDenied(payload)

        try:
            return ApcisLoginEnvelope.model_validate(payload)
        except ValidationError as e:
            logger.error(
                "APCIS login envelope failed validation",
                extra={"errors": e.error_count()},
            )
            raise MalformedRemoteResponse("Invalid APCIS login envelope") from e


def _decode_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """JSON object body, or None when the body is anything else."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
