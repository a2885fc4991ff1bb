"""Client for the external identity service that issues user bearer tokens."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import status

from app.exceptions import Unauthorized, UpstreamFailure

logger = logging.getLogger(__name__)

USER_ENDPOINT = "/auth/v1/user"


@dataclass
class AuthenticatedUser:
    """Identity resolved from a bearer token."""

    id: str
    email: Optional[str] = None


class IdentityClient:
    """Resolves bearer tokens by asking the auth service who they belong to."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, token: str) -> AuthenticatedUser:
        """
        Return the user owning ``token``.

        Raises:
            Unauthorized: the service rejected the token.
            UpstreamFailure: the service is unconfigured, unreachable or failing.
        """
        if not token:
            raise Unauthorized()
        if not self.base_url:
            logger.error("AUTH_SERVICE_URL is not configured")
            raise UpstreamFailure("identity_unavailable")

        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(USER_ENDPOINT, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Identity service request failed: {e}")
            raise UpstreamFailure("identity_unavailable") from e

        if response.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Identity service returned {response.status_code}")
            raise UpstreamFailure("identity_unavailable")
        if response.status_code != status.HTTP_200_OK:
            raise Unauthorized()

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Identity service returned a non-JSON body: {e}")
            raise UpstreamFailure("identity_unavailable") from e

        user_id = data.get("id") if isinstance(data, dict) else None
        if not user_id:
            raise Unauthorized()

        return AuthenticatedUser(id=str(user_id), email=data.get("email"))
