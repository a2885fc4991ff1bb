"""FastAPI dependencies for authentication."""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.auth.identity import AuthenticatedUser, IdentityClient
from app.config import settings
from app.exceptions import Unauthorized

security = HTTPBearer(auto_error=False)


def get_identity_client() -> IdentityClient:
    """Identity client built from settings; overridden in tests."""
    return IdentityClient(
        base_url=settings.AUTH_SERVICE_URL,
        api_key=settings.AUTH_SERVICE_API_KEY,
        timeout=settings.AUTH_TIMEOUT_SECONDS,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    identity: IdentityClient = Depends(get_identity_client),
) -> AuthenticatedUser:
    """
    FastAPI dependency resolving the Bearer token to a user.
    Raises Unauthorized if the token is missing or rejected.
    """
    if credentials is None:
        raise Unauthorized()

    return await identity.resolve(credentials.credentials)
