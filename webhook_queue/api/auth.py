"""
Authentication and authorization utilities.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from webhook_queue.config import get_settings

# Security scheme
security = HTTPBearer()


class TokenData(BaseModel):
    """Data extracted from JWT token."""

    tenant_id: str
    exp: datetime
    scopes: list[str] = []


class AuthenticatedUser(BaseModel):
    """Authenticated caller context."""

    tenant_id: str
    scopes: list[str] = []

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


def create_access_token(
    tenant_id: str,
    scopes: list[str] | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        tenant_id: The tenant identifier.
        scopes: Extra permissions, e.g. ``queue:wake`` for the sweep cron.
        expires_delta: Optional custom expiration time.

    Returns:
        The encoded JWT token.
    """
    settings = get_settings()

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.api_access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    to_encode = {
        "tenant_id": tenant_id,
        "scopes": list(scopes or []),
        "exp": now + expires_delta,
        "iat": now,
    }

    return jwt.encode(
        to_encode,
        settings.api_secret_key,
        algorithm=settings.api_algorithm,
    )


def decode_token(token: str) -> TokenData:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode.

    Returns:
        TokenData extracted from the token.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.api_secret_key,
            algorithms=[settings.api_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    tenant_id = payload.get("tenant_id")
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing tenant_id",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenData(
        tenant_id=tenant_id,
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        scopes=payload.get("scopes") or [],
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated caller.

    Raises:
        HTTPException: If authentication fails.
    """
    token_data = decode_token(credentials.credentials)

    return AuthenticatedUser(
        tenant_id=token_data.tenant_id,
        scopes=token_data.scopes,
    )


# Type alias for dependency injection
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


def require_scope(scope: str) -> Callable:
    """
    Build a dependency that rejects callers without ``scope``.

    Example:
        @router.post("/wake", dependencies=[Depends(require_scope("queue:wake"))])
    """

    async def dependency(current_user: CurrentUser) -> AuthenticatedUser:
        if not current_user.has_scope(scope):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required scope: {scope}",
            )
        return current_user

    return dependency
