"""Authentication utilities for the agentmarket backend."""

from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

# Bearer token scheme
security = HTTPBearer(auto_error=False)


def create_access_token(
    agent_id: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for an agent (requester or admin)."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    claims = {
        "sub": agent_id,
        "exp": issued_at + lifetime,
        "iat": issued_at,
        "type": "access",
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthContext:
    """Context from JWT token containing the agent id."""

    def __init__(self, agent_id: str, is_admin: bool = False):
        self.agent_id = agent_id
        self.is_admin = is_admin


async def get_current_agent(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AuthContext:
    """Get the current authenticated agent context from the bearer token."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated - provide Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials, settings)
    agent_id = payload.get("sub")
    if not agent_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthContext(agent_id=agent_id, is_admin=agent_id in settings.admin_agent_ids)


async def get_admin_agent(
    agent: Annotated[AuthContext, Depends(get_current_agent)],
) -> AuthContext:
    """Require an admin agent."""
    if not agent.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return agent


# Type aliases for dependency injection
CurrentAgent = Annotated[AuthContext, Depends(get_current_agent)]
AdminAgent = Annotated[AuthContext, Depends(get_admin_agent)]
