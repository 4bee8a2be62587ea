"""
Security utilities.
- API key authentication
- Actor context from request headers
"""

from typing import Optional

from fastapi import Header, HTTPException, Security
from fastapi.security import APIKeyHeader
from leadsync.config import config
from leadsync.logging_config import get_logger
from leadsync.models import Actor, Role

logger = get_logger(__name__)

# API Key authentication scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(api_key: str = Security(api_key_header)) -> str:
    """
    Verify API key for protected endpoints.

    Usage:
        @router.get("/protected")
        async def protected_route(api_key: str = Depends(verify_api_key)):
            return {"message": "Access granted"}
    """
    if not config.API_KEY:
        # If no API key is configured, allow access (development mode)
        return "development"

    if api_key != config.API_KEY:
        logger.warning("api_key_authentication_failed", provided_key=api_key[:8] if api_key else None)
        raise HTTPException(
            status_code=403,
            detail="Invalid or missing API key"
        )

    return api_key


async def get_actor(
    x_actor_name: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> Actor:
    """
    The operator making the request, from X-Actor-Name / X-Actor-Role /
    X-Actor-Id. Identity is passed explicitly into every engine call.
    """
    name = (x_actor_name or "").strip()
    if not name or not x_actor_role:
        raise HTTPException(status_code=401, detail="X-Actor-Name and X-Actor-Role headers are required")
    try:
        role = Role.parse(x_actor_role)
    except ValueError:
        logger.warning("unknown_actor_role", role=x_actor_role, actor=name)
        raise HTTPException(status_code=401, detail=f"Unknown role: {x_actor_role}") from None
    return Actor(name=name, role=role, id=(x_actor_id or "").strip() or None)
