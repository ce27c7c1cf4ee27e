"""FastAPI dependencies for authentication and access resolution."""

import asyncio
import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from context_engine.core.exceptions import AuthenticationError
from context_engine.integrations.access import ANONYMOUS_USER, VISITOR_ROLE, permissions_for_role
from context_engine.models.integration import AccessContext

logger = logging.getLogger(__name__)

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Any:
    """Extract and validate the current user from the bearer token.

    Args:
        request: Incoming request (carries the Supabase client on app state).
        credentials: HTTP Bearer token credentials.

    Returns:
        Validated user object from Supabase auth.

    Raises:
        HTTPException: If authentication fails.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials
    try:
        client = request.app.state.supabase
        response = await asyncio.to_thread(client.auth.get_user, token)

        if response is None or response.user is None:
            raise AuthenticationError("Invalid authentication token")

        return response.user

    except AuthenticationError as e:
        logger.warning("AUTH: AuthenticationError - %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    except Exception as e:
        logger.exception("AUTH: Unexpected error during token validation")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user_optional(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> Any | None:
    """Get current user if authenticated, None otherwise."""
    if credentials is None:
        return None

    try:
        return await get_current_user(request, credentials)
    except HTTPException:
        return None


async def get_access_context(
    request: Request,
    user: Annotated[Any | None, Depends(get_current_user_optional)],
) -> AccessContext:
    """Resolve the caller's role and permissions.

    Anonymous callers are visitors. A role in the user's ``app_metadata``
    wins over the permission oracle's lookup.
    """
    if user is None:
        return AccessContext(
            user_id=ANONYMOUS_USER,
            role=VISITOR_ROLE,
            permissions=permissions_for_role(VISITOR_ROLE),
        )

    metadata = getattr(user, "app_metadata", None) or {}
    oracle = request.app.state.oracle
    return await oracle.access_context(str(user.id), metadata.get("role"))


# Type aliases for common dependency patterns
CurrentUser = Annotated[Any, Depends(get_current_user)]
Access = Annotated[AccessContext, Depends(get_access_context)]
