"""API dependencies for authentication and the territorial reference data."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from electoral.core.security import decode_access_token
from electoral.services.access import CurrentUser
from electoral.services.territory import TerritorialHierarchy, get_hierarchy

security = HTTPBearer()


def _unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> CurrentUser:
    """
    Dependency to get the current authenticated user.

    The identity provider issues the token; its ``sub`` claim is the user id
    and its ``role`` claim drives the role capabilities.
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise _unauthorized()

    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized()

    try:
        return CurrentUser(user_id=UUID(str(user_id)), role=payload.get("role"))
    except ValueError:
        raise _unauthorized()


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
HierarchyDep = Annotated[TerritorialHierarchy, Depends(get_hierarchy)]
