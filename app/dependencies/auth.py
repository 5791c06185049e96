from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.services.directory import UserRepository
from app.tickets.models import Actor, Role

bearer_scheme = HTTPBearer(auto_error=False)


async def get_user_repository(request: Request) -> UserRepository:
    users = getattr(request.app.state, "users", None)
    if users is None:
        raise HTTPException(status_code=503, detail="User directory is not configured")
    return users


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    users: Annotated[UserRepository, Depends(get_user_repository)],
) -> Actor:
    """Very small authentication stub.

    The bearer token is taken as the user id and looked up in the directory.
    Token verification belongs to the identity provider in front of the API.
    """

    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing authentication credentials")

    actor = await users.get(credentials.credentials)
    if actor is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return actor


def role_required(*roles: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current user holds one of ``roles``."""

    async def dependency(user: Annotated[Actor, Depends(get_current_user)]) -> Actor:
        if not user.has_role(*roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


CurrentUser = Annotated[Actor, Depends(get_current_user)]
