"""
Request identity

Sessions are handled upstream; the session layer places the authenticated
user on ``request.state.user`` before requests reach these routes.
"""
from dataclasses import dataclass
from typing import Optional
from fastapi import HTTPException, Request, status
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None


async def get_current_user(request: Request) -> CurrentUser:
    """Return the authenticated user or fail with 401"""
    user = getattr(request.state, "user", None)
    if user is None:
        logger.warning(f"Unauthenticated request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if isinstance(user, CurrentUser):
        return user
    if isinstance(user, dict):
        user_id, email = user.get("id"), user.get("email")
    else:
        user_id, email = getattr(user, "id", None), getattr(user, "email", None)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return CurrentUser(id=str(user_id), email=email)
