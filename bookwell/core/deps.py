"""FastAPI dependencies for the acting participant and injected collaborators."""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from bookwell.services.auth import decode_access_token
from bookwell.services.collaborators import Collaborators

security = HTTPBearer()


@dataclass(frozen=True)
class Actor:
    id: UUID
    is_admin: bool = False


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """Extract the acting participant from the bearer token.

    Raises 401 if the token is missing, invalid or has no usable subject.
    """
    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject: Optional[str] = payload.get("sub")
    try:
        actor_id = UUID(subject)
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return Actor(id=actor_id, is_admin=payload.get("role") == "admin")


def get_collaborators(request: Request) -> Collaborators:
    return request.app.state.collaborators
