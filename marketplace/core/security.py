"""Bearer token verification. Tokens are issued by the auth service; this side only decodes them."""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from marketplace.core.config import Settings, get_settings
from marketplace.models.schemas import Actor

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str, settings: Settings) -> Actor:
    """
    Decode a JWT into the verified caller. The `sub` claim is the user id and
    `role` one of CLIENT, FREELANCER or ADMIN.
    """
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise _unauthorized("Invalid or expired token")
    try:
        return Actor(user_id=payload.get("sub"), role=payload.get("role"))
    except PydanticValidationError:
        raise _unauthorized("Token is missing a valid subject or role")


def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Actor:
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return decode_access_token(credentials.credentials, settings)


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
