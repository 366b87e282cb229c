from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from pydantic import ValidationError
from edumessaging.models.mod_auth import Actor, ActorRole, TokenData
from edumessaging.configuration.config import Config

bearer_scheme = HTTPBearer(auto_error=False)

def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

def verify_token(token: str) -> TokenData:
    """
    Verify the JWT and extract its claims.
    Tokens are issued by the platform's account service and signed with the
    shared AUTH_SECRET_KEY; expiry is checked by jose itself.
    """
    if not Config.JWT_SECRET_KEY:
        raise _unauthorized("Authentication is not configured")
    try:
        payload = jwt.decode(token, Config.JWT_SECRET_KEY, algorithms=[Config.JWT_ALGORITHM])
        return TokenData(
            id=payload.get("sub"),
            role=payload.get("role", ActorRole.STUDENT),
            school_id=payload.get("school_id"),
            name=payload.get("name"),
            exp=payload.get("exp")
        )
    except (JWTError, ValidationError):
        raise _unauthorized("Could not validate credentials")

def _actor_from_token(token: str) -> Actor:
    token_data = verify_token(token)
    if token_data.role == ActorRole.SCHOOL and not token_data.school_id:
        raise _unauthorized("School tokens must carry a school_id")
    return Actor(
        id=token_data.id,
        role=token_data.role,
        school_id=token_data.school_id,
        name=token_data.name
    )

def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Actor:
    """Main dependency for protected endpoints"""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return _actor_from_token(credentials.credentials)

def get_optional_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Optional[Actor]:
    """
    For endpoints that students reach without a token.
    A token that is sent must still be valid.
    """
    if credentials is None:
        return None
    return _actor_from_token(credentials.credentials)

def get_current_staff(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for endpoints open to administrators and schools"""
    if current_actor.role not in [ActorRole.ADMIN, ActorRole.SCHOOL]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to perform this action"
        )
    return current_actor

def get_current_admin(current_actor: Actor = Depends(get_current_actor)) -> Actor:
    """Dependency for endpoints that require admin access"""
    if current_actor.role != ActorRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to perform this action"
        )
    return current_actor
