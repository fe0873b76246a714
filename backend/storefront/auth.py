"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT bearer tokens and provides the dependencies
`get_current_user` (any authenticated account) and `require_moderator`
(the moderator policy: role `Moderator` or `Admin`).

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from .services import JWT_SECRET, JWT_ALGORITHM
from sqlmodel import Session
from .database import engine
from . import models, repositories

bearer_scheme = HTTPBearer()

MODERATOR_ROLES = (models.ROLE_MODERATOR, models.ROLE_ADMIN)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme)) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The role is read from the database rather than the token so that a
    demoted account loses access immediately.
    """
    token = credentials.credentials
    payload = decode_token(token)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    with Session(engine) as session:
        user = repositories.UserRepository(session).get(user_id)
        if not user:
            raise HTTPException(status_code=401, detail='user not found')
        return user


def require_moderator(user: models.User = Depends(get_current_user)) -> models.User:
    """Moderator policy: only `Moderator` and `Admin` accounts pass."""
    if user.role not in MODERATOR_ROLES:
        raise HTTPException(status_code=403, detail='moderator role required')
    return user
