"""
auth.py — Bearer Authentication & Admin Gate (FastAPI dependencies)
Water Quality Tracker

    Unauthenticated ──valid token──▶ Authenticated ──is_admin──▶ Admin

Tokens are not revocable; they stay valid until they expire.
"""

from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from app.errors import Forbidden, MissingToken
from app.repository import Repository, get_repository
from app.utils import TokenIdentity, decode_token

_bearer = HTTPBearer(auto_error=False)


async def authenticate(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> TokenIdentity:
    if credentials is None or not credentials.credentials:
        raise MissingToken()
    return decode_token(credentials.credentials)


async def require_admin(
    identity: TokenIdentity = Depends(authenticate),
    repository: Repository = Depends(get_repository),
) -> TokenIdentity:
    user = await repository.find_user_by_id(identity.user_id)
    if not user or not user["is_admin"]:
        raise Forbidden()
    return identity
