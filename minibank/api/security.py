"""
Session token extraction shared by the authenticated endpoints
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..errors import InvalidToken


security = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Token from an `Authorization: Bearer` header, if present"""
    if credentials is None:
        return None
    return credentials.credentials


def pick_token(body_token: Optional[str], header_token: Optional[str]) -> str:
    """The body token wins over the header; a missing token is an invalid one"""
    token = body_token or header_token
    if not token:
        raise InvalidToken()
    return token
