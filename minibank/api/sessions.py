"""
Login and logout endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .schemas import LoginRequest, TokenRequest
from .security import get_bearer_token, pick_token
from .system import BankingSystem, get_banking_system


router = APIRouter()


@router.post("")
def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Authenticate and return a new session token"""
    session = system.auth_service.login(request.username, request.password)
    return {
        "token": session.token,
        "token_type": "bearer",
        "expires_at": session.expires_at.isoformat(),
    }


@router.post("/logout")
def logout(
    request: Optional[TokenRequest] = None,
    header_token: Optional[str] = Depends(get_bearer_token),
    system: BankingSystem = Depends(get_banking_system)
):
    """Revoke the presented session token"""
    token = pick_token(request.token if request else None, header_token)
    system.auth_service.logout(token)
    return {"message": "Logged out"}
