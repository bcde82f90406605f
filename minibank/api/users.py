"""
User registration endpoints
"""

from fastapi import APIRouter, Depends, status

from .schemas import RegisterRequest
from .system import BankingSystem, get_banking_system


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    request: RegisterRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a user and open their zero-balance account"""
    system.auth_service.register_user(request.username, request.password)
    return {"message": "User created"}
