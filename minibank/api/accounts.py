"""
Balance and deposit endpoints for the token holder's own account
"""

from typing import Optional

from fastapi import APIRouter, Depends

from ..money import format_money
from .schemas import DepositRequest, TokenRequest
from .security import get_bearer_token, pick_token
from .system import BankingSystem, get_banking_system


router = APIRouter()


@router.post("")
def get_balance(
    request: Optional[TokenRequest] = None,
    header_token: Optional[str] = Depends(get_bearer_token),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get the caller's balance"""
    token = pick_token(request.token if request else None, header_token)
    balance = system.balance_service.get_balance(token)
    return {"balance": format_money(balance)}


@router.post("/transactions")
def deposit(
    request: DepositRequest,
    header_token: Optional[str] = Depends(get_bearer_token),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deposit money into the caller's account"""
    token = pick_token(request.token, header_token)
    new_balance = system.balance_service.deposit(token, request.amount)
    return {"newBalance": format_money(new_balance)}
