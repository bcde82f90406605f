"""
Pydantic schemas for API requests
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class CredentialsRequest(BaseModel):
    username: str = Field(..., description="Case-sensitive username")
    password: str = Field(..., description="Plain password; only its hash is stored")


class RegisterRequest(CredentialsRequest):
    pass


class LoginRequest(CredentialsRequest):
    pass


class TokenRequest(BaseModel):
    token: Optional[str] = Field(
        None, description="Session token; may instead be sent as a Bearer header"
    )


class DepositRequest(TokenRequest):
    # Validated by the balance service so every malformed value maps to InvalidAmount
    amount: Any = Field(..., description="Positive amount, as a JSON number or decimal string")
