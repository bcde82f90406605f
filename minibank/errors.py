"""
Domain Error Taxonomy

Validation-class errors carry a descriptive message and a 4xx status.
InternalError covers infrastructure failures; its message is generic and the
details go to the log, never to the caller.
"""

from typing import Optional


class BankingError(Exception):
    """Base class for all errors surfaced to API callers"""

    status_code = 400
    code = "banking_error"
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class DuplicateUsername(BankingError):
    """Raised when registering a username that already exists"""

    code = "duplicate_username"
    default_message = "Username is already taken"


class InvalidUsername(BankingError):
    """Raised when a username is empty or not a string"""

    code = "invalid_username"
    default_message = "Username must be a non-empty string"


class InvalidCredentials(BankingError):
    """Raised when username/password do not match a stored user"""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Invalid username or password"


class InvalidToken(BankingError):
    """Raised when a session token is unknown, revoked or expired"""

    status_code = 403
    code = "invalid_token"
    default_message = "Invalid token"


class InvalidAmount(BankingError):
    """
    Raised when a deposit amount is invalid:
    - Not a number, NaN or infinite.
    - Zero or negative.
    - Outside the configured min/max limits.
    """

    code = "invalid_amount"
    default_message = "Invalid amount"


class AccountNotFound(BankingError):
    """Raised when a user has no account row"""

    status_code = 404
    code = "account_not_found"
    default_message = "Account not found"


class InternalError(BankingError):
    """Unexpected persistence or infrastructure failure"""

    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"
    retryable = True


class StorageUnavailable(InternalError):
    """Raised when the storage backend cannot be reached at startup"""

    code = "storage_unavailable"
    default_message = "Could not connect to the database"
