"""
Balance Service

Token-authenticated balance reads and deposits.
"""

from decimal import Decimal
import logging

from .errors import BankingError, InternalError
from .ledger import AccountLedger
from .logging_config import log_action
from .money import AmountLike
from .sessions import SessionRegistry


logger = logging.getLogger(__name__)


class BalanceService:
    """Resolves the caller's token before touching the ledger"""

    def __init__(self, sessions: SessionRegistry, ledger: AccountLedger):
        self.sessions = sessions
        self.ledger = ledger

    def get_balance(self, token: str) -> Decimal:
        """Raises InvalidToken for an unknown, revoked or expired token"""
        try:
            user_id = self.sessions.resolve(token)
            balance = self.ledger.get_balance(user_id)
        except BankingError:
            raise
        except Exception as e:
            log_action(logger, "error", "Error checking balance",
                       action="balance_failed", resource="accounts", exc_info=True)
            raise InternalError("Error checking balance") from e

        log_action(logger, "info", "Balance checked", user_id=user_id,
                   action="balance", resource="accounts")
        return balance

    def deposit(self, token: str, amount: AmountLike) -> Decimal:
        """
        Deposit into the caller's account and return the new balance.

        The token is resolved first; the ledger then validates the amount.

        Raises:
            InvalidToken: token does not resolve
            InvalidAmount: amount is not a finite positive number within limits
        """
        try:
            user_id = self.sessions.resolve(token)
            new_balance = self.ledger.deposit(user_id, amount)
        except BankingError as e:
            log_action(logger, "info", f"Deposit rejected: {e.message}",
                       action="deposit_rejected", resource="accounts")
            raise
        except Exception as e:
            log_action(logger, "error", "Error processing deposit",
                       action="deposit_failed", resource="accounts", exc_info=True)
            raise InternalError("Error processing deposit") from e

        log_action(logger, "info", "Deposit successful", user_id=user_id,
                   action="deposit", resource="accounts",
                   extra={"amount": str(amount), "new_balance": str(new_balance)})
        return new_balance
