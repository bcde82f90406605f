"""
Account Ledger Module

One Decimal balance per user. Accounts are keyed by their owner's user id,
opened at zero during registration and only ever changed by deposit.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional
import uuid

from .errors import AccountNotFound
from .money import AmountLike, ZERO, as_money, validate_deposit_amount
from .storage import StorageInterface, StorageRecord


ACCOUNTS_TABLE = "accounts"


@dataclass
class Account(StorageRecord):
    """A user's single balance"""
    owner_id: str
    balance: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        account = super().from_dict(data)
        account.balance = as_money(account.balance)
        return account


class AccountLedger:
    """Opens accounts, reads balances and applies deposits"""

    def __init__(self, storage: StorageInterface,
                 min_deposit: AmountLike = "0.01",
                 max_deposit: AmountLike = "100000.00"):
        self.storage = storage
        self.min_deposit = min_deposit
        self.max_deposit = max_deposit
        self.table = ACCOUNTS_TABLE

    def open_account(self, user_id: str) -> str:
        """Create the user's account with a zero balance and return its id"""
        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=user_id,
            balance=ZERO,
        )
        self.storage.save(self.table, user_id, account.to_dict())
        return account.id

    def get_account(self, user_id: str) -> Optional[Account]:
        data = self.storage.load(self.table, user_id)
        if data is None:
            return None
        return Account.from_dict(data)

    def get_balance(self, user_id: str) -> Decimal:
        account = self.get_account(user_id)
        if account is None:
            raise AccountNotFound()
        return account.balance

    def deposit(self, user_id: str, amount: AmountLike) -> Decimal:
        """
        Add a validated positive amount to the user's balance.

        The addition is a single storage increment, so concurrent deposits
        to the same account are never lost.

        Returns:
            The balance after the deposit

        Raises:
            InvalidAmount: amount is not a finite number within limits
            AccountNotFound: the user has no account
        """
        amount = validate_deposit_amount(amount, self.min_deposit, self.max_deposit)
        new_balance = self.storage.increment(self.table, user_id, "balance", amount)
        if new_balance is None:
            raise AccountNotFound()
        return as_money(new_balance)
