"""
Banking system wiring and request dependencies
"""

from typing import Optional

from fastapi import Request

from ..auth import AuthenticationService
from ..balances import BalanceService
from ..config import MinibankConfig, get_config
from ..credentials import USERS_TABLE, CredentialStore
from ..ledger import ACCOUNTS_TABLE, AccountLedger
from ..sessions import SESSIONS_TABLE, SessionRegistry
from ..storage import StorageInterface, create_storage, wait_for_storage


class BankingSystem:
    """All components built around one explicitly supplied storage handle"""

    def __init__(self, storage: StorageInterface, config: Optional[MinibankConfig] = None):
        config = config or get_config()
        self.config = config
        self.storage = storage

        self.credentials = CredentialStore(storage, hash_n=config.password_hash_n)
        self.ledger = AccountLedger(
            storage,
            min_deposit=config.min_deposit_amount,
            max_deposit=config.max_deposit_amount,
        )
        self.sessions = SessionRegistry(
            storage,
            ttl_minutes=config.session_ttl_minutes,
            token_bytes=config.session_token_bytes,
            max_attempts=config.session_issue_attempts,
        )
        self.auth_service = AuthenticationService(
            storage, self.credentials, self.ledger, self.sessions
        )
        self.balance_service = BalanceService(self.sessions, self.ledger)

    def initialize(self) -> None:
        """Create the users, accounts and sessions tables if absent"""
        self.storage.initialize(
            [USERS_TABLE, ACCOUNTS_TABLE, SESSIONS_TABLE],
            unique={USERS_TABLE: ["username"]},
        )

    def close(self) -> None:
        self.storage.close()


def build_system(config: Optional[MinibankConfig] = None) -> BankingSystem:
    """Connect to the configured database, wait until it answers and create tables"""
    config = config or get_config()
    storage = wait_for_storage(
        lambda: create_storage(config.database_url, timeout=config.database_timeout),
        attempts=config.database_connect_attempts,
        interval=config.database_connect_interval,
    )
    system = BankingSystem(storage, config)
    system.initialize()
    return system


def get_banking_system(request: Request) -> BankingSystem:
    """Dependency returning the system attached to the running app"""
    return request.app.state.banking_system
