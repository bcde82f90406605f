"""
Authentication Service

Registration (user + zero-balance account, all-or-nothing), login and logout.
"""

import logging

from .credentials import CredentialStore
from .errors import BankingError, InternalError, InvalidToken
from .ledger import AccountLedger
from .logging_config import log_action
from .sessions import Session, SessionRegistry
from .storage import StorageInterface


logger = logging.getLogger(__name__)


class AuthenticationService:
    """Orchestrates the credential store, account ledger and session registry"""

    def __init__(self, storage: StorageInterface, credentials: CredentialStore,
                 ledger: AccountLedger, sessions: SessionRegistry):
        self.storage = storage
        self.credentials = credentials
        self.ledger = ledger
        self.sessions = sessions

    def register_user(self, username: str, password: str) -> str:
        """
        Create a user and their account in one transaction.

        Returns:
            The new user id

        Raises:
            DuplicateUsername / InvalidUsername: propagated from the store
            InternalError: any storage failure; nothing is persisted
        """
        try:
            # Key derivation runs outside the lock so it never stalls other requests
            user = self.credentials.prepare_user(username, password)
            with self.storage.atomic():
                user_id = self.credentials.add_user(user)
                self.ledger.open_account(user_id)
        except BankingError as e:
            log_action(logger, "info", f"Registration rejected: {e.message}",
                       action="register_rejected", resource="users")
            raise
        except Exception as e:
            log_action(logger, "error", "Error creating user",
                       action="register_failed", resource="users", exc_info=True)
            raise InternalError("Error creating user") from e

        log_action(logger, "info", "User created", user_id=user_id,
                   action="register", resource="users",
                   extra={"total_users": self.credentials.count_users()})
        return user_id

    def login(self, username: str, password: str) -> Session:
        """
        Verify credentials and issue a new session.

        Earlier sessions of the same user stay valid.

        Raises:
            InvalidCredentials: unknown username or wrong password
            InternalError: storage failure
        """
        try:
            user_id = self.credentials.verify(username, password)
            session = self.sessions.issue(user_id)
        except BankingError as e:
            log_action(logger, "warning", f"Login failed: {e.message}",
                       action="login_failed", resource="sessions")
            raise
        except Exception as e:
            log_action(logger, "error", "Error during login",
                       action="login_failed", resource="sessions", exc_info=True)
            raise InternalError("Error during login") from e

        log_action(logger, "info", "Login successful", user_id=user_id,
                   action="login", resource="sessions",
                   extra={"expires_at": session.expires_at.isoformat()})
        return session

    def logout(self, token: str) -> None:
        """Revoke a valid session; raises InvalidToken otherwise"""
        try:
            user_id = self.sessions.resolve(token)
            self.sessions.revoke(token)
        except BankingError:
            raise
        except Exception as e:
            log_action(logger, "error", "Error during logout",
                       action="logout_failed", resource="sessions", exc_info=True)
            raise InternalError("Error during logout") from e

        log_action(logger, "info", "Logout successful", user_id=user_id,
                   action="logout", resource="sessions")
