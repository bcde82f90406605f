"""
Tests for the authentication service
"""

import pytest
import threading

from minibank.credentials import USERS_TABLE
from minibank.errors import (
    DuplicateUsername, InternalError, InvalidCredentials, InvalidToken
)
from minibank.ledger import ACCOUNTS_TABLE
from minibank.sessions import SESSIONS_TABLE


class TestRegisterUser:
    """Registration is all-or-nothing"""

    def test_register_creates_user_and_zero_account(self, system):
        user_id = system.auth_service.register_user("alice", "pw")
        assert system.credentials.get_user(user_id).username == "alice"
        assert str(system.ledger.get_balance(user_id)) == "0.00"

    def test_duplicate_registration_creates_no_second_account(self, system, storage):
        system.auth_service.register_user("alice", "pw")
        with pytest.raises(DuplicateUsername):
            system.auth_service.register_user("alice", "other")

        assert storage.count(USERS_TABLE) == 1
        assert storage.count(ACCOUNTS_TABLE) == 1

    def test_account_failure_rolls_back_user(self, system, storage, monkeypatch):
        def broken_open_account(user_id):
            raise RuntimeError("disk full")

        monkeypatch.setattr(system.ledger, "open_account", broken_open_account)

        with pytest.raises(InternalError) as exc_info:
            system.auth_service.register_user("alice", "pw")

        assert exc_info.value.message == "Error creating user"
        assert storage.count(USERS_TABLE) == 0
        assert storage.count(ACCOUNTS_TABLE) == 0
        assert system.credentials.get_user_by_username("alice") is None

    def test_username_free_after_rollback(self, system, monkeypatch):
        original = system.ledger.open_account
        calls = []

        def flaky_open_account(user_id):
            calls.append(user_id)
            if len(calls) == 1:
                raise RuntimeError("transient")
            return original(user_id)

        monkeypatch.setattr(system.ledger, "open_account", flaky_open_account)

        with pytest.raises(InternalError):
            system.auth_service.register_user("alice", "pw")
        user_id = system.auth_service.register_user("alice", "pw")
        assert str(system.ledger.get_balance(user_id)) == "0.00"

    def test_password_hashing_does_not_block_storage(self, system, monkeypatch):
        system.auth_service.register_user("alice", "pw")
        token = system.auth_service.login("alice", "pw").token

        hashing = threading.Event()
        release = threading.Event()
        real_hash = system.credentials._hash_password

        def slow_hash(password, salt):
            hashing.set()
            release.wait(10)
            return real_hash(password, salt)

        monkeypatch.setattr(system.credentials, "_hash_password", slow_hash)
        registration = threading.Thread(
            target=system.auth_service.register_user, args=("bob", "pw")
        )
        registration.start()
        try:
            assert hashing.wait(5)
            balances = []
            reader = threading.Thread(
                target=lambda: balances.append(system.balance_service.get_balance(token))
            )
            reader.start()
            reader.join(5)
            assert not reader.is_alive()
            assert str(balances[0]) == "0.00"
        finally:
            release.set()
            registration.join()

        assert system.credentials.get_user_by_username("bob") is not None


class TestLogin:
    """Login issues a token only for valid credentials"""

    def test_login_returns_usable_token(self, system):
        user_id = system.auth_service.register_user("alice", "pw")
        session = system.auth_service.login("alice", "pw")
        assert system.sessions.resolve(session.token) == user_id

    def test_wrong_password_issues_no_token(self, system, storage):
        system.auth_service.register_user("alice", "pw")
        with pytest.raises(InvalidCredentials):
            system.auth_service.login("alice", "wrong")
        assert storage.count(SESSIONS_TABLE) == 0

    def test_unknown_user(self, system):
        with pytest.raises(InvalidCredentials):
            system.auth_service.login("nobody", "pw")

    def test_storage_failure_is_internal_error(self, system, monkeypatch):
        system.auth_service.register_user("alice", "pw")

        def broken_issue(user_id):
            raise OSError("connection reset")

        monkeypatch.setattr(system.sessions, "issue", broken_issue)
        with pytest.raises(InternalError) as exc_info:
            system.auth_service.login("alice", "pw")
        assert exc_info.value.message == "Error during login"
        assert exc_info.value.status_code == 500


class TestLogout:
    """Logout revokes the presented token"""

    def test_logout_invalidates_token(self, system):
        system.auth_service.register_user("alice", "pw")
        session = system.auth_service.login("alice", "pw")
        system.auth_service.logout(session.token)
        with pytest.raises(InvalidToken):
            system.balance_service.get_balance(session.token)

    def test_logout_with_unknown_token(self, system):
        with pytest.raises(InvalidToken):
            system.auth_service.logout("never-issued")

    def test_logout_twice(self, system):
        system.auth_service.register_user("alice", "pw")
        session = system.auth_service.login("alice", "pw")
        system.auth_service.logout(session.token)
        with pytest.raises(InvalidToken):
            system.auth_service.logout(session.token)
