"""
Tests for the balance service, including concurrent deposits
"""

import pytest
import threading
from decimal import Decimal

from minibank import ledger as ledger_module
from minibank.errors import InternalError, InvalidAmount, InvalidToken


@pytest.fixture
def token(system):
    system.auth_service.register_user("alice", "pw")
    return system.auth_service.login("alice", "pw").token


class TestGetBalance:
    def test_new_user_balance_is_zero(self, system, token):
        assert system.balance_service.get_balance(token) == Decimal("0.00")

    @pytest.mark.parametrize("bad_token", ["123456", "", None])
    def test_never_issued_token(self, system, token, bad_token):
        with pytest.raises(InvalidToken):
            system.balance_service.get_balance(bad_token)

    def test_storage_failure_is_internal_error(self, system, token, monkeypatch):
        def broken_get_balance(user_id):
            raise OSError("connection reset")

        monkeypatch.setattr(system.ledger, "get_balance", broken_get_balance)
        with pytest.raises(InternalError) as exc_info:
            system.balance_service.get_balance(token)
        assert exc_info.value.message == "Error checking balance"


class TestDeposit:
    def test_deposits_accumulate(self, system, token):
        assert system.balance_service.deposit(token, "50.00") == Decimal("50.00")
        assert system.balance_service.deposit(token, "25.50") == Decimal("75.50")
        assert system.balance_service.get_balance(token) == Decimal("75.50")

    def test_json_number_amounts(self, system, token):
        system.balance_service.deposit(token, 50)
        system.balance_service.deposit(token, 25.5)
        assert system.balance_service.get_balance(token) == Decimal("75.50")

    @pytest.mark.parametrize("amount", [0, "0", -5, "-0.01", "ten", None, "Infinity"])
    def test_rejects_bad_amounts(self, system, token, amount):
        with pytest.raises(InvalidAmount):
            system.balance_service.deposit(token, amount)
        assert system.balance_service.get_balance(token) == Decimal("0.00")

    def test_amount_validated_once_per_deposit(self, system, token, monkeypatch):
        calls = []
        real_validate = ledger_module.validate_deposit_amount

        def counting_validate(*args, **kwargs):
            calls.append(args)
            return real_validate(*args, **kwargs)

        monkeypatch.setattr(ledger_module, "validate_deposit_amount", counting_validate)
        system.balance_service.deposit(token, "10.00")
        assert len(calls) == 1

    def test_token_checked_before_amount(self, system, token):
        with pytest.raises(InvalidToken):
            system.balance_service.deposit("never-issued", "-1")

    def test_exact_sum_of_many_deposits(self, system, token):
        amounts = [Decimal("0.10"), Decimal("0.20"), Decimal("0.07"), Decimal("99.99")] * 25
        for amount in amounts:
            system.balance_service.deposit(token, amount)
        assert system.balance_service.get_balance(token) == sum(amounts)

    def test_users_have_separate_balances(self, system, token):
        system.auth_service.register_user("bob", "pw")
        bob_token = system.auth_service.login("bob", "pw").token

        system.balance_service.deposit(token, "10.00")
        system.balance_service.deposit(bob_token, "3.00")

        assert system.balance_service.get_balance(token) == Decimal("10.00")
        assert system.balance_service.get_balance(bob_token) == Decimal("3.00")

    def test_any_session_of_user_reaches_same_account(self, system, token):
        second = system.auth_service.login("alice", "pw").token
        system.balance_service.deposit(token, "1.00")
        system.balance_service.deposit(second, "2.00")
        assert system.balance_service.get_balance(token) == Decimal("3.00")


class TestConcurrentDeposits:
    """M concurrent deposits of a leave M x a"""

    def test_no_lost_updates(self, system, token):
        depositors = 25
        amount = Decimal("12.34")
        start = threading.Barrier(depositors)
        errors = []

        def worker():
            start.wait()
            try:
                system.balance_service.deposit(token, amount)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(depositors)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert system.balance_service.get_balance(token) == amount * depositors

    def test_no_lost_updates_across_sessions(self, system, token):
        tokens = [token] + [system.auth_service.login("alice", "pw").token for _ in range(4)]
        rounds = 10
        amount = Decimal("0.01")

        def worker(session_token):
            for _ in range(rounds):
                system.balance_service.deposit(session_token, amount)

        threads = [threading.Thread(target=worker, args=(t,)) for t in tokens]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert system.balance_service.get_balance(token) == amount * rounds * len(tokens)
