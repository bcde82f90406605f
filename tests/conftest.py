"""
Shared fixtures: a fast-hashing config and storage backends
"""

import pytest

from minibank.api.system import BankingSystem
from minibank.config import MinibankConfig
from minibank.storage import InMemoryStorage, SQLiteStorage


@pytest.fixture
def config():
    """Config with a cheap scrypt cost so tests stay fast"""
    return MinibankConfig(
        database_url="memory://",
        password_hash_n=1024,
        log_level="WARNING",
    )


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each test using this runs against in-memory and SQLite storage"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


@pytest.fixture
def system(storage, config):
    """Fully wired banking system with tables created"""
    banking_system = BankingSystem(storage, config)
    banking_system.initialize()
    return banking_system
