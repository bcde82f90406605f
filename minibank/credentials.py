"""
Credential Store Module

Persists users and their salted scrypt password hashes, and enforces
username uniqueness. The raw password is never stored or logged.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import hashlib
import hmac
import logging
import secrets
import uuid

from .errors import DuplicateUsername, InvalidCredentials, InvalidUsername
from .storage import DuplicateRecord, StorageInterface, StorageRecord


logger = logging.getLogger(__name__)

USERS_TABLE = "users"
MAX_USERNAME_LENGTH = 50

# scrypt block size and parallelism
SCRYPT_R = 8
SCRYPT_P = 1


@dataclass
class User(StorageRecord):
    """Registered user with hashed credentials"""
    username: str
    password_hash: str
    password_salt: str


class CredentialStore:
    """Registers users and verifies username/password pairs"""

    def __init__(self, storage: StorageInterface, hash_n: int = 16384):
        self.storage = storage
        self.hash_n = hash_n
        self.table = USERS_TABLE

    def prepare_user(self, username: str, password: str) -> User:
        """
        Validate the username and derive the password hash.

        Touches no storage, so callers run it before taking the storage lock.

        Raises:
            InvalidUsername: username is empty, too long or not a string
        """
        if not isinstance(username, str) or not username:
            raise InvalidUsername()
        if len(username) > MAX_USERNAME_LENGTH:
            raise InvalidUsername(
                f"Username must be at most {MAX_USERNAME_LENGTH} characters"
            )

        now = datetime.now(timezone.utc)
        salt = self._generate_salt()
        return User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
        )

    def add_user(self, user: User) -> str:
        """
        Persist a prepared user and return its id.

        Raises:
            DuplicateUsername: a user with this username already exists
        """
        # The lookup and the insert must not interleave with another
        # registration of the same name.
        with self.storage.atomic():
            if self.storage.find(self.table, {"username": user.username}):
                raise DuplicateUsername()
            try:
                self.storage.save(self.table, user.id, user.to_dict())
            except DuplicateRecord:
                raise DuplicateUsername()

        return user.id

    def register(self, username: str, password: str) -> str:
        """Persist a new user and return its id"""
        return self.add_user(self.prepare_user(username, password))

    def verify(self, username: str, password: str) -> str:
        """
        Return the id of the user matching both username and password.

        Raises InvalidCredentials otherwise; an unknown username and a wrong
        password are indistinguishable to the caller.
        """
        user = self.get_user_by_username(username) if isinstance(username, str) else None
        if user is None or not isinstance(password, str):
            # Spend the same hashing time as a real check
            self._hash_password(password if isinstance(password, str) else "", self._generate_salt())
            raise InvalidCredentials()

        if not self._verify_password(user, password):
            raise InvalidCredentials()
        return user.id

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.table, user_id)
        if data is None:
            return None
        return User.from_dict(data)

    def get_user_by_username(self, username: str) -> Optional[User]:
        matches = self.storage.find(self.table, {"username": username})
        if not matches:
            return None
        return User.from_dict(matches[0])

    def count_users(self) -> int:
        return self.storage.count(self.table)

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=self.hash_n, r=SCRYPT_R, p=SCRYPT_P,
            maxmem=self._scrypt_maxmem(),
        ).hex()

    def _scrypt_maxmem(self) -> int:
        """Memory scrypt needs for the configured cost, plus headroom"""
        return 128 * SCRYPT_R * (self.hash_n + SCRYPT_P + 2) + 1024 * 1024

    def _verify_password(self, user: User, password: str) -> bool:
        """Constant-time comparison of the derived hash against the stored one"""
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(expected, user.password_hash)
