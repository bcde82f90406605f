"""
Session Registry Module

Issues opaque bearer tokens bound to a user id. Tokens come from the
`secrets` module, are unique at issuance, expire after a fixed TTL and can be
revoked (logout).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging
import secrets

from .errors import InternalError, InvalidToken
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger(__name__)

SESSIONS_TABLE = "sessions"


@dataclass
class Session(StorageRecord):
    """User authentication session; `id` is the token itself"""
    user_id: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None

    @property
    def token(self) -> str:
        return self.id

    @property
    def is_valid(self) -> bool:
        """Check if session is still valid"""
        return (self.revoked_at is None and
                self.expires_at > datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Session':
        session = super().from_dict(data)
        session.expires_at = datetime.fromisoformat(data['expires_at'])
        if data.get('revoked_at'):
            session.revoked_at = datetime.fromisoformat(data['revoked_at'])
        return session


class SessionRegistry:
    """Issues, resolves and revokes session tokens"""

    def __init__(self, storage: StorageInterface, ttl_minutes: int = 30,
                 token_bytes: int = 32, max_attempts: int = 5):
        self.storage = storage
        self.ttl = timedelta(minutes=ttl_minutes)
        self.token_bytes = token_bytes
        self.max_attempts = max_attempts
        self.table = SESSIONS_TABLE

    def _generate_token(self) -> str:
        return secrets.token_urlsafe(self.token_bytes)

    def issue(self, user_id: str) -> Session:
        """
        Create a session for the user.

        A freshly generated token that already exists is discarded and a new
        one drawn, up to `max_attempts` times.
        """
        for _ in range(self.max_attempts):
            token = self._generate_token()
            now = datetime.now(timezone.utc)
            session = Session(
                id=token,
                created_at=now,
                updated_at=now,
                user_id=user_id,
                expires_at=now + self.ttl,
            )
            with self.storage.atomic():
                if self.storage.exists(self.table, token):
                    logger.warning("Session token collision, drawing a new token")
                    continue
                self.storage.save(self.table, token, session.to_dict())
            return session

        raise InternalError("Could not issue a unique session token")

    def get_session(self, token: str) -> Optional[Session]:
        if not isinstance(token, str) or not token:
            return None
        data = self.storage.load(self.table, token)
        if data is None:
            return None
        return Session.from_dict(data)

    def resolve(self, token: str) -> str:
        """Return the user id bound to a valid token, else raise InvalidToken"""
        session = self.get_session(token)
        if session is None or not session.is_valid:
            raise InvalidToken()
        return session.user_id

    def revoke(self, token: str) -> bool:
        """Mark a session revoked. Returns False if the token is unknown."""
        with self.storage.atomic():
            session = self.get_session(token)
            if session is None:
                return False
            if session.revoked_at is None:
                now = datetime.now(timezone.utc)
                session.revoked_at = now
                session.updated_at = now
                self.storage.save(self.table, token, session.to_dict())
            return True
