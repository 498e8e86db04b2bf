"""
Session token bookkeeping: issued-token metadata and revocation.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Set
from dataclasses import dataclass
from enum import Enum
import secrets


class TokenStatus(Enum):
    """Token status enumeration."""
    ACTIVE = "active"
    REVOKED = "revoked"


@dataclass
class TokenMetadata:
    """Metadata for token tracking."""
    jti: str  # JWT ID
    user_id: int
    session_id: str  # shared by the access/refresh pair of one session
    issued_at: datetime
    expires_at: datetime
    token_type: str  # "access" or "refresh"
    status: TokenStatus = TokenStatus.ACTIVE


class InMemoryTokenBlacklist:
    """
    In-memory token blacklist.
    Revocation lasts for the life of the process.
    """

    def __init__(self):
        self._blacklist: Set[str] = set()
        self._token_metadata: Dict[str, TokenMetadata] = {}
        self._session_tokens: Dict[str, Set[str]] = {}  # session_id -> set of jtis

    def is_blacklisted(self, jti: str) -> bool:
        """Check if a token is blacklisted."""
        return jti in self._blacklist

    def store_token_metadata(self, metadata: TokenMetadata) -> None:
        """Store token metadata for tracking."""
        self._token_metadata[metadata.jti] = metadata
        self._session_tokens.setdefault(metadata.session_id, set()).add(metadata.jti)

    def get_token_metadata(self, jti: str) -> Optional[TokenMetadata]:
        return self._token_metadata.get(jti)

    def revoke_token(self, jti: str) -> None:
        self._blacklist.add(jti)
        if jti in self._token_metadata:
            self._token_metadata[jti].status = TokenStatus.REVOKED

    def revoke_session(self, session_id: str) -> int:
        """
        Revoke every token issued for one session.
        Returns the number of tokens revoked.
        """
        jtis = self._session_tokens.get(session_id, set())
        for jti in jtis:
            self.revoke_token(jti)
        return len(jtis)

    def cleanup_expired(self) -> int:
        """
        Remove expired tokens from the blacklist and metadata storage.
        Returns the number of tokens cleaned up.
        """
        now = datetime.now(timezone.utc)
        expired_jtis = [jti for jti, metadata in self._token_metadata.items() if metadata.expires_at < now]

        for jti in expired_jtis:
            self._blacklist.discard(jti)
            metadata = self._token_metadata.pop(jti, None)
            if metadata and metadata.session_id in self._session_tokens:
                self._session_tokens[metadata.session_id].discard(jti)

        return len(expired_jtis)


def generate_jti() -> str:
    """Generate a unique JWT ID."""
    return secrets.token_urlsafe(32)


def generate_session_id() -> str:
    return secrets.token_urlsafe(16)
