from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserIdentity:
    """Identity claims carried by access tokens."""

    id: str
    username: str
    email: str


@dataclass
class UserProfile:
    id: str
    username: str
    email: str
    created_at: datetime
    updated_at: Optional[datetime] = None


@dataclass
class User:
    id: str
    username: str
    email: str
    password_hash: str
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def identity(self) -> UserIdentity:
        return UserIdentity(id=self.id, username=self.username, email=self.email)

    def profile(self, *, include_updated: bool = True) -> UserProfile:
        return UserProfile(
            id=self.id,
            username=self.username,
            email=self.email,
            created_at=self.created_at,
            updated_at=self.updated_at if include_updated else None,
        )


@dataclass
class RefreshToken:
    """Server-side session record for an issued refresh token.

    Rows are never deleted; logout flips ``revoked`` and expiry is checked
    at read time.
    """

    user_id: str
    token: str
    expires_at: datetime
    revoked: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def is_usable(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at
