from __future__ import annotations

import contextlib
import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional

from tokenward.logging import get_logger
from tokenward.storage.errors import ConstraintViolation, StoreError
from tokenward.storage.models import RefreshToken, User, UserIdentity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryStore:
    """In-memory backing store for tests and local development.

    Mirrors the Postgres store's constraints: unique usernames, emails and
    tokens, and refresh tokens that must reference an existing user.
    """

    _journal: Optional[List[Callable[[], None]]] = None

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        self._clock = clock or _utcnow
        self._data_lock = threading.RLock()
        self._opened = False

    async def open(self) -> None:
        self._opened = True

    async def close(self) -> None:
        self._opened = False

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator["MemoryStore"]:
        """Yield a store that journals its writes and undoes them if the body raises.

        Only writes made through the yielded store are undone; concurrent
        writes made elsewhere survive a rollback.
        """
        tx = copy.copy(self)
        tx._journal = []
        try:
            yield tx
        except BaseException:
            with self._data_lock:
                for undo in reversed(tx._journal):
                    undo()
            raise
        if self._journal is not None:
            self._journal.extend(tx._journal)

    def _record(self, undo: Callable[[], None]) -> None:
        if self._journal is not None:
            self._journal.append(undo)

    # users
    async def find_users_matching(self, username: str, email: str) -> List[User]:
        with self._data_lock:
            return [
                copy.copy(u)
                for u in self.users.values()
                if u.username == username or u.email == email
            ]

    async def create_user(self, username: str, email: str, password_hash: str) -> None:
        with self._data_lock:
            for existing in self.users.values():
                if existing.username == username:
                    raise ConstraintViolation(
                        "username already exists", {"field": "username"}
                    )
                if existing.email == email:
                    raise ConstraintViolation("email already exists", {"field": "email"})
            now = self._clock()
            user = User(
                id=str(uuid.uuid4()),
                username=username,
                email=email,
                password_hash=password_hash,
                created_at=now,
                updated_at=now,
            )
            self.users[user.id] = user
            self._record(lambda: self.users.pop(user.id, None))

    async def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.username == username), None)
            return copy.copy(user) if user else None

    async def get_user_by_login(self, identifier: str) -> Optional[User]:
        with self._data_lock:
            by_username = next(
                (u for u in self.users.values() if u.username == identifier), None
            )
            user = by_username or next(
                (u for u in self.users.values() if u.email == identifier), None
            )
            return copy.copy(user) if user else None

    async def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return copy.copy(user) if user else None

    # refresh tokens
    async def insert_refresh_token(
        self, user_id: str, token: str, expires_at: datetime
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "refresh token user missing", {"user_id": user_id}
                )
            if token in self.refresh_tokens:
                raise ConstraintViolation(
                    "refresh token already stored", {"field": "token"}
                )
            self.refresh_tokens[token] = RefreshToken(
                user_id=user_id,
                token=token,
                expires_at=expires_at,
                created_at=self._clock(),
            )
            self._record(lambda: self.refresh_tokens.pop(token, None))

    async def find_active_refresh_token(self, token: str) -> Optional[UserIdentity]:
        with self._data_lock:
            record = self.refresh_tokens.get(token)
            if not record or not record.is_usable(self._clock()):
                return None
            user = self.users.get(record.user_id)
            if not user:
                raise StoreError(
                    "refresh token references a missing user",
                    {"user_id": record.user_id},
                )
            return user.identity()

    async def revoke_refresh_token(self, token: str) -> None:
        with self._data_lock:
            record = self.refresh_tokens.get(token)
            if record and not record.revoked:
                record.revoked = True
                self._record(lambda: setattr(record, "revoked", False))

    async def revoke_user_refresh_tokens(self, user_id: str) -> int:
        now = self._clock()
        revoked = 0
        with self._data_lock:
            for record in self.refresh_tokens.values():
                if record.user_id == user_id and record.is_usable(now):
                    record.revoked = True
                    self._record(lambda r=record: setattr(r, "revoked", False))
                    revoked += 1
        return revoked
