from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Protocol

from tokenward.config import Settings
from tokenward.logging import get_logger
from tokenward.service.errors import (
    CreationFailed,
    DuplicateEmail,
    DuplicateUsername,
    InvalidCredentials,
    InvalidOrExpiredToken,
    MissingToken,
    UserNotFound,
)
from tokenward.service.passwords import Argon2PasswordHasher, PasswordHasher
from tokenward.service.tokens import (
    HmacJwtSigner,
    SignatureError,
    TokenIssuer,
    TokenSigner,
)
from tokenward.storage.errors import ConstraintViolation
from tokenward.storage.models import User, UserIdentity, UserProfile

logger = get_logger(__name__)


class AuthStore(Protocol):
    async def find_users_matching(self, username: str, email: str) -> List[User]: ...

    async def create_user(
        self, username: str, email: str, password_hash: str
    ) -> None: ...

    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    async def get_user_by_login(self, identifier: str) -> Optional[User]: ...

    async def get_user(self, user_id: str) -> Optional[User]: ...

    async def insert_refresh_token(
        self, user_id: str, token: str, expires_at: datetime
    ) -> None: ...

    async def find_active_refresh_token(self, token: str) -> Optional[UserIdentity]: ...

    async def revoke_refresh_token(self, token: str) -> None: ...

    async def revoke_user_refresh_tokens(self, user_id: str) -> int: ...


@dataclass
class LoginResult:
    user: UserIdentity
    access_token: str
    refresh_token: str


@dataclass
class RefreshResult:
    access_token: str
    user: UserIdentity


@dataclass
class AuthContext:
    user_id: str
    username: str
    email: str


class AuthService:
    """Registration, credential checks and the refresh-token lifecycle.

    A refresh token is usable while its row is unrevoked and unexpired.
    Logout revokes the row; expiry needs no write. Neither state can be
    left, and both read as "invalid" to callers.

    The service holds no locks. Consistency comes from single-statement
    atomicity in the store plus its unique constraints.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        signer: Optional[TokenSigner] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.hasher: PasswordHasher = hasher or Argon2PasswordHasher.from_settings(settings)
        self.tokens = TokenIssuer.from_settings(
            settings, signer or HmacJwtSigner.from_settings(settings, clock=self._clock)
        )
        self.logger = logger

    def _now(self) -> datetime:
        return self._clock()

    async def _hash_password(self, password: str) -> str:
        # argon2 is CPU bound; keep it off the event loop
        return await asyncio.to_thread(self.hasher.hash, password)

    async def _verify_password(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.hasher.verify, password, password_hash)

    async def register(self, username: str, email: str, password: str) -> UserProfile:
        existing = await self.store.find_users_matching(username, email)
        if any(u.username == username for u in existing):
            self.logger.info("register_rejected", reason="username_taken")
            raise DuplicateUsername()
        if any(u.email == email for u in existing):
            self.logger.info("register_rejected", reason="email_taken")
            raise DuplicateEmail()

        password_hash = await self._hash_password(password)
        try:
            await self.store.create_user(username, email, password_hash)
        except ConstraintViolation as exc:
            # Lost a race with a concurrent registration
            field = exc.detail.get("field")
            self.logger.info("register_rejected", reason=f"{field}_constraint")
            if field == "email":
                raise DuplicateEmail() from exc
            raise DuplicateUsername() from exc

        user = await self.store.get_user_by_username(username)
        if not user:
            self.logger.error("register_refetch_missing", username=username)
            raise CreationFailed()
        self.logger.info(
            "user_registered", user_id=user.id, password_algo=self.hasher.algorithm
        )
        return user.profile(include_updated=False)

    async def login(self, identifier: str, password: str) -> LoginResult:
        user = await self.store.get_user_by_login(identifier)
        if not user:
            self.logger.warning("login_failed", reason="unknown_identifier")
            raise InvalidCredentials()
        if not await self._verify_password(password, user.password_hash):
            self.logger.warning("login_failed", reason="password_mismatch", user_id=user.id)
            raise InvalidCredentials()

        identity = user.identity()
        access_token = self.tokens.issue_access(identity)
        refresh_token = self.tokens.issue_refresh(user.id)
        expires_at = self._now() + self.tokens.refresh_ttl
        await self.store.insert_refresh_token(user.id, refresh_token, expires_at)
        self.logger.info("login_succeeded", user_id=user.id)
        return LoginResult(
            user=identity, access_token=access_token, refresh_token=refresh_token
        )

    async def refresh(self, refresh_token: Optional[str]) -> RefreshResult:
        """Mint a new access token.

        The refresh token is not rotated; it stays valid until it expires or
        is revoked by logout.
        """
        if not refresh_token:
            raise MissingToken()
        try:
            self.tokens.verify_refresh_signature(refresh_token)
        except SignatureError as exc:
            self.logger.info("refresh_rejected", reason=str(exc))
            raise InvalidOrExpiredToken() from None

        identity = await self.store.find_active_refresh_token(refresh_token)
        if not identity:
            self.logger.info("refresh_rejected", reason="inactive_session")
            raise InvalidOrExpiredToken()

        # Claims come from the current user row, not the refresh token
        access_token = self.tokens.issue_access(identity)
        return RefreshResult(access_token=access_token, user=identity)

    async def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            return
        await self.store.revoke_refresh_token(refresh_token)
        self.logger.info("refresh_token_revoked")

    async def logout_all(self, user_id: str) -> int:
        revoked = await self.store.revoke_user_refresh_tokens(user_id)
        self.logger.info("user_sessions_revoked", user_id=user_id, count=revoked)
        return revoked

    async def get_user_by_id(self, user_id: str) -> UserProfile:
        user = await self.store.get_user(user_id)
        if not user:
            raise UserNotFound()
        return user.profile()

    async def authenticate(self, access_token: Optional[str]) -> AuthContext:
        """Resolve an access token to its identity without touching the store."""
        if not access_token:
            raise MissingToken("Access token is required")
        try:
            claims = self.tokens.verify_access(access_token)
        except SignatureError as exc:
            self.logger.info("access_token_rejected", reason=str(exc))
            raise InvalidOrExpiredToken() from None
        return AuthContext(
            user_id=str(claims["sub"]),
            username=str(claims.get("username", "")),
            email=str(claims.get("email", "")),
        )
