from __future__ import annotations

import contextlib
import copy
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from tokenward.logging import get_logger
from tokenward.storage.errors import ConstraintViolation, StoreError
from tokenward.storage.models import User, UserIdentity

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS auth_user (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS auth_refresh_token (
        user_id UUID NOT NULL REFERENCES auth_user (id) ON DELETE CASCADE,
        token TEXT NOT NULL UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        revoked BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    "CREATE INDEX IF NOT EXISTS auth_refresh_token_user_idx ON auth_refresh_token (user_id)",
)


def _row_to_user(row: Mapping[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        username=row["username"],
        email=row["email"],
        password_hash=row.get("password_hash", ""),
        created_at=row["created_at"],
        updated_at=row.get("updated_at", row["created_at"]),
    )


def _violated_field(exc: errors.UniqueViolation) -> str:
    """Name the user column behind a unique violation."""
    diag = getattr(exc, "diag", None)
    constraint = (getattr(diag, "constraint_name", None) or "").lower()
    haystack = constraint or str(exc).lower()
    if "username" in haystack:
        return "username"
    if "email" in haystack:
        return "email"
    return "unknown"


class PostgresStore:
    """Postgres-backed user and refresh-token store.

    The pool is created closed; ``open()`` must be awaited before use and
    ``close()`` on shutdown. Every public method borrows one pooled
    connection and returns it on all exit paths. Inside ``transaction()``
    the yielded store is bound to the transaction's connection instead.
    """

    _conn: Optional[psycopg.AsyncConnection] = None

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )

    async def open(self) -> None:
        try:
            await self.pool.open(wait=True)
        except psycopg.Error as exc:
            self.logger.error("store_open_failed", error_type=type(exc).__name__)
            raise StoreError("could not open connection pool") from exc
        await self.ensure_schema()
        self.logger.info("store_opened", max_size=self.pool.max_size)

    async def close(self) -> None:
        await self.pool.close()
        self.logger.info("store_closed")

    @contextlib.asynccontextmanager
    async def _connect(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Borrow a pooled connection, or reuse the bound one.

        The pool commits on clean exit and rolls back otherwise. Unique and
        foreign-key violations pass through so callers can translate them;
        every other driver fault becomes ``StoreError``.
        """
        try:
            if self._conn is not None:
                yield self._conn
            else:
                async with self.pool.connection() as conn:
                    yield conn
        except (errors.UniqueViolation, errors.ForeignKeyViolation):
            raise
        except psycopg.Error as exc:
            self.logger.error(
                "store_query_failed", error_type=type(exc).__name__, error=str(exc)
            )
            raise StoreError("store operation failed") from exc

    async def ensure_schema(self) -> None:
        async with self._connect() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)

    async def query(
        self, statement: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Run one parameterized statement using ``%(name)s`` placeholders."""
        async with self._connect() as conn:
            cur = await conn.execute(statement, params or {})
            if cur.description is None:
                return []
            return await cur.fetchall()

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgresStore"]:
        """Yield a store whose calls all share one transaction.

        Commits when the body completes and rolls back if it raises.
        """
        async with self._connect() as conn:
            async with conn.transaction():
                tx = copy.copy(self)
                tx._conn = conn
                yield tx

    # users
    async def find_users_matching(self, username: str, email: str) -> List[User]:
        rows = await self.query(
            """
            SELECT id, username, email, created_at, updated_at
            FROM auth_user
            WHERE username = %(username)s OR email = %(email)s
            """,
            {"username": username, "email": email},
        )
        return [_row_to_user(row) for row in rows]

    async def create_user(self, username: str, email: str, password_hash: str) -> None:
        try:
            await self.query(
                """
                INSERT INTO auth_user (username, email, password_hash, created_at, updated_at)
                VALUES (%(username)s, %(email)s, %(password_hash)s, now(), now())
                """,
                {"username": username, "email": email, "password_hash": password_hash},
            )
        except errors.UniqueViolation as exc:
            field = _violated_field(exc)
            raise ConstraintViolation(f"{field} already exists", {"field": field}) from exc

    async def get_user_by_username(self, username: str) -> Optional[User]:
        rows = await self.query(
            """
            SELECT id, username, email, created_at, updated_at
            FROM auth_user
            WHERE username = %(username)s
            """,
            {"username": username},
        )
        return _row_to_user(rows[0]) if rows else None

    async def get_user_by_login(self, identifier: str) -> Optional[User]:
        rows = await self.query(
            """
            SELECT id, username, email, password_hash, created_at, updated_at
            FROM auth_user
            WHERE username = %(identifier)s OR email = %(identifier)s
            ORDER BY (username = %(identifier)s) DESC
            LIMIT 1
            """,
            {"identifier": identifier},
        )
        return _row_to_user(rows[0]) if rows else None

    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            return None
        rows = await self.query(
            """
            SELECT id, username, email, created_at, updated_at
            FROM auth_user
            WHERE id = %(user_id)s
            """,
            {"user_id": user_id},
        )
        return _row_to_user(rows[0]) if rows else None

    # refresh tokens
    async def insert_refresh_token(
        self, user_id: str, token: str, expires_at: datetime
    ) -> None:
        try:
            await self.query(
                """
                INSERT INTO auth_refresh_token (user_id, token, expires_at, created_at, revoked)
                VALUES (%(user_id)s, %(token)s, %(expires_at)s, now(), FALSE)
                """,
                {"user_id": user_id, "token": token, "expires_at": expires_at},
            )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "refresh token user missing", {"user_id": user_id}
            ) from exc
        except errors.UniqueViolation as exc:
            raise ConstraintViolation(
                "refresh token already stored", {"field": "token"}
            ) from exc

    async def find_active_refresh_token(self, token: str) -> Optional[UserIdentity]:
        rows = await self.query(
            """
            SELECT u.id AS user_id, u.username, u.email
            FROM auth_refresh_token rt
            JOIN auth_user u ON rt.user_id = u.id
            WHERE rt.token = %(token)s
              AND rt.revoked = FALSE
              AND rt.expires_at > now()
            """,
            {"token": token},
        )
        if not rows:
            return None
        row = rows[0]
        return UserIdentity(
            id=str(row["user_id"]), username=row["username"], email=row["email"]
        )

    async def revoke_refresh_token(self, token: str) -> None:
        await self.query(
            """
            UPDATE auth_refresh_token
            SET revoked = TRUE
            WHERE token = %(token)s AND revoked = FALSE
            """,
            {"token": token},
        )

    async def revoke_user_refresh_tokens(self, user_id: str) -> int:
        rows = await self.query(
            """
            UPDATE auth_refresh_token
            SET revoked = TRUE
            WHERE user_id = %(user_id)s AND revoked = FALSE AND expires_at > now()
            RETURNING token
            """,
            {"user_id": user_id},
        )
        return len(rows)
