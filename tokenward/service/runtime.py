from __future__ import annotations

from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from tokenward.config import Settings, get_settings
from tokenward.logging import get_logger
from tokenward.service.auth import AuthService
from tokenward.storage.memory import MemoryStore
from tokenward.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL for logging.

    Example: postgresql://app:secret@db:5432/auth -> postgresql://app:***@db:5432/auth
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> Union[MemoryStore, PostgresStore]:
    if settings.use_memory_store:
        return MemoryStore()
    return PostgresStore(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


class Runtime:
    """Owns the store and the auth service built on it.

    Nothing connects at construction time. Call ``start()`` before serving
    and ``close()`` on shutdown, or use the runtime as an async context
    manager.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Union[MemoryStore, PostgresStore, None] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store if store is not None else build_store(self.settings)
        self.auth = AuthService(self.store, self.settings)
        self.started = False

    async def start(self) -> None:
        store_type = "memory" if isinstance(self.store, MemoryStore) else "postgres"
        try:
            await self.store.open()
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
            )
            raise
        self.started = True
        logger.info("runtime_started", store_type=store_type)

    async def close(self) -> None:
        if not self.started:
            return
        await self.store.close()
        self.started = False
        logger.info("runtime_closed")

    async def __aenter__(self) -> "Runtime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
