from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from papacatzzi.logging import get_logger
from papacatzzi.service.errors import DependencyFailure
from papacatzzi.service.protocols import CodeCache, CredentialStore
from papacatzzi.storage.errors import ConstraintViolation
from papacatzzi.storage.models import Account

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_STORE_TIMEOUT = 5.0
DEFAULT_CACHE_TIMEOUT = 2.0


async def _bounded(
    dependency: str, operation: str, awaitable: Awaitable[T], timeout: float
) -> T:
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except ConstraintViolation:
        raise
    except asyncio.TimeoutError as exc:
        logger.error("dependency_timeout", dependency=dependency, operation=operation, timeout=timeout)
        raise DependencyFailure(dependency, operation, cause=exc) from exc
    except Exception as exc:
        logger.error(
            "dependency_error",
            dependency=dependency,
            operation=operation,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise DependencyFailure(dependency, operation, cause=exc) from exc


class GuardedStore:
    """Async view of a blocking ``CredentialStore``.

    Every call runs in a worker thread under a deadline. Uniqueness failures
    pass through unchanged; anything else becomes ``DependencyFailure``.
    """

    def __init__(self, store: CredentialStore, *, timeout: float = DEFAULT_STORE_TIMEOUT):
        self.inner = store
        self.timeout = timeout

    async def _call(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        fn: Callable[..., Any] = getattr(self.inner, operation)
        return await _bounded(
            "store", operation, asyncio.to_thread(fn, *args, **kwargs), self.timeout
        )

    async def get_account_by_email(self, email: str) -> Optional[Account]:
        return await self._call("get_account_by_email", email)

    async def get_account_by_username(self, username: str) -> Optional[Account]:
        return await self._call("get_account_by_username", username)

    async def get_account_by_federated_id(self, federated_id: str) -> Optional[Account]:
        return await self._call("get_account_by_federated_id", federated_id)

    async def insert_account(self, account: Account) -> Account:
        return await self._call("insert_account", account)

    async def update_password(self, account_id: str, password_hash: str) -> Optional[Account]:
        return await self._call("update_password", account_id, password_hash)

    async def update_federated_id(self, account_id: str, federated_id: str) -> Optional[Account]:
        return await self._call("update_federated_id", account_id, federated_id)

    async def activate_account(
        self,
        account_id: str,
        *,
        username: Optional[str] = None,
        password_hash: Optional[str] = None,
    ) -> Optional[Account]:
        return await self._call(
            "activate_account", account_id, username=username, password_hash=password_hash
        )


class GuardedCache:
    """Deadline-bounded view of a ``CodeCache``."""

    def __init__(self, cache: CodeCache, *, timeout: float = DEFAULT_CACHE_TIMEOUT):
        self.inner = cache
        self.timeout = timeout

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await _bounded("cache", "set", self.inner.set(key, value, ttl_seconds), self.timeout)

    async def get(self, key: str) -> Optional[str]:
        return await _bounded("cache", "get", self.inner.get(key), self.timeout)

    async def delete(self, key: str) -> None:
        await _bounded("cache", "delete", self.inner.delete(key), self.timeout)

    async def pop(self, key: str) -> Optional[str]:
        return await _bounded("cache", "pop", self.inner.pop(key), self.timeout)


def guard_store(
    store: Union[CredentialStore, GuardedStore], timeout: float = DEFAULT_STORE_TIMEOUT
) -> GuardedStore:
    return store if isinstance(store, GuardedStore) else GuardedStore(store, timeout=timeout)


def guard_cache(
    cache: Union[CodeCache, GuardedCache], timeout: float = DEFAULT_CACHE_TIMEOUT
) -> GuardedCache:
    return cache if isinstance(cache, GuardedCache) else GuardedCache(cache, timeout=timeout)
