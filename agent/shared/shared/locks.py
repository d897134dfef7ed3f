"""Distributed locks for cron jobs running on stateless instances.

A lock is the key ``lock:<name>`` holding a random owner token. It is
created with a single atomic set-if-absent-with-expiry, is never mutated,
and disappears either on release by its owner or when its TTL runs out, so
a crashed holder can block the job for at most ``timeout_seconds``.

Usage::

    locks = LockManager(store)
    result = await locks.with_lock("cron:push-reminders", run_job, timeout_seconds=300)
    if result is None:
        ...  # another instance is already running the job
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TypeVar

import structlog

from shared.store import KeyValueStore, StoreError

logger = structlog.get_logger()

T = TypeVar("T")

LOCK_PREFIX = "lock:"
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_RETRY_DELAY_MS = 1000


@dataclass(frozen=True)
class LockResult:
    """Outcome of an acquisition attempt."""

    name: str
    acquired: bool
    owner_token: str | None = None
    error: str | None = None  # set when the store could not be asked


class LockManager:
    """Acquire and release named, TTL-bounded locks in a shared store."""

    def __init__(self, store: KeyValueStore, key_prefix: str = LOCK_PREFIX):
        self._store = store
        self._prefix = key_prefix

    def _key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    async def acquire(
        self,
        name: str,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        retries: int = 0,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> LockResult:
        """Try to take the lock, retrying up to ``retries`` times on contention.

        A store error stops the attempt loop and reports the lock as not
        acquired.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        key = self._key(name)
        token = uuid.uuid4().hex
        attempts = 0
        error: str | None = None

        while attempts <= retries:
            attempts += 1
            try:
                acquired = await self._store.set_if_absent(
                    key, token, expiry_seconds=timeout_seconds
                )
            except StoreError as e:
                logger.error("lock_acquire_error", lock=name, attempt=attempts, error=str(e))
                error = str(e)
                break

            if acquired:
                logger.info(
                    "lock_acquired",
                    lock=name,
                    owner_token=token,
                    timeout_seconds=timeout_seconds,
                )
                return LockResult(name=name, acquired=True, owner_token=token)

            if attempts <= retries:
                logger.info(
                    "lock_held_retrying",
                    lock=name,
                    attempt=attempts,
                    max_attempts=retries + 1,
                    retry_delay_ms=retry_delay_ms,
                )
                await asyncio.sleep(retry_delay_ms / 1000)

        logger.info("lock_not_acquired", lock=name, attempts=attempts, error=error)
        return LockResult(name=name, acquired=False, error=error)

    async def release(self, name: str, owner_token: str) -> bool:
        """Delete the lock only if ``owner_token`` still owns it.

        A mismatch means the lock expired and was re-acquired by someone
        else; deleting it would break their exclusion, so this is a no-op.
        Store errors are logged only: the TTL reclaims the lock regardless.
        """
        try:
            deleted = await self._store.delete_if_equals(self._key(name), owner_token)
        except StoreError as e:
            logger.error("lock_release_error", lock=name, error=str(e))
            return False

        if deleted:
            logger.info("lock_released", lock=name, owner_token=owner_token)
        else:
            logger.warning(
                "lock_release_not_owner",
                lock=name,
                owner_token=owner_token,
                hint="Lock expired or was re-acquired by another instance",
            )
        return deleted

    async def is_locked(self, name: str) -> bool | None:
        """Whether the lock is held; None when the store could not be asked."""
        try:
            return await self._store.get(self._key(name)) is not None
        except StoreError as e:
            logger.error("lock_check_error", lock=name, error=str(e))
            return None

    async def lock_ttl(self, name: str) -> int | None:
        """Seconds until the lock expires (-1: no expiry, None: absent or error)."""
        try:
            return await self._store.ttl(self._key(name))
        except StoreError as e:
            logger.error("lock_ttl_error", lock=name, error=str(e))
            return None

    async def force_release(self, name: str) -> None:
        """Unconditionally delete a lock. Administrative use only."""
        await self._store.delete(self._key(name))
        logger.warning("lock_force_released", lock=name)

    @asynccontextmanager
    async def hold(
        self,
        name: str,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        retries: int = 0,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> AsyncIterator[LockResult]:
        """Context manager form; the body must check ``result.acquired``."""
        result = await self.acquire(name, timeout_seconds, retries, retry_delay_ms)
        try:
            yield result
        finally:
            if result.acquired and result.owner_token:
                await self.release(name, result.owner_token)

    async def with_lock(
        self,
        name: str,
        fn: Callable[[], Awaitable[T]],
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        retries: int = 0,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
    ) -> T | None:
        """Run ``fn`` while holding the lock.

        Returns None without calling ``fn`` when another holder has the
        lock. Exceptions from ``fn`` propagate after the lock is released.
        """
        async with self.hold(name, timeout_seconds, retries, retry_delay_ms) as lock:
            if not lock.acquired:
                logger.info("lock_busy_skipping", lock=name)
                return None
            return await fn()
