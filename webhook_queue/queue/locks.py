"""
Per-tenant mutual exclusion.

Two tiers guard a tenant's drain loop:

1. TenantGuard, a process-local set, so one process never runs two drains
   for the same tenant and skips the lock round-trip when it already is.
2. An advisory lock keyed by a stable hash of the tenant, so two processes
   never drain the same tenant at once. A hash collision only serializes
   unrelated tenants.

Advisory locks are try-acquire only: ``hold(key)`` yields False when the key
is held elsewhere instead of waiting. Errors while acquiring propagate so the
caller aborts its pass; errors while releasing are logged and swallowed.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from webhook_queue.constants import LOCK_KEY_BASE, LOCK_KEY_SPACE, TENANT_KEY_PREFIX

logger = logging.getLogger(__name__)

_FNV_OFFSET_BASIS = 2166136261
_FNV_PRIME = 16777619


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a hash of the UTF-8 encoding of ``value``."""
    h = _FNV_OFFSET_BASIS
    for byte in value.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h


def tenant_lock_key(tenant_id: str) -> int:
    """Advisory lock key for a tenant, in [LOCK_KEY_BASE, LOCK_KEY_BASE + LOCK_KEY_SPACE)."""
    return LOCK_KEY_BASE + fnv1a_32(f"{TENANT_KEY_PREFIX}{tenant_id}") % LOCK_KEY_SPACE


class TenantGuard:
    """Process-local set of tenants currently draining."""

    def __init__(self) -> None:
        self._active: set[str] = set()

    def try_enter(self, tenant_id: str) -> bool:
        if tenant_id in self._active:
            return False
        self._active.add(tenant_id)
        return True

    def exit(self, tenant_id: str) -> None:
        self._active.discard(tenant_id)

    def active(self) -> frozenset[str]:
        return frozenset(self._active)

    def __contains__(self, tenant_id: object) -> bool:
        return tenant_id in self._active

    def __len__(self) -> int:
        return len(self._active)


class AdvisoryLock(Protocol):
    """Non-blocking, cross-process exclusive lock keyed by an integer."""

    def hold(self, key: int) -> AbstractAsyncContextManager[bool]:
        """Async context manager yielding whether the lock was acquired."""
        ...


class PostgresAdvisoryLock:
    """
    Session-level PostgreSQL advisory lock.

    Lock and unlock run on the same dedicated connection. If the unlock
    fails the connection is invalidated, which ends the server session and
    drops the lock with it.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[bool]:
        async with self._engine.connect() as conn:
            acquired = bool(
                await conn.scalar(text("SELECT pg_try_advisory_lock(:key)"), {"key": key})
            )
            if not acquired:
                logger.debug("Advisory lock held by another process", extra={"lock_key": key})
                yield False
                return

            try:
                yield True
            finally:
                try:
                    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                except Exception as e:
                    logger.warning(
                        "Advisory unlock failed, invalidating connection",
                        extra={"lock_key": key, "error": str(e)},
                    )
                    await conn.invalidate()


class LocalAdvisoryLock:
    """
    In-process stand-in for the advisory lock.

    Gives the same try-acquire semantics across every queue sharing this
    instance. It does not coordinate separate processes, so it fits SQLite
    deployments with a single worker process and tests.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[bool]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            yield False
            return

        await lock.acquire()
        try:
            yield True
        finally:
            lock.release()

    def is_held(self, key: int) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


def create_advisory_lock(engine: AsyncEngine) -> AdvisoryLock:
    """Pick the advisory lock implementation for the engine's dialect."""
    if engine.dialect.name == "postgresql":
        return PostgresAdvisoryLock(engine)

    logger.warning(
        "Advisory locks unavailable, falling back to process-local locking",
        extra={"dialect": engine.dialect.name},
    )
    return LocalAdvisoryLock()
