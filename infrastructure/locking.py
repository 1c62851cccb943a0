# ============================================================================
# STRUCTURAL AND STRIPE LOCKING
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Infrastructure - Concurrency control
# PURPOSE: Ordered multi-key locks with bounded waits
# CREATED: 09 OCT 2026
# ============================================================================
"""
Locking

Two implementations of the same contract:

    async with locks.acquire(keys, timeout):
        ...

- StripedLockManager: one asyncio.Lock per key, in-process. Entries are
  reference counted and discarded when nobody holds or waits on them.
- AdvisoryLockManager: PostgreSQL session-level advisory locks for
  several processes sharing one database, one lock connection per task.

Keys are always taken in a single global order (sorted), so two callers
locking overlapping key sets cannot deadlock. Every wait is bounded by
`timeout` (a deadline for the whole set); on expiry everything already
taken is released and LockTimeoutError is raised.

Lock Layers:
- Structural locks: asset ids on Path(X) for create/move/delete
- Rollup stripes: hand-over-hand up the ancestor chain, child before parent
- Version columns: handled in repositories, not here

Usage:
    from infrastructure.locking import StripedLockManager, asset_lock_key

    locks = StripedLockManager()
    async with locks.acquire([asset_lock_key(t, a) for a in path], 5.0):
        await store.move_subtree(...)
"""

import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import AsyncIterator, Dict, Iterable, List, Optional, Protocol

from psycopg import errors as pg_errors
from psycopg import sql
from psycopg_pool import AsyncConnectionPool

from core.errors import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_NAMESPACE = "twin:asset:"
STRIPE_NAMESPACE = "twin:rollup:"


def asset_lock_key(tenant_id: str, asset_id: str) -> str:
    """Lock key for one asset."""
    return f"{LOCK_NAMESPACE}{tenant_id}:{asset_id}"


def rollup_lock_key(tenant_id: str, asset_id: str) -> str:
    """Stripe key for one asset's AssetState (separate from structural keys)."""
    return f"{STRIPE_NAMESPACE}{tenant_id}:{asset_id}"


def hash_to_lock_id(key: str) -> int:
    """
    Convert string key to int64 for PostgreSQL advisory lock.

    Uses the first 8 bytes of SHA256, interpreted as signed int64.
    """
    h = hashlib.sha256(key.encode()).digest()[:8]
    return int.from_bytes(h, byteorder='big', signed=True)


class LockManager(Protocol):
    """Ordered acquisition of a set of keys with a bounded wait."""

    def acquire(self, keys: Iterable[str], timeout: float) -> AsyncIterator[List[str]]:
        ...


# ============================================================================
# IN-PROCESS STRIPES
# ============================================================================

class _Stripe:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


def _release_if_acquired(lock: asyncio.Lock):
    def callback(task: asyncio.Future) -> None:
        if not task.cancelled() and task.exception() is None and task.result():
            lock.release()
    return callback


async def _take(lock: asyncio.Lock, timeout: float) -> bool:
    """
    Acquire `lock` within `timeout` seconds.

    An acquisition that completes after the wait was abandoned (timeout or
    cancellation) is handed straight back, so the lock is never left held.
    """
    task = asyncio.ensure_future(lock.acquire())
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except BaseException:
        task.cancel()
        task.add_done_callback(_release_if_acquired(lock))
        raise
    if done:
        return True
    task.cancel()
    task.add_done_callback(_release_if_acquired(lock))
    return False


class StripedLockManager:
    """
    Per-key asyncio locks.

    Only one stripe is created per key in use; memory is proportional to
    the number of keys currently held or awaited, not to the tree size.
    """

    def __init__(self):
        self._stripes: Dict[str, _Stripe] = {}

    def _checkout(self, key: str) -> _Stripe:
        stripe = self._stripes.get(key)
        if stripe is None:
            stripe = self._stripes[key] = _Stripe()
        stripe.users += 1
        return stripe

    def _checkin(self, key: str) -> None:
        stripe = self._stripes[key]
        stripe.users -= 1
        if stripe.users == 0:
            del self._stripes[key]

    def is_locked(self, key: str) -> bool:
        stripe = self._stripes.get(key)
        return stripe is not None and stripe.lock.locked()

    @property
    def active_stripes(self) -> int:
        return len(self._stripes)

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str], timeout: float):
        """
        Acquire all keys in sorted order within `timeout` seconds.

        Yields:
            The sorted, de-duplicated key list.

        Raises:
            LockTimeoutError: a key could not be taken before the deadline.
        """
        ordered = sorted(set(keys))
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        held: List[str] = []

        try:
            for key in ordered:
                stripe = self._checkout(key)
                remaining = max(deadline - loop.time(), 0.001)
                try:
                    acquired = await _take(stripe.lock, remaining)
                except BaseException:
                    self._checkin(key)
                    raise
                if not acquired:
                    self._checkin(key)
                    logger.warning(f"Lock wait timed out on {key} ({len(held)} keys held)")
                    raise LockTimeoutError(key, timeout)
                held.append(key)

            yield ordered
        finally:
            for key in reversed(held):
                self._stripes[key].lock.release()
                self._checkin(key)


# ============================================================================
# POSTGRESQL ADVISORY LOCKS
# ============================================================================

class _LockSession:
    __slots__ = ("conn", "owner", "scopes")

    def __init__(self, conn, owner):
        self.conn = conn
        self.owner = owner
        self.scopes = 0


class AdvisoryLockManager:
    """
    Session-level advisory locks (pg_advisory_lock) on a dedicated
    autocommit pool (see repositories.database.init_lock_pool).

    Overlapping acquire scopes of one task share a single lock connection:
    a hand-over-hand rollup walk, the pinned stripe around a move commit
    and the structural locks of the same request all run on it. A task
    never waits for a second lock connection while holding one, so walks
    cannot starve each other out of the pool.

    The connection goes back to the pool after pg_advisory_unlock_all()
    when the task's last scope exits; a dropped connection releases its
    locks server-side. `lock_timeout` bounds every wait.
    """

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool
        self._current: ContextVar[Optional[_LockSession]] = ContextVar(
            "advisory_lock_session", default=None
        )

    async def _enter(self) -> _LockSession:
        task = asyncio.current_task()
        session = self._current.get()
        if session is None or session.scopes == 0 or session.owner is not task:
            session = _LockSession(await self.pool.getconn(), task)
            self._current.set(session)
        session.scopes += 1
        return session

    async def _exit(self, session: _LockSession) -> None:
        session.scopes -= 1
        if session.scopes > 0:
            return
        try:
            await session.conn.execute("SELECT pg_advisory_unlock_all()")
        finally:
            await self.pool.putconn(session.conn)

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str], timeout: float):
        ordered = sorted(set(keys))
        lock_ids = sorted({hash_to_lock_id(key) for key in ordered})
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        session = await self._enter()
        held: List[int] = []
        try:
            for lock_id in lock_ids:
                remaining_ms = max(1, int((deadline - loop.time()) * 1000))
                await session.conn.execute(
                    sql.SQL("SET lock_timeout = {}").format(sql.Literal(f"{remaining_ms}ms"))
                )
                try:
                    await session.conn.execute("SELECT pg_advisory_lock(%s)", (lock_id,))
                except pg_errors.LockNotAvailable:
                    logger.warning(
                        f"Advisory lock wait timed out (lock_id={lock_id}, {len(held)} held)"
                    )
                    raise LockTimeoutError(str(lock_id), timeout)
                held.append(lock_id)
            logger.debug(f"Acquired {len(lock_ids)} advisory locks")
            yield ordered
        finally:
            try:
                for lock_id in reversed(held):
                    await session.conn.execute("SELECT pg_advisory_unlock(%s)", (lock_id,))
            finally:
                await self._exit(session)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'LockManager',
    'StripedLockManager',
    'AdvisoryLockManager',
    'asset_lock_key',
    'rollup_lock_key',
    'hash_to_lock_id',
]
