"""Session-scoped PostgreSQL advisory locks keyed by strings."""

from __future__ import annotations

import hashlib
from collections.abc import Iterator
from contextlib import contextmanager

from schemaspine.core.errors import LockNotAcquiredError
from schemaspine.core.logging import get_logger
from schemaspine.core.transactions import TransactionContext

logger = get_logger(__name__)


def lock_key(key: str) -> int:
    """Stable signed 64-bit advisory lock id for ``key``.

    Same key, same id, across processes and interpreter runs (``hash()`` is
    salted per process and cannot be used).
    """
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class DistributedLock:
    """
    Non-blocking advisory lock.

    ``acquire`` and ``release`` return exactly what PostgreSQL returns:
    ``pg_advisory_unlock`` answers ``False`` (with a server warning) when the
    session does not hold the lock, whatever ``acquire`` returned earlier.
    """

    def acquire(self, ctx: TransactionContext, key: str) -> bool:
        row = ctx.client.query("SELECT pg_try_advisory_lock($1)", [lock_key(key)]).first() or {}
        acquired = bool(row.get("pg_try_advisory_lock"))
        logger.debug("advisory_lock_acquire", key=key, acquired=acquired)
        return acquired

    def release(self, ctx: TransactionContext, key: str) -> bool:
        row = ctx.client.query("SELECT pg_advisory_unlock($1)", [lock_key(key)]).first() or {}
        released = bool(row.get("pg_advisory_unlock"))
        logger.debug("advisory_lock_release", key=key, released=released)
        return released

    @contextmanager
    def hold(self, ctx: TransactionContext, key: str) -> Iterator[None]:
        """Hold the lock for the ``with`` block.

        Raises:
            LockNotAcquiredError: If another session holds the lock
        """
        if not self.acquire(ctx, key):
            raise LockNotAcquiredError(f"Advisory lock {key!r} is held by another session").with_context(
                transaction_id=ctx.id, lock_key=key
            )
        try:
            yield
        finally:
            self.release(ctx, key)


__all__ = ["DistributedLock", "lock_key"]
