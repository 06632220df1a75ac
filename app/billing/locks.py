"""
Redis lock for billing work that spans a Stripe call.

Charges never take this lock; they are serialized by the compare-and-set
claim on BillingJob. Refunds and invoice propagation do, because each
one reads totals, calls an external system and writes several rows.

Usage:
    from billing.locks import DistributedLock

    with DistributedLock(f"billing:refund:{job.id}", ttl=30):
        StripeAdapter.create_refund(...)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

POLL_INTERVAL_SECONDS = 0.05


class DistributedLock:
    """
    SET NX EX lock owned by a random token.

    The TTL frees the key if the holder dies; release only deletes the
    key while it still holds our token. Keep ttl above the Stripe timeout
    times the number of Stripe calls made under the lock.

    Args:
        key: Lock name, stored as "lock:<key>"
        ttl: Seconds before Redis expires the key
        blocking: Wait up to timeout for the lock instead of failing fast
        timeout: Seconds to wait when blocking

    Raises:
        LockAcquisitionError: from acquire() / __enter__ when not obtained
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def _claim(self, token: str) -> bool:
        return bool(self.redis.set(self.key, token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        token = uuid.uuid4().hex

        if not self.blocking:
            if not self._claim(token):
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            self._token = token
            return True

        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            if self._claim(token):
                self._token = token
                return True
            time.sleep(POLL_INTERVAL_SECONDS)

        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Returns False when we did not hold the lock (or it had expired)."""
        if self._token is None:
            return False
        token, self._token = self._token, None
        return bool(self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, token))

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.release()
        return False
