"""
Concurrency helpers for escrow and job code.

Two mechanisms, used at different seams:

1. DistributedLock: a Redis key (django-redis connection) with a TTL and
   an owner token. Periodic jobs take one so overlapping beat runs of
   the same job skip instead of racing.

2. check_version: optimistic check for API callers that send the
   ``version`` they last saw. Row-level mutual exclusion for a single
   order is select_for_update() inside the escrow service.

Usage:
    from payments.locks import DistributedLock, check_version

    with DistributedLock("job:reconcile_revenue", ttl=600, blocking=False):
        ReconciliationService.run()

    with transaction.atomic():
        order = check_version(Order, order_id, expected_version=request_version)
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from payments.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

T = TypeVar("T", bound=models.Model)

_POLL_INTERVAL_SECONDS = 0.05


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis lock with TTL and owner token.

    The TTL bounds how long a crashed holder blocks others. Release only
    deletes the key if it still holds this instance's token, so a lock
    that expired and was re-taken by someone else is left alone.

    Args:
        key: Lock name, stored as "lock:<key>"
        ttl: Seconds before the key expires on its own
        blocking: Wait up to ``timeout`` seconds instead of failing at once
        timeout: Maximum wait in blocking mode

    Raises:
        LockAcquisitionError: From acquire()/__enter__ when the lock is held
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
        ttl: int = 60,
        blocking: bool = False,
        timeout: float = 5.0,
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

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self.redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(_POLL_INTERVAL_SECONDS)

        raise LockAcquisitionError(
            f"Lock '{self.key}' is held by another worker",
            details={"key": self.key, "blocking": self.blocking},
        )

    def release(self) -> bool:
        if self._token is None:
            return False
        released = self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb: Any) -> bool:
        self.release()
        return False


# =============================================================================
# Optimistic Locking
# =============================================================================


def check_version(model_class: type[T], pk: Any, expected_version: int) -> T:
    """
    Lock a row for update if it is still at ``expected_version``.

    Must run inside the caller's transaction; the row lock is held until
    that transaction ends.

    Raises:
        NotFoundError: No row with that pk
        StaleRecordError: Row exists at a different version
    """
    with transaction.atomic():
        instance = (
            model_class.objects.select_for_update()
            .filter(pk=pk, version=expected_version)
            .first()
        )
        if instance is not None:
            return instance

        model_name = model_class.__name__
        current_version = (
            model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
        )
        if current_version is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )
        raise StaleRecordError(
            f"{model_name} {pk} was modified concurrently",
            details={
                "pk": str(pk),
                "expected_version": expected_version,
                "current_version": current_version,
            },
        )


__all__ = [
    "DistributedLock",
    "check_version",
]
