"""Time-bounded cache for the (blocking) OS accessibility permission check."""

import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class PermissionCache(Generic[T]):
    """
    A cached value with its timestamp and time-to-live.

    Owned by whoever performs the check and passed by reference; call
    ``invalidate()`` when the permission may have changed (e.g. after
    prompting the user).
    """

    ttl_seconds: float = 10.0
    value: Optional[T] = None
    checked_at: Optional[float] = None
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def is_fresh(self) -> bool:
        if self.checked_at is None:
            return False
        return self.clock() - self.checked_at < self.ttl_seconds

    def get(self) -> Optional[T]:
        return self.value if self.is_fresh() else None

    def set(self, value: T) -> None:
        self.value = value
        self.checked_at = self.clock()

    def invalidate(self) -> None:
        self.value = None
        self.checked_at = None

    async def get_or_refresh(self, check: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value, running ``check`` only when stale."""
        if self.is_fresh():
            return self.value  # type: ignore[return-value]
        value = await check()
        self.set(value)
        return value
