"""TTL caches, rate limiting, bounded worker pools and cooperative cancellation."""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")
T = TypeVar("T")
R = TypeVar("R")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TtlCache(Generic[K, V]):
    """A key/value map loaded as a whole and considered valid for ttl seconds.

    The cache never refreshes itself: callers check ``is_fresh`` and reload.
    ``invalidate`` must be called wherever remote truth changes outside the
    paths that keep the map current.
    """

    def __init__(self, ttl_seconds: float, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._data: dict[K, V] = {}
        self._loaded_at: float | None = None

    @property
    def is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return self._clock() - self._loaded_at < self._ttl

    def replace(self, data: dict[K, V]) -> None:
        self._data = dict(data)
        self._loaded_at = self._clock()

    def get(self, key: K, default: V | None = None) -> V | None:
        return self._data.get(key, default)

    def set(self, key: K, value: V) -> None:
        self._data[key] = value

    def discard(self, key: K) -> None:
        self._data.pop(key, None)

    def invalidate(self) -> None:
        self._data = {}
        self._loaded_at = None

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)


class TokenBucket:
    """Token-bucket limiter: at most ``rate`` acquisitions per second on average,
    with bursts of up to ``capacity``."""

    def __init__(
        self,
        rate: float,
        capacity: float | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        self._rate = float(rate)
        self._capacity = float(capacity if capacity is not None else max(1.0, rate))
        self._tokens = self._capacity
        self._clock = clock
        self._sleep = sleep
        self._updated_at = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated_at = now

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                await self._sleep((1 - self._tokens) / self._rate)


class CancellationToken:
    """Cooperative stop signal checked between work items."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    if size < 1:
        raise ValueError("size must be >= 1")
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) == size:
            yield batch
            batch = []
    if batch:
        yield batch


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    cancel: CancellationToken | None = None,
    limiter: TokenBucket | None = None,
) -> list[R | None]:
    """Run ``worker`` over items with at most ``concurrency`` in flight.

    Results keep input order. Items not started because ``cancel`` fired come
    back as None; items already running are allowed to finish.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _run(item: T) -> R | None:
        async with semaphore:
            if cancel is not None and cancel.cancelled:
                return None
            if limiter is not None:
                await limiter.acquire()
                if cancel is not None and cancel.cancelled:
                    return None
            return await worker(item)

    return list(await asyncio.gather(*(_run(item) for item in items)))
