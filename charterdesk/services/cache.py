"""Keyed TTL cache with in-flight load de-duplication."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Any = _Miss()


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    key: Hashable
    value: T
    stored_at: float


class TTLCache(Generic[T]):
    """Process-lifetime cache whose entries expire passively on read.

    ``get_or_load`` keeps one loader task per key; every concurrent caller
    awaits that task. Loads finish and populate the cache even if the caller
    that started them goes away. Results rejected by ``should_cache`` are
    handed to the waiters but never stored, so an existing entry survives.
    """

    def __init__(
        self,
        ttl: float,
        *,
        name: str = "cache",
        clock: Callable[[], float] = time.monotonic,
        should_cache: Callable[[T], bool] | None = None,
    ) -> None:
        self.ttl = ttl
        self.name = name
        self._clock = clock
        self._should_cache = should_cache
        self._entries: dict[Hashable, CacheEntry[T]] = {}
        self._inflight: dict[Hashable, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def _age(self, entry: CacheEntry[T]) -> float:
        return self._clock() - entry.stored_at

    def peek(self, key: Hashable) -> CacheEntry[T] | None:
        """Return the raw entry for ``key`` even if it has expired."""

        return self._entries.get(key)

    def get(self, key: Hashable) -> T:
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        if self._age(entry) >= self.ttl:
            return MISS
        return entry.value

    def set(self, key: Hashable, value: T) -> None:
        self._entries[key] = CacheEntry(key=key, value=value, stored_at=self._clock())

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def is_loading(self, key: Hashable) -> bool:
        return key in self._inflight

    def _settle(self, key: Hashable, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        if task.exception() is not None:
            return
        value = task.result()
        if self._should_cache is not None and not self._should_cache(value):
            logger.debug("{} not storing rejected result for {}", self.name, key)
            return
        self.set(key, value)

    def _start_load(
        self, key: Hashable, loader: Callable[[], Awaitable[T]]
    ) -> asyncio.Task:
        task = self._inflight.get(key)
        if task is None:
            logger.debug("{} miss for {}; loading", self.name, key)
            task = asyncio.ensure_future(loader())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._settle(key, done))
        return task

    async def get_or_load(self, key: Hashable, loader: Callable[[], Awaitable[T]]) -> T:
        value = self.get(key)
        if value is not MISS:
            return value
        task = self._start_load(key, loader)
        return await asyncio.shield(task)

    async def get_or_load_stale(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[T]],
        *,
        grace: float,
    ) -> tuple[T, bool]:
        """Stale-while-revalidate read.

        Returns ``(value, stale)``. An entry expired for less than ``grace``
        seconds is returned immediately while a refresh runs in the
        background.
        """

        entry = self._entries.get(key)
        if entry is not None:
            age = self._age(entry)
            if age < self.ttl:
                return entry.value, False
            if age < self.ttl + grace:
                refresh = self._start_load(key, loader)
                if refresh not in self._background:
                    self._background.add(refresh)
                    refresh.add_done_callback(self._discard_background)
                return entry.value, True
        return await self.get_or_load(key, loader), False

    def _discard_background(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("{} background refresh failed: {}", self.name, task.exception())
