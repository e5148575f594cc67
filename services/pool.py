"""
Bounded pool of reusable render instances (headless browsers).

Instances are launched lazily, up to ``max_size``. When every slot is on loan,
callers queue and are served strictly in arrival order: a released instance
goes straight to the oldest waiter, never through the idle list.

Usage (on the render event loop)::

    pool = InstancePool(backend.launch, max_size=3)
    async with pool.lease() as instance:
        page = await instance.new_page(...)
    await pool.shutdown()

Instances must provide ``async reset()`` (return to one clean state) and
``async close()``. An instance whose reset fails is closed instead of reused.
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from services.errors import CreationFailed, PoolClosed

logger = logging.getLogger(__name__)


class InstancePool:
    def __init__(self, launcher: Callable[[], Awaitable[Any]], max_size: int = 3):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._launcher = launcher

        self._idle: List[Any] = []
        self._active = 0  # idle + on loan + launches in progress
        self._waiters: Deque[asyncio.Future] = deque()
        self._lock = asyncio.Lock()
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()

        self._created = 0
        self._destroyed = 0

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self) -> Any:
        async with self._lock:
            if self._closed:
                raise PoolClosed()
            if self._idle:
                # LIFO: the most recently released instance is the warmest
                return self._idle.pop()
            if self._active < self.max_size:
                self._active += 1
                waiter = None
            else:
                waiter = asyncio.get_running_loop().create_future()
                self._waiters.append(waiter)

        if waiter is None:
            return await self._create()

        try:
            return await waiter
        except asyncio.CancelledError:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # handed an instance just as we were cancelled
                await self.release(waiter.result())
            raise

    async def release(self, instance: Any) -> None:
        try:
            await instance.reset()
        except Exception as exc:
            logger.warning("Instance cleanup failed, discarding it: %s", exc)
            await self._destroy(instance)
            await self._free_slot()
            return

        async with self._lock:
            if not self._closed:
                waiter = self._next_waiter()
                if waiter is not None:
                    waiter.set_result(instance)
                    return
                if len(self._idle) < self.max_size:
                    self._idle.append(instance)
                    return
                self._active -= 1
        await self._destroy(instance)

    @asynccontextmanager
    async def lease(self):
        instance = await self.acquire()
        try:
            yield instance
        finally:
            await self.release(instance)

    async def shutdown(self) -> None:
        """Close every idle instance and fail pending waiters.

        Instances currently on loan are not revoked; drain in-flight work
        first. Anything released after shutdown is closed on release.
        """
        async with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
            waiters, self._waiters = list(self._waiters), deque()
            self._active = 0

        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(PoolClosed())
        for instance in idle:
            await self._destroy(instance)
        logger.info("Instance pool shut down (%d created, %d destroyed)",
                    self._created, self._destroyed)

    def stats(self) -> Dict[str, int]:
        return {
            'max_size': self.max_size,
            'active': self._active,
            'idle': len(self._idle),
            'waiting': self.waiting,
            'created': self._created,
            'destroyed': self._destroyed,
        }

    # --------------------------
    # Internals
    # --------------------------

    def _next_waiter(self) -> Optional[asyncio.Future]:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                return waiter
        return None

    async def _create(self) -> Any:
        """Launch an instance into a slot that has already been reserved."""
        try:
            instance = await self._launcher()
        except asyncio.CancelledError:
            await self._free_slot()
            raise
        except Exception as exc:
            logger.warning("Failed to launch render instance: %s", exc)
            await self._free_slot()
            raise CreationFailed(f"Could not start a browser instance: {exc}") from exc
        self._created += 1
        logger.debug("Launched render instance (%d/%d active)", self._active, self.max_size)
        return instance

    async def _free_slot(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._active -= 1
            self._grant_waiting()

    def _grant_waiting(self) -> None:
        # lock held: a slot opened up with callers queued, launch for the oldest
        while self._waiters and self._active < self.max_size:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._active += 1
            task = asyncio.get_running_loop().create_task(self._create_for(waiter))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _create_for(self, waiter: asyncio.Future) -> None:
        try:
            instance = await self._create()
        except CreationFailed as exc:
            if not waiter.done():
                waiter.set_exception(exc)
            return
        if waiter.done():
            await self.release(instance)
        else:
            waiter.set_result(instance)

    async def _destroy(self, instance: Any) -> None:
        self._destroyed += 1
        try:
            await instance.close()
        except Exception as exc:
            logger.warning("Error closing render instance: %s", exc)
