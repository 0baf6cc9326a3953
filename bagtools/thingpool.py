"""A thread-safe pool of reusable, expensive-to-create objects."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable, Optional


def _dispose(thing: Any) -> None:
    close = getattr(thing, "close", None)
    if callable(close):
        close()


class ThingPool:
    """Hands out leases on objects made by ``factory(*args, **kwargs)``.

    Objects are created on demand and reused once their lease is returned.
    """

    def __init__(self, factory, *args, **kwargs):
        self._maker: Callable[[], Any] = lambda: factory(*args, **kwargs)
        self._pool: deque = deque()
        self._lock = threading.Lock()
        self._out = 0
        self._max_out = 0

    @property
    def outstanding(self) -> int:
        """Number of leases currently handed out."""
        return self._out

    @property
    def max_outstanding(self) -> int:
        """Largest number of leases that were out at the same time."""
        return self._max_out

    @property
    def idle(self) -> int:
        """Number of objects waiting in the pool."""
        return len(self._pool)

    def get_lease(self):
        """Lease an object, creating a fresh one if none is idle."""
        with self._lock:
            if not self._pool:
                self._pool.append(self._maker())
            thing = self._pool.popleft()
            self._out += 1
            self._max_out = max(self._max_out, self._out)
        return Lease(self, thing)

    def give_back(self, thing):
        """Return a leased object to the pool."""
        with self._lock:
            self._out -= 1
            self._pool.append(thing)

    def abandon(self, thing):
        """Drop a leased object instead of returning it."""
        with self._lock:
            self._out -= 1
        _dispose(thing)

    def clear(self):
        """Dispose of every idle object."""
        with self._lock:
            things = list(self._pool)
            self._pool.clear()
        for thing in things:
            _dispose(thing)

    def close(self):
        """Dispose of the pool; fails while leases are still outstanding."""
        with self._lock:
            if self._out:
                raise RuntimeError(
                    f"Destroying ThingPool while there are still {self._out} leases outstanding"
                )
            things = list(self._pool)
            self._pool.clear()
        for thing in things:
            _dispose(thing)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class Lease:
    """Exclusive use of one pooled object until released or abandoned.

    Attribute access is forwarded to the leased object.
    """

    def __init__(self, pool, thing):
        self._pool: Optional[ThingPool] = pool
        self._thing = thing

    def get(self):
        """Return the leased object."""
        if self._pool is None:
            raise RuntimeError("Lease no longer holds an object")
        return self._thing

    def release(self):
        """Give the object back to the pool."""
        if self._pool is None:
            raise RuntimeError("Lease no longer holds an object")
        pool, thing = self._pool, self._thing
        self._pool = None
        self._thing = None
        pool.give_back(thing)

    def abandon(self):
        """Dispose of the object rather than returning it to the pool."""
        if self._pool is None:
            raise RuntimeError("Lease no longer holds an object")
        pool, thing = self._pool, self._thing
        self._pool = None
        self._thing = None
        pool.abandon(thing)

    @property
    def active(self) -> bool:
        return self._pool is not None

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.get(), name)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        if self._pool is not None:
            self.release()