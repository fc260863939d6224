"""A pool of workers fronted by a single dispatcher.

Messages handed to :meth:`RouterPool.dispatch` are forwarded to one (or
every) worker according to the pool's :class:`Kind`. Workers are created
from the factory on the first dispatch. Each worker has its own mailbox and
processes its messages one at a time.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

__all__ = ["Kind", "HashKeyer", "RouterConfig", "RouterPool", "hash_index"]

_log = logging.getLogger(__name__)

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF

Handler = Callable[[Any], Any]


class Kind(Enum):
    """Routing strategy."""

    ROUND_ROBIN = 1
    RANDOM = 2
    BROADCAST = 3
    # Messages with the same key always reach the same worker.
    CONSISTENT_HASH = 4
    # The worker with the smallest mailbox backlog wins; ties go to the first.
    LEAST_LOADED = 5


@runtime_checkable
class HashKeyer(Protocol):
    """A message that carries its own routing key."""

    def hash_key(self) -> str:
        """The key used by consistent-hash routing."""
        ...


@dataclass(frozen=True)
class RouterConfig:
    """Optional routing behaviour.

    ``hash_key`` extracts the key for consistent-hash routing when the
    message is not a :class:`HashKeyer`; without it ``str(msg)`` is used.
    """

    hash_key: Callable[[Any], str] | None = None


def _fnv32a(data: bytes) -> int:
    h = _FNV32_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV32_PRIME) & _MASK32
    return h


def hash_index(key: str, mod: int) -> int:
    """FNV-32a hash of ``key`` modulo ``mod``."""
    if mod < 1:
        raise ValueError("router: mod must be >= 1")
    return _fnv32a(key.encode("utf-8")) % mod


class _Worker:
    """One pool member: a mailbox drained by a task that calls the handler."""

    def __init__(self, name: str, handler: Handler) -> None:
        self.name = name
        self._handler = handler
        self._mailbox: asyncio.Queue[tuple[Any, asyncio.Future[Any]]] = asyncio.Queue()
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    def __repr__(self) -> str:
        return f"_Worker(name={self.name!r}, load={self.load}, stopped={self._stopped})"

    @property
    def load(self) -> int:
        """Messages waiting in the mailbox."""
        return self._mailbox.qsize()

    @property
    def stopped(self) -> bool:
        """Whether the worker has been stopped."""
        return self._stopped

    def tell(self, msg: Any) -> asyncio.Future[Any]:
        """Queue ``msg``; the future resolves with the handler's result."""
        if self._stopped:
            raise RuntimeError(f"router: worker {self.name} is stopped")
        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait((msg, fut))
        return fut

    async def _run(self) -> None:
        while True:
            msg, fut = await self._mailbox.get()
            try:
                result = self._handler(msg)
                if inspect.isawaitable(result):
                    result = await result
            except asyncio.CancelledError:
                fut.cancel()
                raise
            except Exception as exc:
                if not fut.done():
                    fut.set_exception(exc)
            else:
                if not fut.done():
                    fut.set_result(result)

    async def stop(self) -> None:
        """Stop processing and cancel every message still queued."""
        if self._stopped:
            return
        self._stopped = True
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        while not self._mailbox.empty():
            _, fut = self._mailbox.get_nowait()
            fut.cancel()


class RouterPool:
    """Dispatches messages to a pool of ``pool_size`` workers.

    ``factory`` is called once per worker and returns the handler that
    worker runs for each message; the handler may be a plain function or a
    coroutine function. A handler that raises fails only the message it was
    given; the worker keeps running.
    """

    def __init__(
        self,
        factory: Callable[[], Handler],
        kind: Kind,
        pool_size: int,
        config: RouterConfig | None = None,
    ) -> None:
        if factory is None:
            raise ValueError("router: factory is required")
        if pool_size < 1:
            raise ValueError("router: pool_size must be >= 1")
        self._factory = factory
        self._kind = Kind(kind)
        self._pool_size = pool_size
        self._config = config if config is not None else RouterConfig()
        self._workers: list[_Worker] = []
        self._rr = 0
        self._stopped = False

    @property
    def kind(self) -> Kind:
        """The routing strategy."""
        return self._kind

    @property
    def pool_size(self) -> int:
        """Number of workers in the pool."""
        return self._pool_size

    def workers(self) -> list[_Worker]:
        """The workers, in creation order; empty until the first dispatch."""
        return list(self._workers)

    def dispatch(self, msg: Any) -> asyncio.Future[Any]:
        """Forward ``msg`` and return a future for the outcome.

        For broadcast the future resolves with a list holding every
        worker's result (or exception) in worker order. Must be called
        from a running event loop.
        """
        if self._stopped:
            raise RuntimeError("router: pool is stopped")
        if not self._workers:
            self._init_workers()

        if self._kind is Kind.ROUND_ROBIN:
            return self._forward(self._next_round_robin(), msg)
        if self._kind is Kind.RANDOM:
            return self._forward(random.choice(self._workers), msg)
        if self._kind is Kind.BROADCAST:
            futures = [self._forward(worker, msg) for worker in self._workers]
            return asyncio.gather(*futures, return_exceptions=True)
        if self._kind is Kind.CONSISTENT_HASH:
            idx = hash_index(self._key_for(msg), len(self._workers))
            return self._forward(self._workers[idx], msg)
        return self._forward(self._least_loaded(), msg)

    async def stop(self) -> None:
        """Stop every worker. Safe to call more than once."""
        self._stopped = True
        workers, self._workers = self._workers, []
        for worker in workers:
            await worker.stop()
        self._stopped_workers = workers

    async def __aenter__(self) -> RouterPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _init_workers(self) -> None:
        self._workers = [_Worker(f"w{i}", self._factory()) for i in range(self._pool_size)]

    def _next_round_robin(self) -> _Worker:
        worker = self._workers[self._rr % len(self._workers)]
        self._rr += 1
        return worker

    def _key_for(self, msg: Any) -> str:
        if isinstance(msg, HashKeyer):
            return msg.hash_key()
        if self._config.hash_key is not None:
            return self._config.hash_key(msg)
        return str(msg)

    def _least_loaded(self) -> _Worker:
        return min(self._workers, key=lambda worker: worker.load)

    @staticmethod
    def _forward(worker: _Worker, msg: Any) -> asyncio.Future[Any]:
        # A failed forward is logged and reported through the future only;
        # it never takes the pool down.
        try:
            return worker.tell(msg)
        except RuntimeError as exc:
            _log.warning("router forward failed: target=%s err=%s", worker.name, exc)
            fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
            fut.set_exception(exc)
            return fut