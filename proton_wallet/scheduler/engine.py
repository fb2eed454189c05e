"""
Operation scheduler: two lanes for network operations.

- sequential: concurrency 1, FIFO. Used when a later operation depends on an
  earlier one having completed (sign -> push -> refetch, any chain mutation).
  A single worker drains an asyncio.Queue, so operations never overlap and
  complete in submission order.
- concurrent: bounded parallelism (asyncio.Semaphore) for independent reads.

Every submission resolves to a Result; failures are captured as WalletError
and never raised across the boundary. No retry at this layer.

FanOutJoin is the join used by fan-out stages: a counter guarded by a lock
that fires exactly once when every sub-operation has reported.
"""

from __future__ import annotations

import asyncio
import enum
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from proton_wallet.core.exceptions import WalletError, as_wallet_error
from proton_wallet.wallet_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]

DEFAULT_MAX_CONCURRENCY = 8


class Lane(str, enum.Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of one scheduled operation: value on success, error on failure."""

    value: T | None = None
    error: WalletError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return value or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "Result[T]":
        return cls(error=as_wallet_error(error))


async def _run(operation: Operation[T], name: str, lane: Lane) -> Result[T]:
    try:
        return Result.success(await operation())
    except asyncio.CancelledError:
        raise
    except Exception as e:
        err = as_wallet_error(e)
        logger.debug("scheduler_operation_failed", operation=name, lane=lane.value, kind=err.kind.value, error=err.message)
        return Result(error=err)


class OperationScheduler:
    """Sequential and concurrent lanes bound to the running event loop."""

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY) -> None:
        self.max_concurrency = max(1, int(max_concurrency))
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[tuple[Operation[Any], asyncio.Future[Result[Any]], str]] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._semaphore: asyncio.Semaphore | None = None

    def _ensure_loop(self) -> tuple[asyncio.AbstractEventLoop, asyncio.Queue, asyncio.Semaphore]:
        """Lanes for the running loop; rebuilt when first used from a new event loop."""
        loop = asyncio.get_running_loop()
        if (
            self._loop is not loop
            or self._queue is None
            or self._semaphore is None
            or self._worker is None
            or self._worker.done()
        ):
            self._loop = loop
            self._queue = asyncio.Queue()
            self._semaphore = asyncio.Semaphore(self.max_concurrency)
            self._worker = loop.create_task(self._drain_sequential(self._queue))
        return loop, self._queue, self._semaphore

    async def _drain_sequential(self, queue: asyncio.Queue) -> None:
        while True:
            operation, future, name = await queue.get()
            try:
                if future.cancelled():
                    continue
                try:
                    result = await _run(operation, name, Lane.SEQUENTIAL)
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                if not future.done():
                    future.set_result(result)
            finally:
                queue.task_done()

    async def _run_concurrent(self, semaphore: asyncio.Semaphore, operation: Operation[T], name: str) -> Result[T]:
        async with semaphore:
            return await _run(operation, name, Lane.CONCURRENT)

    def submit_nowait(self, lane: Lane, operation: Operation[T], *, name: str = "") -> asyncio.Future[Result[T]]:
        """
        Enqueue operation and return a future for its Result.

        Must be called from the event loop. Sequential submissions are ordered
        by call order, so A, B, C submitted back to back complete as A, B, C.
        """
        loop, queue, semaphore = self._ensure_loop()
        if lane is Lane.SEQUENTIAL:
            future: asyncio.Future[Result[T]] = loop.create_future()
            queue.put_nowait((operation, future, name))
            return future
        return asyncio.ensure_future(self._run_concurrent(semaphore, operation, name))

    async def submit(self, lane: Lane, operation: Operation[T], *, name: str = "") -> Result[T]:
        return await self.submit_nowait(lane, operation, name=name)

    async def sequential(self, operation: Operation[T], *, name: str = "") -> Result[T]:
        return await self.submit(Lane.SEQUENTIAL, operation, name=name)

    async def concurrent(self, operation: Operation[T], *, name: str = "") -> Result[T]:
        return await self.submit(Lane.CONCURRENT, operation, name=name)

    async def fan_out(self, operations: Iterable[Operation[T]], *, name: str = "") -> list[Result[T]]:
        """
        Run operations on the concurrent lane and join when all have reported.

        Results come back in submission order; individual failures stay in
        their Result and never fail the batch.
        """
        ops = list(operations)
        join = FanOutJoin(len(ops))
        results: list[Result[T] | None] = [None] * len(ops)

        async def _one(index: int, operation: Operation[T]) -> None:
            try:
                results[index] = await self.submit(Lane.CONCURRENT, operation, name=name)
            finally:
                join.report()

        tasks = [asyncio.ensure_future(_one(i, op)) for i, op in enumerate(ops)]
        await join.wait()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return [r if r is not None else Result(error=WalletError("operation did not report", operation=name)) for r in results]

    async def aclose(self) -> None:
        """Stop the sequential worker; pending sequential futures are cancelled."""
        worker, queue = self._worker, self._queue
        self._worker = None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        if queue is not None:
            while not queue.empty():
                _, future, _ = queue.get_nowait()
                if not future.done():
                    future.cancel()


class FanOutJoin:
    """
    Completion counter for a fan-out batch of known size.

    report() increments the counter and checks for completion under one lock,
    so the join fires exactly once whatever order completions arrive in.
    expected == 0 fires immediately.
    """

    def __init__(self, expected: int) -> None:
        if expected < 0:
            raise ValueError("expected must be >= 0")
        self.expected = expected
        self._count = 0
        self._fired = False
        self._fire_count = 0
        self._lock = threading.Lock()
        self._event = asyncio.Event()
        if expected == 0:
            self._fire()

    @property
    def count(self) -> int:
        return self._count

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def fire_count(self) -> int:
        return self._fire_count

    def _fire(self) -> None:
        self._fired = True
        self._fire_count += 1
        self._event.set()

    def report(self) -> bool:
        """Record one completion. Returns True only for the call that fires the join."""
        with self._lock:
            self._count += 1
            should_fire = not self._fired and self._count >= self.expected
            if should_fire:
                self._fire()
        return should_fire

    async def wait(self) -> None:
        await self._event.wait()
