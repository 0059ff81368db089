"""Background event loop shared by every connection of a registry."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable, Coroutine, TypeVar

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Runs database coroutines on a private event loop in a daemon thread.

    Callers on any thread hand work to :meth:`submit` and get a
    :class:`concurrent.futures.Future` back immediately.
    """

    def __init__(self, *, thread_name: str = "asyncdb-worker") -> None:
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name=thread_name,
            daemon=True,
        )
        self._closed = False
        self._loop_thread.start()
        LOG.debug("Started worker loop", extra={"worker_thread": thread_name})

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, work: Callable[[], Awaitable[T]]) -> concurrent.futures.Future[T]:
        """Schedule ``work()`` on the worker loop without waiting for it."""

        if self._closed:
            raise RuntimeError("Worker pool has been shut down")
        return asyncio.run_coroutine_threadsafe(_invoke(work), self._loop)

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Block the calling thread until ``coro`` finishes on the worker loop."""

        if self._closed:
            coro.close()
            raise RuntimeError("Worker pool has been shut down")
        if threading.current_thread() is self._loop_thread:
            coro.close()
            raise RuntimeError("WorkerPool.run() cannot be called from the worker thread")

        async def _coro() -> T:
            return await coro

        return self.submit(_coro).result()

    def shutdown(self, timeout: float = 1.0) -> None:
        """Stop the background event loop."""

        if self._closed:
            return
        self._closed = True
        cancelled = asyncio.run_coroutine_threadsafe(_cancel_pending(), self._loop)
        if threading.current_thread() is not self._loop_thread:
            try:
                cancelled.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                LOG.warning("Timed out cancelling pending work", extra={"worker_thread": self._loop_thread.name})
        # Queued even if run_forever has not started yet; it stops on first iteration.
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=timeout)
        if not self._loop_thread.is_alive():
            self._loop.close()
        LOG.debug("Stopped worker loop", extra={"worker_thread": self._loop_thread.name})

    def __del__(self) -> None:  # pragma: no cover - best effort cleanup
        try:
            self.shutdown()
        except Exception:
            pass


async def _invoke(work: Callable[[], Awaitable[T]]) -> T:
    return await work()


async def _cancel_pending() -> None:
    """Cancel every other task on the running loop and wait for them to settle.

    Each cancelled task resolves the caller's future as cancelled, so nobody
    blocked on ``result()`` is left waiting after the loop stops.
    """

    current = asyncio.current_task()
    pending = [task for task in asyncio.all_tasks() if task is not current and not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
        LOG.debug("Cancelled pending work", extra={"tasks": len(pending)})


__all__ = ["WorkerPool"]
