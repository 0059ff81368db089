"""Composition helpers for the futures handed out by the dispatcher."""

from __future__ import annotations

import asyncio
import concurrent.futures
from concurrent.futures import Future
from typing import Any, Callable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def transform(future: Future[T], done: Callable[[T], R]) -> Future[R]:
    """Return a future resolving to ``done(result)`` once ``future`` succeeds.

    Failures pass through unchanged. ``done`` runs on whichever thread
    resolves ``future`` (the worker thread for dispatcher futures), after the
    backend has finished fetching. An exception raised by ``done`` fails the
    returned future.
    """

    target: Future[R] = Future()

    def _relay(source: Future[T]) -> None:
        if target.cancelled():
            return
        if source.cancelled():
            target.cancel()
            return
        error = source.exception()
        if error is not None:
            target.set_exception(error)
            return
        try:
            value = done(source.result())
        except Exception as exc:
            target.set_exception(exc)
        else:
            target.set_result(value)

    future.add_done_callback(_relay)
    return target


def wait_all(*futures: Future[Any], timeout: float | None = None) -> tuple[Future[Any], ...]:
    """Block until every future has resolved, successfully or not.

    Failed futures are returned as-is; inspect them with ``exception()`` or
    ``result()``. Raises :class:`TimeoutError` if ``timeout`` expires first.
    """

    _, pending = concurrent.futures.wait(futures, timeout=timeout)
    if pending:
        raise TimeoutError(f"{len(pending)} future(s) still pending after {timeout}s")
    return futures


def gather(*futures: Future[Any], timeout: float | None = None) -> tuple[Any, ...]:
    """Return the results of ``futures`` in order, failing on the first error."""

    done, pending = concurrent.futures.wait(
        futures,
        timeout=timeout,
        return_when=concurrent.futures.FIRST_EXCEPTION,
    )
    for future in futures:
        if future in done and not future.cancelled():
            error = future.exception()
            if error is not None:
                raise error
    if pending:
        raise TimeoutError(f"{len(pending)} future(s) still pending after {timeout}s")
    return tuple(future.result() for future in futures)


async def aresult(future: Future[T]) -> T:
    """Await a dispatcher future from code running on another event loop."""

    return await asyncio.wrap_future(future)


__all__ = ["aresult", "gather", "transform", "wait_all"]
