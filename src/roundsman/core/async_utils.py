"""Event-loop driver for the interactive runtime."""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
    if not pending:
        return
    for task in pending:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    for task in pending:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Task %s failed during shutdown: %s", task.get_name(), task.exception())


def run_async_with_timeout(
    coro: Coroutine[Any, Any, T],
    executor_timeout: float = 2.0,
    on_interrupt: Callable[[], None] | None = None,
) -> T:
    """Run coro like asyncio.run() with a bounded executor shutdown.

    Background tasks still pending when coro returns (or is interrupted)
    are cancelled. A thread stuck in the default executor cannot hang the
    exit: its shutdown is abandoned after executor_timeout seconds.

    Args:
        coro: Top-level coroutine.
        executor_timeout: Seconds to wait for executor threads.
        on_interrupt: Called on Ctrl-C before pending tasks are cancelled,
            e.g. to terminate child processes.

    Returns:
        Result of the coroutine.

    Raises:
        KeyboardInterrupt: Re-raised after cleanup.

    """
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        try:
            return loop.run_until_complete(coro)
        except KeyboardInterrupt:
            if on_interrupt is not None:
                on_interrupt()
            raise
    finally:
        with contextlib.suppress(Exception):
            _cancel_pending(loop)
        with contextlib.suppress(Exception):
            loop.run_until_complete(loop.shutdown_asyncgens())

        try:
            loop.run_until_complete(
                asyncio.wait_for(loop.shutdown_default_executor(), timeout=executor_timeout)
            )
        except TimeoutError:
            logger.warning(
                "Executor shutdown timed out after %.1fs - some threads may still be running",
                executor_timeout,
            )
        except Exception as e:
            logger.debug("Executor shutdown error (ignored): %s", e)

        asyncio.set_event_loop(None)
        loop.close()
