"""Periodic jobs owned by a single attempt.

Each attempt gets one ``AttemptScheduler``; the elapsed-time tick and the
session heartbeat are registered on it and ``cancel_all()`` stops both in
one call when the attempt leaves ``IN_PROGRESS``.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Set, Union

log = logging.getLogger(__name__)

Job = Callable[[], Union[None, Awaitable[Any]]]


class AttemptScheduler:
    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def every(self, period: float, job: Job, *, name: Optional[str] = None) -> asyncio.Task:
        """Run ``job`` every ``period`` seconds, first run one period from now.

        Must be called from inside a running event loop.
        """
        if self._closed:
            raise RuntimeError("scheduler already cancelled")
        if period <= 0:
            raise ValueError("period must be positive")
        task = asyncio.get_running_loop().create_task(self._run(period, job, name or repr(job)), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, period: float, job: Job, name: str) -> None:
        while not self._closed:
            await asyncio.sleep(period)
            if self._closed:
                break
            try:
                result = job()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("periodic job %s failed", name)

    def cancel_all(self) -> None:
        """Stop every job. Safe to call from inside one of the jobs."""
        self._closed = True
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._tasks):
            # the job that triggered finish() leaves its loop on the closed check
            if task is current or task.get_loop().is_closed():
                continue
            task.cancel()


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


__all__ = ["AttemptScheduler"]
