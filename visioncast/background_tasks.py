"""
Fire-and-forget execution of background coroutines.

Generation runs must outlive the request that submitted them: the
handler returns HTTP 201 before the run starts.  ``asyncio.create_task``
provides that, but the event loop keeps only weak references to tasks,
so the scheduler holds a strong reference to every pending task until it
finishes.

Tasks created here copy the current context variables, which means a run
scheduled inside a request keeps that request's ``correlation_id`` in
all of its log entries.

At shutdown ``drain`` gives pending tasks a grace period to finish and
cancels whatever is still running afterwards.
"""

import asyncio
import collections.abc
import typing

import structlog

logger = structlog.get_logger()


class BackgroundTaskScheduler:
    """Registry of running background tasks."""

    def __init__(self) -> None:
        self._pending_tasks: set[asyncio.Task[typing.Any]] = set()

    @property
    def pending_task_count(self) -> int:
        return len(self._pending_tasks)

    def schedule(
        self,
        coroutine: collections.abc.Coroutine[typing.Any, typing.Any, typing.Any],
        name: str | None = None,
    ) -> asyncio.Task[typing.Any]:
        """
        Start ``coroutine`` as a task without waiting for it.

        Must be called from a running event loop.  The task's own errors
        are expected to be handled inside the coroutine; anything that
        still escapes is logged as ``background_task_failed``.
        """
        background_task = asyncio.create_task(coroutine, name=name)
        self._pending_tasks.add(background_task)
        background_task.add_done_callback(self._forget_finished_task)
        return background_task

    def _forget_finished_task(self, background_task: asyncio.Task[typing.Any]) -> None:
        self._pending_tasks.discard(background_task)
        if background_task.cancelled():
            return
        task_exception = background_task.exception()
        if task_exception is not None:
            logger.error(
                "background_task_failed",
                task_name=background_task.get_name(),
                error=str(task_exception),
                error_type=type(task_exception).__name__,
            )

    async def wait_until_idle(self) -> None:
        """Wait until every task scheduled so far, and any they schedule, has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    async def drain(self, grace_period_seconds: float) -> None:
        """
        Wait up to ``grace_period_seconds`` for pending tasks, then cancel
        the rest and wait for the cancellations to complete.
        """
        if not self._pending_tasks:
            return

        logger.info("background_tasks_draining", pending_task_count=len(self._pending_tasks))
        still_pending_tasks = set(self._pending_tasks)
        if grace_period_seconds > 0:
            _, still_pending_tasks = await asyncio.wait(still_pending_tasks, timeout=grace_period_seconds)

        if still_pending_tasks:
            logger.warning(
                "background_tasks_cancelled",
                cancelled_task_count=len(still_pending_tasks),
                task_names=sorted(background_task.get_name() for background_task in still_pending_tasks),
            )
            for background_task in still_pending_tasks:
                background_task.cancel()
            await asyncio.gather(*still_pending_tasks, return_exceptions=True)
