"""Supersede in-flight pipeline runs when a newer change arrives."""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from ..errors import PipelineAborted

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation signal checked between pipeline phases.

    Backed by a threading.Event so phases running in worker threads can poll it.
    """

    def __init__(self):
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineAborted("Pipeline run was superseded by a newer change")


PipelineRun = Callable[[Path, CancellationToken], Awaitable[Any]]


class TaskSupervisor:
    """Keep at most one logical pipeline run active for a workspace root.

    A new trigger cancels the token of the running task and starts a new
    task that first waits for the previous one to wind down, so runs for the
    same root never overlap. Cancellation is cooperative: a phase already in
    progress finishes before the abort is observed.
    """

    def __init__(self, pipeline: PipelineRun):
        self._pipeline = pipeline
        self._token: CancellationToken | None = None
        self._task: asyncio.Task | None = None
        self.completed_runs = 0
        self.aborted_runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def execute_task(self, root_dir: str | Path) -> asyncio.Task:
        """Start a pipeline run for root_dir, superseding any run in flight."""
        previous = self._task if self.is_running else None
        if previous is not None and self._token is not None:
            logger.info("New file change detected, cancelling the previous run")
            self._token.cancel()

        token = CancellationToken()
        self._token = token
        self._task = asyncio.create_task(self._run(Path(root_dir), token, previous))
        return self._task

    async def _run(self, root_dir: Path, token: CancellationToken, previous: asyncio.Task | None) -> Any:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)

        try:
            token.raise_if_cancelled()
            result = await self._pipeline(root_dir, token)
        except PipelineAborted:
            self.aborted_runs += 1
            logger.info(f"Pipeline run for {root_dir} was aborted")
            return None
        except Exception:
            logger.exception(f"Pipeline run for {root_dir} failed")
            return None
        finally:
            if self._token is token:
                self._token = None

        self.completed_runs += 1
        logger.info(f"Pipeline run for {root_dir} completed")
        return result

    def cancel_current_task(self) -> None:
        """Signal the running task, if any, to stop at its next checkpoint."""
        if self.is_running and self._token is not None:
            self._token.cancel()

    async def wait_idle(self) -> None:
        """Wait until the latest run has finished."""
        while self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)
