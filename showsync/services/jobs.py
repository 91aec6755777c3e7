"""Background batch jobs exposed through the HTTP API."""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ..errors import SyncError
from .batch import JobState, SyncJob

logger = logging.getLogger(__name__)


@dataclass
class JobProgress:
    """Progress surface for a job that is polled over HTTP."""

    job_id: str
    job: SyncJob[str] = field(default_factory=SyncJob)
    current_label: str | None = None
    completed: bool = False
    cancel_requested: bool = False
    error: str | None = None

    def update_progress(self, label: str) -> None:
        self.current_label = label

    def record_success(self) -> None:
        pass

    def record_failure(self, label: str, message: str) -> None:
        logger.debug("Job %s: %s failed (%s)", self.job_id, label, message)

    def complete(self) -> None:
        self.completed = True
        self.current_label = None

    def is_cancelled(self) -> bool:
        return self.cancel_requested

    def to_payload(self) -> dict[str, Any]:
        payload = {"jobId": self.job_id, **self.job.to_payload()}
        total = self.job.total_items
        if total:
            payload["percent"] = round(self.job.current_index / total * 100)
        else:
            payload["percent"] = 100 if self.completed else 0
        payload["current"] = self.current_label
        payload["completed"] = self.completed
        if self.error:
            payload["error"] = self.error
        return payload


JobRunner = Callable[[JobProgress], Awaitable[Any]]


class JobRegistry:
    """Track batch jobs started in the background.

    Only the newest ``max_finished`` completed jobs are kept; running jobs are
    never evicted.
    """

    def __init__(self, max_finished: int = 50) -> None:
        self._max_finished = max_finished
        self._jobs: dict[str, JobProgress] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def get(self, job_id: str) -> JobProgress | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[JobProgress]:
        return list(self._jobs.values())

    def start(self, runner: JobRunner) -> JobProgress:
        job_id = secrets.token_hex(6)
        progress = JobProgress(job_id=job_id)
        self._prune()
        self._jobs[job_id] = progress

        async def _runner() -> None:
            try:
                await runner(progress)
            except SyncError as exc:
                progress.error = exc.message
                progress.job.state = JobState.COMPLETED
                progress.complete()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Batch job %s failed: %s", job_id, exc)
                progress.error = str(exc)
                progress.job.state = JobState.COMPLETED
                progress.complete()
            finally:
                self._tasks.pop(job_id, None)

        self._tasks[job_id] = asyncio.create_task(_runner())
        return progress

    def _prune(self) -> None:
        finished = [job_id for job_id, job in self._jobs.items() if job.completed]
        for job_id in finished[: max(len(finished) - self._max_finished, 0)]:
            del self._jobs[job_id]

    async def wait(self, job_id: str) -> None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)

    def cancel(self, job_id: str) -> JobProgress | None:
        """Request cooperative cancellation; the current item still finishes."""

        progress = self._jobs.get(job_id)
        if progress is None:
            return None
        progress.cancel_requested = True
        progress.job.cancel()
        return progress

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.cancel()
        for task in list(self._tasks.values()):
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
