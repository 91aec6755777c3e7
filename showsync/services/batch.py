"""Sequential, cancellable synchronization across many documents."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Protocol, Sequence, TypeVar

from ..errors import SyncError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ProgressReporter(Protocol):
    """Progress surface notified while a batch runs."""

    def update_progress(self, label: str) -> None: ...

    def record_success(self) -> None: ...

    def record_failure(self, label: str, message: str) -> None: ...

    def complete(self) -> None: ...

    def is_cancelled(self) -> bool: ...


@dataclass
class SyncJob(Generic[T]):
    """Counters and errors for one batch run.

    Only the orchestrator mutates the counters; ``cancel`` may be called by
    anyone and is observed between items.
    """

    total_items: int = 0
    current_index: int = 0
    success_count: int = 0
    failure_count: int = 0
    cancelled: bool = False
    errors: list[tuple[T, str]] = field(default_factory=list)
    state: JobState = JobState.IDLE

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.CANCELLED)

    def grouped_errors(self) -> dict[str, list[T]]:
        """Group failed items by message, in first-seen order."""

        groups: dict[str, list[T]] = {}
        for item, message in self.errors:
            groups.setdefault(message, []).append(item)
        return groups

    def to_payload(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "totalItems": self.total_items,
            "currentIndex": self.current_index,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "cancelled": self.cancelled,
            "errors": [
                {"message": message, "count": len(items), "items": [str(item) for item in items]}
                for message, items in self.grouped_errors().items()
            ],
        }


class BatchSynchronizer:
    """Run a per-item sync over a list of items, one at a time."""

    async def run(
        self,
        items: Sequence[T],
        per_item_sync: Callable[[T], Awaitable[Any]],
        *,
        progress: ProgressReporter | None = None,
        job: SyncJob[T] | None = None,
        label: Callable[[T], str] = str,
    ) -> SyncJob[T]:
        """Process ``items`` in order and return the finished job.

        A failing item is recorded and the batch moves on. Cancellation is
        checked before each item; an item already started always finishes.
        """

        job = job if job is not None else SyncJob()
        job.total_items = len(items)
        job.state = JobState.RUNNING
        stopped_early = False

        try:
            for item in items:
                if progress is not None and progress.is_cancelled():
                    job.cancel()
                if job.cancelled:
                    logger.info(
                        "Batch cancelled after %d of %d items",
                        job.current_index,
                        job.total_items,
                    )
                    stopped_early = True
                    break

                job.current_index += 1
                item_label = label(item)
                if progress is not None:
                    progress.update_progress(item_label)

                try:
                    await per_item_sync(item)
                except SyncError as exc:
                    self._record_failure(job, progress, item, item_label, exc.message)
                except Exception as exc:
                    logger.exception("Unexpected failure while syncing %s", item_label)
                    self._record_failure(
                        job, progress, item, item_label, str(exc) or exc.__class__.__name__
                    )
                else:
                    job.success_count += 1
                    if progress is not None:
                        progress.record_success()
        except asyncio.CancelledError:
            job.cancel()
            job.state = JobState.CANCELLED
            if progress is not None:
                progress.complete()
            raise

        job.state = JobState.CANCELLED if stopped_early else JobState.COMPLETED
        if progress is not None:
            progress.complete()
        logger.info(
            "Batch finished (%s): %d succeeded, %d failed",
            job.state.value,
            job.success_count,
            job.failure_count,
        )
        return job

    @staticmethod
    def _record_failure(
        job: SyncJob[T],
        progress: ProgressReporter | None,
        item: T,
        item_label: str,
        message: str,
    ) -> None:
        job.failure_count += 1
        job.errors.append((item, message))
        logger.warning("Sync failed for %s: %s", item_label, message)
        if progress is not None:
            progress.record_failure(item_label, message)
