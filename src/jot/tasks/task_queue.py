"""Durable FIFO queue of note classification tasks with a single worker.

Enqueue is idempotent per note: while a note has a pending task, enqueueing
it again is a no-op, so bursts of edits collapse into one classification.
The worker drains pending tasks oldest first, one at a time, pausing briefly
between tasks so the embedding provider is not flooded. Failed tasks stay in
`error` and are not retried; terminal tasks beyond the newest
`keep_completed` are pruned after each drain.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from ..events import ProgressChannel, ProgressEvent
from ..models import ClassificationTask, QueueStats, TaskStatus
from ..storage import JsonStateFile

logger = logging.getLogger(__name__)

Classifier = Callable[[str], Awaitable[Any]]


class TaskQueue:
    def __init__(
        self,
        classify: Classifier,
        path: str | Path | None = None,
        task_delay: float = 0.1,
        keep_completed: int = 100,
        channel: ProgressChannel | None = None,
    ):
        """
        Args:
            classify: coroutine function run for each task's note id
            path: JSON file persisting the queue; in-memory when None
            task_delay: seconds to wait between tasks
            keep_completed: terminal tasks kept by cleanup()
            channel: where "processing"/"idle" status events are published
        """
        self._classify = classify
        self._file = JsonStateFile(path, default=[])
        self.task_delay = task_delay
        self.keep_completed = keep_completed
        self.channel = channel
        self._processing = False

    @property
    def is_processing(self) -> bool:
        return self._processing

    def _load(self) -> list[ClassificationTask]:
        return [ClassificationTask.from_dict(t) for t in self._file.load()]

    def _save(self, tasks: list[ClassificationTask]) -> None:
        self._file.save([t.to_dict() for t in tasks])

    def tasks(self) -> list[ClassificationTask]:
        return self._load()

    def enqueue(self, note_id: str) -> bool:
        """Add a pending task for note_id. Returns False if one was already pending."""
        tasks = self._load()
        if any(t.note_id == note_id and t.status is TaskStatus.PENDING for t in tasks):
            logger.debug("Note %s already has a pending task", note_id)
            return False
        tasks.append(ClassificationTask(note_id=note_id))
        self._save(tasks)
        return True

    def next_pending(self) -> ClassificationTask | None:
        """The oldest pending task, or None."""
        for task in self._load():
            if task.status is TaskStatus.PENDING:
                return task
        return None

    def update_status(self, task_id: str, status: TaskStatus, error: str | None = None) -> bool:
        tasks = self._load()
        for task in tasks:
            if task.id == task_id:
                task.transition(status, error)
                self._save(tasks)
                return True
        return False

    def recover(self) -> int:
        """Requeue tasks a crashed worker left in `processing`."""
        if self._processing:
            return 0
        tasks = self._load()
        stale = [t for t in tasks if t.status is TaskStatus.PROCESSING]
        for task in stale:
            task.requeue()
        if stale:
            self._save(tasks)
            logger.info("Requeued %d task(s) left in processing", len(stale))
        return len(stale)

    async def process_queue(self) -> int:
        """Drain pending tasks. Returns how many were processed.

        Concurrent calls are safe: only the first one works, the others
        return 0 immediately.
        """
        if self._processing:
            return 0

        self._processing = True
        self._notify("processing")
        processed = 0
        try:
            while True:
                task = self.next_pending()
                if task is None:
                    break

                self.update_status(task.id, TaskStatus.PROCESSING)
                try:
                    await self._classify(task.note_id)
                except Exception as e:
                    # One bad note must not stop the queue.
                    logger.error("Classification task for note %s failed: %s", task.note_id, e)
                    self.update_status(task.id, TaskStatus.ERROR, str(e) or type(e).__name__)
                else:
                    self.update_status(task.id, TaskStatus.DONE)
                processed += 1

                await asyncio.sleep(self.task_delay)

            self.cleanup()
        finally:
            self._processing = False
            self._notify("idle")

        return processed

    def cleanup(self) -> int:
        """Keep active tasks and the newest keep_completed terminal ones. Returns how many were pruned."""
        tasks = self._load()
        active = [t for t in tasks if not t.is_terminal]
        finished = sorted(
            (t for t in tasks if t.is_terminal),
            key=lambda t: t.completed_at or "",
            reverse=True,
        )
        kept = finished[: self.keep_completed]
        pruned = len(finished) - len(kept)
        if pruned:
            self._save(active + kept)
        return pruned

    def stats(self) -> QueueStats:
        tasks = self._load()
        stats = QueueStats(total=len(tasks))
        for task in tasks:
            setattr(stats, task.status.value, getattr(stats, task.status.value) + 1)
        return stats

    def _notify(self, stage: str) -> None:
        if self.channel:
            stats = self.stats()
            self.channel.publish(ProgressEvent(
                kind="queue",
                stage=stage,
                completed=stats.done + stats.error,
                total=stats.total,
                payload=stats,
            ))
