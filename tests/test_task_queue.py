"""Tests for the classification task queue."""

import asyncio
import json

import pytest

from jot.events import ProgressChannel
from jot.models import TaskStatus
from jot.tasks.task_queue import TaskQueue


class Recorder:
    """Stands in for ClassificationEngine.classify_note."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.seen: list[str] = []

    async def __call__(self, note_id):
        self.seen.append(note_id)
        await asyncio.sleep(0)
        if note_id in self.failing:
            raise RuntimeError(f"cannot classify {note_id}")


def test_enqueue_is_idempotent_while_pending():
    queue = TaskQueue(Recorder(), task_delay=0)
    assert queue.enqueue("n1")
    assert not queue.enqueue("n1")
    assert queue.stats().total == 1
    assert queue.stats().pending == 1


@pytest.mark.asyncio
async def test_process_queue_runs_tasks_in_order():
    classify = Recorder()
    queue = TaskQueue(classify, task_delay=0)
    for note_id in ("a", "b", "c"):
        queue.enqueue(note_id)

    assert await queue.process_queue() == 3

    assert classify.seen == ["a", "b", "c"]
    stats = queue.stats()
    assert (stats.done, stats.pending, stats.error) == (3, 0, 0)
    assert not queue.is_processing


@pytest.mark.asyncio
async def test_failed_task_does_not_stop_the_queue():
    queue = TaskQueue(Recorder(failing={"b"}), task_delay=0)
    for note_id in ("a", "b", "c"):
        queue.enqueue(note_id)

    await queue.process_queue()

    by_note = {t.note_id: t for t in queue.tasks()}
    assert by_note["a"].status is TaskStatus.DONE
    assert by_note["b"].status is TaskStatus.ERROR
    assert "cannot classify b" in by_note["b"].error
    assert by_note["c"].status is TaskStatus.DONE


@pytest.mark.asyncio
async def test_concurrent_drains_process_each_task_once():
    classify = Recorder()
    queue = TaskQueue(classify, task_delay=0)
    for note_id in ("a", "b"):
        queue.enqueue(note_id)

    results = await asyncio.gather(queue.process_queue(), queue.process_queue())

    assert sorted(results) == [0, 2]
    assert classify.seen == ["a", "b"]


@pytest.mark.asyncio
async def test_note_can_be_queued_again_after_it_finished():
    queue = TaskQueue(Recorder(), task_delay=0)
    queue.enqueue("a")
    await queue.process_queue()
    assert queue.enqueue("a")
    assert queue.stats().pending == 1


@pytest.mark.asyncio
async def test_cleanup_keeps_newest_finished_tasks():
    queue = TaskQueue(Recorder(), task_delay=0, keep_completed=3)
    for i in range(5):
        queue.enqueue(f"n{i}")

    await queue.process_queue()

    tasks = queue.tasks()
    assert len(tasks) == 3
    assert all(t.status is TaskStatus.DONE for t in tasks)


def test_cleanup_never_drops_pending_tasks():
    queue = TaskQueue(Recorder(), task_delay=0, keep_completed=0)
    queue.enqueue("a")
    assert queue.cleanup() == 0
    assert queue.stats().pending == 1


@pytest.mark.asyncio
async def test_queue_persists_to_disk(tmp_path):
    path = tmp_path / "queue.json"
    queue = TaskQueue(Recorder(), path=path, task_delay=0)
    queue.enqueue("a")
    queue.enqueue("b")

    reopened = TaskQueue(Recorder(), path=path, task_delay=0)
    assert [t.note_id for t in reopened.tasks()] == ["a", "b"]

    await reopened.process_queue()
    saved = json.loads(path.read_text())
    assert [t["status"] for t in saved] == ["done", "done"]


def test_recover_requeues_tasks_left_processing(tmp_path):
    path = tmp_path / "queue.json"
    queue = TaskQueue(Recorder(), path=path, task_delay=0)
    queue.enqueue("a")
    task = queue.next_pending()
    queue.update_status(task.id, TaskStatus.PROCESSING)

    reopened = TaskQueue(Recorder(), path=path, task_delay=0)
    assert reopened.recover() == 1
    assert reopened.next_pending().note_id == "a"


@pytest.mark.asyncio
async def test_status_changes_are_published():
    channel = ProgressChannel()
    stages = []
    channel.subscribe(lambda e: stages.append(e.stage))
    queue = TaskQueue(Recorder(), task_delay=0, channel=channel)
    queue.enqueue("a")

    await queue.process_queue()

    assert stages == ["processing", "idle"]
    assert channel.latest.payload.done == 1
