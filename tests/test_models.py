"""Tests for record validation and task status transitions."""

import pytest

from jot.errors import ValidationError
from jot.models import (
    BatchStatus,
    BatchTaskState,
    ClassificationTask,
    Cluster,
    Note,
    NoteEmbedding,
    TaggedNote,
    TaskStatus,
)


def test_cluster_requires_members():
    with pytest.raises(ValidationError):
        Cluster(name="empty", centroid=[1.0], note_ids=[])


def test_cluster_dedupes_members():
    c = Cluster(name="c", centroid=[1, 2], note_ids=["a", "b", "a"])
    assert c.note_ids == ["a", "b"]
    assert c.centroid == [1.0, 2.0]
    assert c.updated_at == c.created_at
    assert c.parent_id is None


def test_embedding_validation():
    with pytest.raises(ValidationError):
        NoteEmbedding(note_id="", vector=[1.0])
    with pytest.raises(ValidationError):
        NoteEmbedding(note_id="n", vector=[])
    assert NoteEmbedding(note_id="n", vector=[1, 2, 3]).dimension == 3


def test_note_from_app_export():
    note = Note.from_dict({"id": 7, "content": "hi", "createdAt": "2024-01-01", "topicId": "t1"})
    assert note.id == "7"
    assert note.created_at == "2024-01-01"
    assert note.topic_id == "t1"
    assert not Note(id="x", content="   ").has_content


def test_task_lifecycle():
    task = ClassificationTask(note_id="n1")
    assert task.status is TaskStatus.PENDING
    task.transition(TaskStatus.PROCESSING)
    task.transition(TaskStatus.ERROR, "boom")
    assert task.error == "boom"
    assert task.completed_at is not None
    assert task.is_terminal


@pytest.mark.parametrize("start,target", [
    (TaskStatus.PENDING, TaskStatus.DONE),
    (TaskStatus.DONE, TaskStatus.PROCESSING),
    (TaskStatus.ERROR, TaskStatus.PENDING),
    (TaskStatus.PROCESSING, TaskStatus.PENDING),
])
def test_illegal_transitions(start, target):
    task = ClassificationTask(note_id="n1", status=start)
    with pytest.raises(ValidationError):
        task.transition(target)


def test_requeue_only_from_processing():
    task = ClassificationTask(note_id="n1", status=TaskStatus.PROCESSING)
    task.requeue()
    assert task.status is TaskStatus.PENDING
    with pytest.raises(ValidationError):
        ClassificationTask(note_id="n2", status=TaskStatus.DONE).requeue()


def test_task_survives_json_shape():
    task = ClassificationTask(note_id="n1")
    data = task.to_dict()
    assert data["status"] == "pending"
    assert ClassificationTask.from_dict(data) == task


def test_batch_state_from_dict_restores_nested_records():
    state = BatchTaskState(
        status=BatchStatus.PAUSED,
        batch_results=[[TaggedNote(id="a", content="x", preview="x", created_at="t", tags=["Work"])]],
    )
    restored = BatchTaskState.from_dict(state.to_dict())
    assert restored.status is BatchStatus.PAUSED
    assert isinstance(restored.batch_results[0][0], TaggedNote)
    assert restored.batch_results[0][0].tags == ["Work"]
