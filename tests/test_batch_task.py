"""Tests for the resumable bulk tagging task and topic grouping."""

import copy

import pytest

from conftest import FAST_CONFIG, FakeTagger, make_notes
from jot.errors import ParseError, ValidationError
from jot.events import ProgressChannel
from jot.models import BatchStatus, TaggedNote
from jot.tasks.batch_task import BatchClassificationTask, create_batches, make_previews, merge_and_group_results


def corpus(count: int) -> list:
    topics = ["work", "home", "travel"]
    return make_notes([f"{topics[i % 3]} note number {i}" for i in range(count)])


def test_create_batches():
    batches = create_batches(corpus(65), 30)
    assert [len(b) for b in batches] == [30, 30, 5]
    assert create_batches([], 30) == []


def test_previews_are_truncated_and_numbered():
    notes = make_notes(["x" * 150, "short"])
    previews = make_previews(notes, 100)
    assert previews[0].index == 1
    assert previews[0].text == "x" * 100 + "..."
    assert previews[1].text == "short"


@pytest.mark.asyncio
async def test_full_run_completes():
    tagger = FakeTagger()
    task = BatchClassificationTask(tagger, config=FAST_CONFIG)
    channel = ProgressChannel()
    events = []
    channel.subscribe(events.append)

    state = await task.start(corpus(65), channel)

    assert state.status is BatchStatus.COMPLETED
    assert state.processed_notes == 65
    assert state.total_batches == 3
    assert state.current_batch == 3
    assert state.completed_at is not None
    assert tagger.calls == [0, 1, 2]
    assert [len(b) for b in task.get_cached_batch_results()] == [30, 30, 5]
    assert events[-1].stage == "completed"
    assert not task.is_running


@pytest.mark.asyncio
async def test_start_rejects_empty_corpus():
    task = BatchClassificationTask(FakeTagger(), config=FAST_CONFIG)
    with pytest.raises(ValidationError):
        await task.start(make_notes(["   "]))


@pytest.mark.asyncio
async def test_start_needs_a_tagger():
    task = BatchClassificationTask(None, config=FAST_CONFIG)
    with pytest.raises(ValidationError):
        await task.start(corpus(3))


@pytest.mark.asyncio
async def test_failure_keeps_progress_and_retry_resumes():
    notes = corpus(65)
    tagger = FakeTagger(failing_batches={1})
    task = BatchClassificationTask(tagger, config=FAST_CONFIG)

    state = await task.start(notes)

    assert state.status is BatchStatus.ERROR
    assert state.current_batch == 1
    assert state.processed_notes == 30
    assert state.retry_count == 3
    assert "batch 1 unavailable" in state.error
    assert tagger.calls == [0, 1, 1, 1]
    assert len(task.get_cached_batch_results()) == 1
    first_batch = copy.deepcopy(task.get_cached_batch_results()[0])

    tagger.failing_batches.clear()
    tagger.calls.clear()
    state = await task.retry(notes)

    assert state.status is BatchStatus.COMPLETED
    assert tagger.calls == [1, 2]
    assert state.processed_notes == 65
    assert len(task.get_cached_batch_results()) == 3
    assert task.get_cached_batch_results()[0] == first_batch


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    attempts = {"count": 0}

    def flaky(note):
        return [note.content.split()[0]]

    class Flaky(FakeTagger):
        async def classify_batch(self, previews, batch_index=0):
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise ParseError("not json")
            return await super().classify_batch(previews, batch_index)

    task = BatchClassificationTask(Flaky(tag_for=flaky), config=FAST_CONFIG)
    state = await task.start(corpus(5))

    assert state.status is BatchStatus.COMPLETED
    assert state.retry_count == 1


@pytest.mark.asyncio
async def test_pause_stops_before_next_batch_and_start_resumes(tmp_path):
    notes = corpus(65)
    paths = (tmp_path / "state.json", tmp_path / "cache.json")
    task = None

    def pause_after_first(batch_index):
        if batch_index == 0:
            task.pause()

    tagger = FakeTagger(on_call=pause_after_first)
    task = BatchClassificationTask(tagger, *paths, config=FAST_CONFIG)

    state = await task.start(notes)
    assert state.status is BatchStatus.PAUSED
    assert state.current_batch == 1
    assert state.processed_notes == 30

    # A new process picks the checkpoint up from disk.
    resumed_tagger = FakeTagger()
    resumed = BatchClassificationTask(resumed_tagger, *paths, config=FAST_CONFIG)
    assert resumed.get_state().status is BatchStatus.PAUSED

    state = await resumed.start(notes)
    assert state.status is BatchStatus.COMPLETED
    assert resumed_tagger.calls == [1, 2]


@pytest.mark.asyncio
async def test_retry_restarts_when_note_count_changed():
    tagger = FakeTagger(failing_batches={1})
    task = BatchClassificationTask(tagger, config=FAST_CONFIG)
    await task.start(corpus(65))

    tagger.failing_batches.clear()
    tagger.calls.clear()
    state = await task.retry(corpus(40))

    assert state.status is BatchStatus.COMPLETED
    assert tagger.calls == [0, 1]
    assert state.total_notes == 40


@pytest.mark.asyncio
async def test_retry_requires_failed_or_paused_task():
    task = BatchClassificationTask(FakeTagger(), config=FAST_CONFIG)
    with pytest.raises(ValidationError):
        await task.retry(corpus(3))


@pytest.mark.asyncio
async def test_clear_forgets_state_and_cache(tmp_path):
    task = BatchClassificationTask(FakeTagger(), tmp_path / "s.json", tmp_path / "c.json", config=FAST_CONFIG)
    await task.start(corpus(5))

    task.clear()

    assert task.get_state().status is BatchStatus.IDLE
    assert task.get_cached_batch_results() == []


@pytest.mark.asyncio
async def test_untagged_notes_land_in_catch_all():
    task = BatchClassificationTask(FakeTagger(tag_for=lambda note: []), config=FAST_CONFIG)
    state = await task.start(corpus(3))
    assert all(n.tags == ["Other"] for n in state.batch_results[0])


def tagged(note_id, *tags):
    return TaggedNote(id=note_id, content=note_id, preview=note_id, created_at="", tags=list(tags))


def test_grouping_orders_by_size_and_folds_small_topics():
    results = [
        [tagged("a", "Work"), tagged("b", "Work", "Ideas"), tagged("c", "Home")],
        [tagged("d", "Work"), tagged("e", "Ideas"), tagged("f", "other")],
    ]

    groups = merge_and_group_results(results, min_topic_size=2)

    assert [g.title for g in groups] == ["Work", "Ideas", "Other"]
    assert [n.id for n in groups[0].notes] == ["a", "b", "d"]
    assert {n.id for n in groups[1].notes} == {"b", "e"}
    assert {n.id for n in groups[2].notes} == {"c", "f"}


def test_grouping_without_leftovers_has_no_catch_all():
    groups = merge_and_group_results([[tagged("a", "Work"), tagged("b", "Work")]])
    assert [g.title for g in groups] == ["Work"]
    assert groups[0].count == 2


def test_grouping_uses_configured_catch_all():
    config = copy.deepcopy(FAST_CONFIG)
    config["batch"]["catch_all_tag"] = "Misc"
    task = BatchClassificationTask(FakeTagger(), config=config)
    groups = task.merge_and_group_results([[tagged("a", "Solo")]])
    assert [g.title for g in groups] == ["Misc"]
