"""Resumable bulk tagging of the whole note corpus.

Notes are cut into fixed-size batches and each batch is tagged by an LLM.
After every successful batch the result is cached and the checkpoint saved,
so a paused, failed or crashed run continues from the first unfinished batch.
The per-note tags are finally folded into proposed topic groups.
"""

import asyncio
import copy
import logging
from pathlib import Path
from typing import Any

from ..errors import ParseError, TagGenerationError, ValidationError
from ..events import ProgressChannel, ProgressEvent
from ..models import BatchStatus, BatchTaskState, Note, NotePreview, TaggedNote, TopicGroup, now_iso
from ..providers.tagging import TagGenerationProvider
from ..storage import JsonStateFile

logger = logging.getLogger(__name__)


def create_batches(notes: list[Note], batch_size: int) -> list[list[Note]]:
    return [notes[i:i + batch_size] for i in range(0, len(notes), batch_size)]


def make_previews(notes: list[Note], preview_length: int) -> list[NotePreview]:
    previews = []
    for i, note in enumerate(notes, 1):
        text = note.content[:preview_length]
        if len(note.content) > preview_length:
            text += "..."
        previews.append(NotePreview(index=i, note=note, text=text))
    return previews


class BatchClassificationTask:
    """Runs, pauses and resumes the bulk tagging job.

    The cancellation event and the in-flight flag belong to this instance;
    the checkpoint lives in the state file so a new process can resume it.
    """

    def __init__(
        self,
        tagger: TagGenerationProvider | None,
        state_path: str | Path | None = None,
        cache_path: str | Path | None = None,
        config: dict[str, Any] | None = None,
    ):
        self.tagger = tagger
        self._state_file = JsonStateFile(state_path, default=None)
        self._cache_file = JsonStateFile(cache_path, default=[])
        self._cancel = asyncio.Event()
        self._running = False

        batch_cfg = (config or {}).get("batch", {})
        self.batch_size = batch_cfg.get("batch_size", 30)
        self.max_retries = batch_cfg.get("max_retries", 3)
        self.retry_delay = batch_cfg.get("retry_delay", 2.0)
        self.preview_length = batch_cfg.get("preview_length", 100)
        self.min_topic_size = batch_cfg.get("min_topic_size", 2)
        self.catch_all_tag = batch_cfg.get("catch_all_tag", "Other")

    @property
    def is_running(self) -> bool:
        return self._running

    def get_state(self) -> BatchTaskState:
        data = self._state_file.load()
        return BatchTaskState.from_dict(data) if data else BatchTaskState()

    def _save_state(self, state: BatchTaskState) -> None:
        self._state_file.save(state.to_dict())

    def get_cached_batch_results(self) -> list[list[TaggedNote]]:
        return [[TaggedNote.from_dict(n) for n in batch] for batch in self._cache_file.load()]

    def _save_cache(self, results: list[list[TaggedNote]]) -> None:
        self._cache_file.save([[n.to_dict() for n in batch] for batch in results])

    def clear(self) -> None:
        """Forget the task state and every cached batch result."""
        if self._running:
            raise ValidationError("cannot clear a running classification task")
        self._state_file.clear()
        self._cache_file.clear()

    def _require_tagger(self) -> None:
        if self.tagger is None:
            raise ValidationError("no tagging provider configured")

    def pause(self) -> None:
        """Ask the running task to stop before its next batch."""
        if self._running:
            self._cancel.set()

    async def start(self, notes: list[Note], progress: ProgressChannel | None = None) -> BatchTaskState:
        """Start a run, or resume a paused or interrupted one over the same notes."""
        self._require_tagger()
        valid = [n for n in notes if n.has_content]
        if not valid:
            raise ValidationError("no notes with content to classify")
        if self._running:
            raise ValidationError("a classification task is already running")

        state = self.get_state()
        # A state left `running` on disk means the process died mid-run.
        resumable = state.status in (BatchStatus.PAUSED, BatchStatus.RUNNING)
        return await self._run(valid, progress, resume=resumable and state.total_notes == len(valid))

    async def retry(self, notes: list[Note], progress: ProgressChannel | None = None) -> BatchTaskState:
        """Continue a failed or paused run from the batch it stopped at."""
        state = self.get_state()
        if state.status not in (BatchStatus.ERROR, BatchStatus.PAUSED):
            raise ValidationError("there is no failed or paused task to retry")
        self._require_tagger()
        if self._running:
            raise ValidationError("a classification task is already running")

        state.error = None
        state.retry_count = 0
        self._save_state(state)

        valid = [n for n in notes if n.has_content]
        if not valid:
            raise ValidationError("no notes with content to classify")
        if state.total_notes != len(valid):
            logger.warning(
                "Note count changed (%d -> %d), starting the task over",
                state.total_notes, len(valid),
            )
            return await self._run(valid, progress, resume=False)
        return await self._run(valid, progress, resume=True)

    async def _run(self, notes: list[Note], progress: ProgressChannel | None, resume: bool) -> BatchTaskState:
        batches = create_batches(notes, self.batch_size)

        if resume:
            state = self.get_state()
            state.status = BatchStatus.RUNNING
            state.error = None
            cached = self.get_cached_batch_results()
            logger.info("Resuming classification task at batch %d/%d", state.current_batch + 1, state.total_batches)
        else:
            state = BatchTaskState(
                status=BatchStatus.RUNNING,
                total_notes=len(notes),
                total_batches=len(batches),
                started_at=now_iso(),
            )
            cached = []
            self._save_cache(cached)
            logger.info("Starting classification task: %d notes in %d batches", len(notes), len(batches))

        self._cancel = asyncio.Event()
        self._running = True
        self._checkpoint(state, progress)

        try:
            for i in range(state.current_batch, len(batches)):
                if self._cancel.is_set():
                    state.status = BatchStatus.PAUSED
                    self._checkpoint(state, progress)
                    logger.info("Classification task paused before batch %d", i + 1)
                    return copy.deepcopy(state)

                batch = batches[i]
                state.current_batch = i
                self._checkpoint(state, progress)

                try:
                    result = await self._process_with_retries(batch, i, state)
                except (TagGenerationError, ParseError) as e:
                    state.status = BatchStatus.ERROR
                    state.error = str(e)
                    self._checkpoint(state, progress)
                    logger.error("Classification task failed at batch %d: %s", i + 1, e)
                    return copy.deepcopy(state)

                while len(cached) <= i:
                    cached.append([])
                cached[i] = result
                self._save_cache(cached)

                state.processed_notes += len(batch)
                state.current_batch = i + 1
                state.batch_results = cached
                self._checkpoint(state, progress)

            state.status = BatchStatus.COMPLETED
            state.completed_at = now_iso()
            state.batch_results = cached
            self._checkpoint(state, progress)
            logger.info("Classification task completed: %d notes", state.processed_notes)
            return copy.deepcopy(state)
        finally:
            self._running = False

    async def _process_with_retries(self, batch: list[Note], index: int, state: BatchTaskState) -> list[TaggedNote]:
        retries = 0
        while True:
            try:
                return await self._process_batch(batch, index)
            except (TagGenerationError, ParseError) as e:
                retries += 1
                state.retry_count += 1
                logger.warning("Batch %d failed, attempt %d/%d: %s", index + 1, retries, self.max_retries, e)
                if retries >= self.max_retries:
                    raise
                await asyncio.sleep(self.retry_delay)

    async def _process_batch(self, batch: list[Note], index: int) -> list[TaggedNote]:
        previews = make_previews(batch, self.preview_length)
        tags = await self.tagger.classify_batch(previews, index)
        if len(tags) != len(previews):
            raise ParseError(f"expected tags for {len(previews)} notes, got {len(tags)}")
        return [
            TaggedNote(
                id=p.note.id,
                content=p.note.content,
                preview=p.text,
                created_at=p.note.created_at,
                tags=note_tags or [self.catch_all_tag],
            )
            for p, note_tags in zip(previews, tags)
        ]

    def _checkpoint(self, state: BatchTaskState, progress: ProgressChannel | None) -> None:
        self._save_state(state)
        if progress:
            progress.publish(ProgressEvent(
                kind="batch",
                stage=state.status.value,
                completed=state.processed_notes,
                total=state.total_notes,
                payload=copy.deepcopy(state),
            ))

    def merge_and_group_results(self, batch_results: list[list[TaggedNote]] | None = None) -> list[TopicGroup]:
        """Group the cached (or given) batch results into topics."""
        if batch_results is None:
            batch_results = self.get_cached_batch_results()
        return merge_and_group_results(batch_results, self.min_topic_size, self.catch_all_tag)


def merge_and_group_results(
    batch_results: list[list[TaggedNote]],
    min_topic_size: int = 2,
    catch_all_tag: str = "Other",
) -> list[TopicGroup]:
    """Turn per-note tags into topic groups, largest first.

    A note appears under each of its tags. Groups smaller than min_topic_size
    and the catch-all tag's own group are folded into one catch-all group,
    appended last.
    """
    by_tag: dict[str, dict[str, TaggedNote]] = {}
    for item in (n for batch in batch_results for n in batch):
        for tag in item.tags:
            by_tag.setdefault(tag, {}).setdefault(item.id, item)

    groups = [
        TopicGroup(title=tag, description=f'Notes tagged "{tag}"', notes=list(notes.values()))
        for tag, notes in by_tag.items()
    ]
    groups.sort(key=lambda g: g.count, reverse=True)

    def is_catch_all(group: TopicGroup) -> bool:
        return group.title.casefold() == catch_all_tag.casefold()

    main = [g for g in groups if g.count >= min_topic_size and not is_catch_all(g)]
    leftovers: dict[str, TaggedNote] = {}
    for group in groups:
        if group.count < min_topic_size or is_catch_all(group):
            for note in group.notes:
                leftovers.setdefault(note.id, note)

    if leftovers:
        main.append(TopicGroup(
            title=catch_all_tag,
            description="Notes that did not fit a clear topic",
            notes=list(leftovers.values()),
        ))
    return main
