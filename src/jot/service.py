"""Classification service: wires store, provider, engine, queue and batch task."""

import asyncio
import logging
from pathlib import Path
from typing import Any

from .clustering.engine import ClassificationEngine, ReclassifyResult
from .clustering.vector_math import SimilarNote
from .events import ProgressChannel
from .maintenance.janitor import run_janitor
from .models import BatchTaskState, Cluster, Note, TaggedNote, TopicGroup
from .notes import JsonNoteSource, NoteSource
from .providers import EmbeddingProvider, TagGenerationProvider, get_embedding_provider
from .storage import ClusterStoreBase, get_cluster_store
from .tasks.batch_task import BatchClassificationTask
from .tasks.task_queue import TaskQueue

logger = logging.getLogger(__name__)

QUEUE_FILE = "queue.json"
BATCH_STATE_FILE = "batch_task.json"
BATCH_CACHE_FILE = "batch_cache.json"


class ClassificationService:
    """Everything the host application calls, in one place.

    The tagging provider is only needed to run the bulk task; when none is
    given it is built from config the first time a run starts.
    """

    def __init__(
        self,
        store: ClusterStoreBase,
        provider: EmbeddingProvider,
        notes: NoteSource,
        config: dict[str, Any] | None = None,
        tagger: TagGenerationProvider | None = None,
        data_path: str | Path | None = None,
    ):
        self.config = config or {}
        self.store = store
        self.provider = provider
        self.notes = notes
        self.status = ProgressChannel()
        self.engine = ClassificationEngine(store, provider, notes, self.config)

        data_dir = Path(data_path) if data_path else None
        if data_dir:
            data_dir.mkdir(parents=True, exist_ok=True)

        cls_cfg = self.config.get("classification", {})
        self.queue = TaskQueue(
            self.engine.classify_note,
            path=data_dir / QUEUE_FILE if data_dir else None,
            task_delay=cls_cfg.get("task_delay", 0.1),
            keep_completed=cls_cfg.get("keep_completed_tasks", 100),
            channel=self.status,
        )
        self.queue.recover()

        self._tagger = tagger
        self._batch_paths = (
            data_dir / BATCH_STATE_FILE if data_dir else None,
            data_dir / BATCH_CACHE_FILE if data_dir else None,
        )
        self._batch: BatchClassificationTask | None = None
        self._pending_runs: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "ClassificationService":
        return cls(
            store=get_cluster_store(config),
            provider=get_embedding_provider(config),
            notes=JsonNoteSource(config["notes_path"]),
            config=config,
            data_path=config.get("data_path"),
        )

    @property
    def batch(self) -> BatchClassificationTask:
        if self._batch is None:
            state_path, cache_path = self._batch_paths
            self._batch = BatchClassificationTask(self._tagger, state_path, cache_path, self.config)
        return self._batch

    def _tagging_batch(self) -> BatchClassificationTask:
        batch = self.batch
        if batch.tagger is None:
            from .providers.tagging import AnthropicTagProvider
            batch.tagger = self._tagger = AnthropicTagProvider(self.config)
        return batch

    # Incremental path

    def enqueue_note(self, note_id: str) -> asyncio.Task | None:
        """Queue note_id for classification and kick the worker.

        Returns the worker task when called inside a running event loop;
        otherwise the note just waits in the queue for process_queue().
        """
        self.queue.enqueue(note_id)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        task = loop.create_task(self.queue.process_queue())
        self._pending_runs.add(task)
        task.add_done_callback(self._pending_runs.discard)
        return task

    async def process_queue(self) -> int:
        return await self.queue.process_queue()

    def get_classification_status(self) -> dict[str, Any]:
        stats = self.queue.stats()
        clusters = self.store.list_clusters()
        return {
            "is_processing": self.queue.is_processing,
            "queue": {
                "total": stats.total,
                "pending": stats.pending,
                "processing": stats.processing,
                "done": stats.done,
                "error": stats.error,
            },
            "clusters": {
                "count": len(clusters),
                "total_notes": sum(c.size for c in clusters),
            },
            "embeddings": {"count": self.store.count_embeddings()},
        }

    async def reclassify_all(self, progress: ProgressChannel | None = None) -> ReclassifyResult:
        return await self.engine.reclassify_all(progress)

    async def cleanup_note_classification(self, note_id: str) -> bool:
        return await self.engine.cleanup_note_classification(note_id)

    def find_similar_notes(self, note_id: str, top_n: int = 5) -> list[SimilarNote]:
        return self.engine.find_similar_notes(note_id, top_n)

    def list_clusters(self) -> list[Cluster]:
        return self.store.list_clusters()

    async def run_janitor(self) -> dict[str, Any]:
        async with self.engine.lock:
            return run_janitor(self.store)

    # Bulk tagging path

    async def start_classification_task(
        self, notes: list[Note] | None = None, progress: ProgressChannel | None = None
    ) -> BatchTaskState:
        return await self._tagging_batch().start(self._notes_or_all(notes), progress)

    def pause_task(self) -> None:
        self.batch.pause()

    async def retry_task(
        self, notes: list[Note] | None = None, progress: ProgressChannel | None = None
    ) -> BatchTaskState:
        return await self._tagging_batch().retry(self._notes_or_all(notes), progress)

    def clear_task(self) -> None:
        self.batch.clear()

    def get_task_state(self) -> BatchTaskState:
        return self.batch.get_state()

    def merge_and_group_results(self, batch_results: list[list[TaggedNote]] | None = None) -> list[TopicGroup]:
        return self.batch.merge_and_group_results(batch_results)

    def get_cached_batch_results(self) -> list[list[TaggedNote]]:
        return self.batch.get_cached_batch_results()

    def _notes_or_all(self, notes: list[Note] | None) -> list[Note]:
        return self.notes.load_notes() if notes is None else notes

    async def close(self) -> None:
        if self._pending_runs:
            await asyncio.gather(*self._pending_runs, return_exceptions=True)
        await self.provider.close()
