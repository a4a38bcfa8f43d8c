"""Shared fakes for the embedding and tagging providers."""

import pytest

from jot.errors import TagGenerationError
from jot.models import Note, NotePreview
from jot.notes import StaticNoteSource
from jot.providers.embedding import BatchEmbeddingResult, EmbeddingProvider, EmbeddingResult
from jot.providers.tagging import TagGenerationProvider
from jot.storage import MemoryClusterStore

FAST_CONFIG = {
    "classification": {
        "similarity_threshold": 0.7,
        "merge_threshold": 0.85,
        "max_cluster_size": 50,
        "min_split_size": 4,
        "task_delay": 0,
        "keep_completed_tasks": 100,
    },
    "embedding": {"batch_size": 20, "fallback_delay": 0, "batch_delay": 0},
    "batch": {"batch_size": 30, "max_retries": 3, "retry_delay": 0, "preview_length": 100},
}


class FakeEmbeddingProvider(EmbeddingProvider):
    """Looks vectors up by note text; unknown or failing texts are errors."""

    model_name = "fake-embedder"

    def __init__(self, vectors: dict[str, list[float]] | None = None, failing=()):
        super().__init__()
        self.vectors = dict(vectors or {})
        self.failing = set(failing)
        self.calls = 0
        self.batch_calls = 0

    def _known(self, text):
        return text in self.vectors and text not in self.failing

    async def embed(self, text):
        self.calls += 1
        if not self._known(text):
            return EmbeddingResult(success=False, error=f"cannot embed {text!r}")
        return EmbeddingResult(success=True, vector=list(self.vectors[text]), model=self.model_name)

    async def embed_batch(self, texts):
        self.batch_calls += 1
        if not all(self._known(t) for t in texts):
            return BatchEmbeddingResult(success=False, error="batch rejected")
        return BatchEmbeddingResult(
            success=True,
            vectors=[list(self.vectors[t]) for t in texts],
            model=self.model_name,
        )


class FakeTagger(TagGenerationProvider):
    """Tags each preview with tag_for(note); fails on chosen batches."""

    def __init__(self, tag_for=None, failing_batches=(), on_call=None):
        self.tag_for = tag_for or (lambda note: [note.content.split()[0]])
        self.failing_batches = set(failing_batches)
        self.on_call = on_call
        self.calls: list[int] = []

    async def classify_batch(self, previews: list[NotePreview], batch_index: int = 0):
        self.calls.append(batch_index)
        if self.on_call:
            self.on_call(batch_index)
        if batch_index in self.failing_batches:
            raise TagGenerationError(f"batch {batch_index} unavailable")
        return [self.tag_for(p.note) for p in previews]


def make_notes(contents: list[str]) -> list[Note]:
    return [Note(id=f"n{i}", content=c) for i, c in enumerate(contents)]


@pytest.fixture
def store():
    return MemoryClusterStore()


@pytest.fixture
def notes():
    return StaticNoteSource()
