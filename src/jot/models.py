"""Data models used throughout jot."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import ValidationError


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class Note:
    """Read-only view of a quick note owned by the host application."""
    id: str
    content: str
    created_at: str = field(default_factory=now_iso)
    topic_id: str | None = None

    @property
    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        return cls(
            id=str(data["id"]),
            content=data.get("content") or "",
            created_at=data.get("created_at") or data.get("createdAt") or now_iso(),
            topic_id=data.get("topic_id") or data.get("topicId"),
        )


@dataclass
class NoteEmbedding:
    """Embedding vector of one note. One per note, replaced on reclassification."""
    note_id: str
    vector: list[float]
    model: str = "unknown"
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    def __post_init__(self):
        if not self.note_id:
            raise ValidationError("embedding needs a note id")
        self.vector = [float(x) for x in self.vector]
        if not self.vector:
            raise ValidationError(f"embedding for note {self.note_id} is empty")

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NoteEmbedding":
        return cls(**data)


@dataclass
class Cluster:
    """A named group of semantically related notes.

    note_ids is never empty and never holds duplicates; centroid is the mean of
    the member embeddings and is kept current by the engine. parent_id is
    reserved for hierarchical grouping and is never set.
    """
    name: str
    centroid: list[float]
    note_ids: list[str]
    id: str = field(default_factory=new_id)
    parent_id: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self):
        self.note_ids = list(dict.fromkeys(self.note_ids))
        if not self.note_ids:
            raise ValidationError(f"cluster {self.name!r} must contain at least one note")
        self.centroid = [float(x) for x in self.centroid]
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def size(self) -> int:
        return len(self.note_ids)

    def touch(self) -> None:
        self.updated_at = now_iso()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cluster":
        return cls(**data)


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


TERMINAL_STATUSES = (TaskStatus.DONE, TaskStatus.ERROR)

_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING},
    TaskStatus.PROCESSING: {TaskStatus.DONE, TaskStatus.ERROR},
    TaskStatus.DONE: set(),
    TaskStatus.ERROR: set(),
}


@dataclass
class ClassificationTask:
    """One queued request to classify a note."""
    note_id: str
    id: str = field(default_factory=new_id)
    status: TaskStatus = TaskStatus.PENDING
    error: str | None = None
    created_at: str = field(default_factory=now_iso)
    completed_at: str | None = None

    def __post_init__(self):
        self.status = TaskStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: TaskStatus, error: str | None = None) -> None:
        """Move to status, raising ValidationError on an illegal transition."""
        status = TaskStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise ValidationError(
                f"task {self.id}: cannot go from {self.status.value} to {status.value}"
            )
        self.status = status
        self.error = error
        if status in TERMINAL_STATUSES:
            self.completed_at = now_iso()

    def requeue(self) -> None:
        """Return a task abandoned mid-processing (crashed worker) to pending."""
        if self.status is not TaskStatus.PROCESSING:
            raise ValidationError(f"task {self.id} is {self.status.value}, not processing")
        self.status = TaskStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClassificationTask":
        return cls(**data)


@dataclass
class QueueStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    done: int = 0
    error: int = 0


@dataclass
class NotePreview:
    """A note as shown to the tagging model: a 1-based index and truncated text."""
    index: int
    note: Note
    text: str


@dataclass
class TaggedNote:
    """A note with the tags the model assigned to it in one batch."""
    id: str
    content: str
    preview: str
    created_at: str
    tags: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaggedNote":
        return cls(**data)


@dataclass
class TopicGroup:
    """A proposed topic: notes sharing one tag."""
    title: str
    description: str
    notes: list[TaggedNote]

    @property
    def count(self) -> int:
        return len(self.notes)


class BatchStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class BatchTaskState:
    """Checkpoint of a bulk tagging run; batch_results[i] exists once batch i succeeded."""
    status: BatchStatus = BatchStatus.IDLE
    total_notes: int = 0
    processed_notes: int = 0
    current_batch: int = 0
    total_batches: int = 0
    batch_results: list[list[TaggedNote]] = field(default_factory=list)
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    retry_count: int = 0

    def __post_init__(self):
        self.status = BatchStatus(self.status)
        self.batch_results = [
            [n if isinstance(n, TaggedNote) else TaggedNote.from_dict(n) for n in batch]
            for batch in self.batch_results
        ]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchTaskState":
        return cls(**data)
