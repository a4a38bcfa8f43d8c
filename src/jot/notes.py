"""Read access to the host application's notes."""

import hashlib
import json
from abc import ABC, abstractmethod
from pathlib import Path

from .models import Note


def compute_hash(content: str) -> str:
    """SHA256 hash of content for change detection."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class NoteSource(ABC):
    @abstractmethod
    def load_notes(self) -> list[Note]:
        """Return every note, oldest first."""

    def get_note(self, note_id: str) -> Note | None:
        for note in self.load_notes():
            if note.id == note_id:
                return note
        return None


class StaticNoteSource(NoteSource):
    """Notes held in memory; the caller owns the list."""

    def __init__(self, notes: list[Note] | None = None):
        self.notes = list(notes or [])

    def load_notes(self) -> list[Note]:
        return list(self.notes)


class JsonNoteSource(NoteSource):
    """Notes exported by the app as a JSON list (or {"notes": [...]})."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load_notes(self) -> list[Note]:
        if not self.path.exists():
            return []
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("notes", [])
        return [Note.from_dict(item) for item in data]
