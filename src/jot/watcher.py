"""Note watcher: classifies notes as the host app saves them."""

import asyncio
import logging
import threading
import time
from pathlib import Path

from rich.console import Console
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .notes import compute_hash
from .service import ClassificationService

console = Console()
logger = logging.getLogger(__name__)


class NotesFileHandler(FileSystemEventHandler):
    """Debounces events that touch the notes file."""

    def __init__(self, notes_file: Path, debounce: float = 2.0):
        super().__init__()
        self._notes_file = notes_file.resolve()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._debounce = debounce
        self._callback = None

    def set_callback(self, callback):
        self._callback = callback

    def _is_notes_file(self, path) -> bool:
        return Path(path).resolve() == self._notes_file

    def on_created(self, event):
        if not event.is_directory and self._is_notes_file(event.src_path):
            self._schedule()

    def on_modified(self, event):
        if not event.is_directory and self._is_notes_file(event.src_path):
            self._schedule()

    def on_moved(self, event):
        # Editors that save atomically rename a temp file over the target.
        if not event.is_directory and self._is_notes_file(event.dest_path):
            self._schedule()

    def _schedule(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def _flush(self):
        with self._lock:
            self._timer = None
        if self._callback:
            self._callback()

    def cancel(self):
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None


class NoteWatcher:
    """Watches the notes file and keeps the clusters in step with it.

    Classification runs on a private event loop thread; watchdog callbacks
    hand work to it with run_coroutine_threadsafe.
    """

    def __init__(self, service: ClassificationService, notes_file: str | Path, debounce: float = 2.0):
        self.service = service
        self.notes_file = Path(notes_file)
        self.handler = NotesFileHandler(self.notes_file, debounce=debounce)
        self.handler.set_callback(self._on_change)
        self.observer = Observer()
        self._hashes: dict[str, str] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def snapshot(self) -> dict[str, str]:
        """Content hash of every note with content, keyed by note id."""
        return {
            note.id: compute_hash(note.content)
            for note in self.service.notes.load_notes()
            if note.has_content
        }

    def diff(self, current: dict[str, str]) -> tuple[list[str], list[str]]:
        """Note ids to (classify, forget) since the last snapshot."""
        changed = [nid for nid, h in current.items() if self._hashes.get(nid) != h]
        removed = [nid for nid in self._hashes if nid not in current]
        return changed, removed

    async def sync(self) -> tuple[int, int]:
        """Enqueue new or edited notes, forget deleted ones, drain the queue."""
        try:
            current = self.snapshot()
        except ValueError as e:
            # Caught mid-write; the next event brings the finished file.
            logger.warning("Could not read %s: %s", self.notes_file, e)
            return 0, 0

        changed, removed = self.diff(current)
        for note_id in removed:
            await self.service.cleanup_note_classification(note_id)
        for note_id in changed:
            self.service.queue.enqueue(note_id)
        self._hashes = current

        if changed:
            await self.service.process_queue()
        return len(changed), len(removed)

    def _on_change(self):
        future = asyncio.run_coroutine_threadsafe(self.sync(), self._loop)
        try:
            changed, removed = future.result()
        except Exception as e:
            console.print(f"  [red]✗ Sync failed: {e}[/]")
            logger.exception("Note sync failed")
            return
        if changed or removed:
            console.print(f"  [green]✓ Classified {changed} note(s), forgot {removed}[/]")
            stats = self.service.get_classification_status()["queue"]
            if stats["error"]:
                console.print(f"  [yellow]{stats['error']} task(s) in error[/]")

    def run(self, initial_sync: bool = False):
        """Start watching (blocks until Ctrl+C)."""
        self.notes_file.parent.mkdir(parents=True, exist_ok=True)
        self._loop = asyncio.new_event_loop()
        thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        thread.start()

        if initial_sync:
            self._on_change()
        else:
            # Treat whatever exists now as already classified.
            self._hashes = self.snapshot()

        self.observer.schedule(self.handler, str(self.notes_file.parent), recursive=False)
        self.observer.start()
        console.print(f"[bold]Watching {self.notes_file} for changes... (Ctrl+C to stop)[/]")

        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Stopping watcher...[/]")
            self.observer.stop()
        self.observer.join()
        self.handler.cancel()

        asyncio.run_coroutine_threadsafe(self.service.close(), self._loop).result()
        self._loop.call_soon_threadsafe(self._loop.stop)
        thread.join()
        self._loop.close()
        console.print("[green]✓ Watcher stopped.[/]")