"""Progress and status reporting with any number of observers."""

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass
class ProgressEvent:
    """One progress update.

    kind names the emitter ("reclassify", "queue", "batch"); stage narrows it
    down ("embedding", "clustering", "processing", "idle", a batch status...).
    payload carries a snapshot (status dict, BatchTaskState) when there is one.
    """
    kind: str
    stage: str
    completed: int = 0
    total: int = 0
    payload: Any = None


Subscriber = Callable[[ProgressEvent], Any]


class ProgressChannel:
    """Fan-out of progress events; `latest` supports polling instead of subscribing."""

    def __init__(self):
        self._subscribers: list[Subscriber] = []
        self.latest: ProgressEvent | None = None

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: ProgressEvent) -> None:
        self.latest = event
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # An observer must not break the worker that reports to it.
                logger.exception("Progress subscriber failed on %s/%s", event.kind, event.stage)
