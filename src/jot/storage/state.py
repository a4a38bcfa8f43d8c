"""Small JSON documents on disk for queue and batch-task state."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class JsonStateFile:
    """A JSON value persisted at path, or held in memory when path is None.

    Writes go through a temporary file in the same directory and os.replace,
    so a crash never leaves a half-written document behind.
    """

    def __init__(self, path: str | Path | None, default: Any):
        self.path = Path(path) if path else None
        self._default = default
        self._value = None

    def load(self) -> Any:
        if self.path is None:
            return json.loads(json.dumps(self._value if self._value is not None else self._default))
        if not self.path.exists():
            return json.loads(json.dumps(self._default))
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error("Unreadable state file %s (%s), starting from defaults", self.path, e)
            return json.loads(json.dumps(self._default))

    def save(self, value: Any) -> None:
        if self.path is None:
            self._value = json.loads(json.dumps(value))
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False, indent=2)
        os.replace(tmp, self.path)

    def clear(self) -> None:
        self._value = None
        if self.path is not None and self.path.exists():
            self.path.unlink()
