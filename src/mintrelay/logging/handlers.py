"""Log handlers for the relayer."""

import os
import sys
import threading
from collections import deque
from typing import Any, Dict, List, Optional

from .core import LogEntry, LogHandler, LogLevel


class ConsoleHandler(LogHandler):
    """Console log handler, stderr by default."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self._stream = stream

    @property
    def stream(self) -> Any:
        # without an explicit stream, follow whatever sys.stderr currently is
        return self._stream if self._stream is not None else sys.stderr

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to console."""
        with self._lock:
            self.stream.write(self.render(entry) + "\n")
            self.stream.flush()

    def close(self) -> None:
        """Flush; the process streams stay open."""
        with self._lock:
            self.stream.flush()


class FileHandler(LogHandler):
    """Append-only file log handler."""

    def __init__(
        self,
        filename: str,
        mode: str = "a",
        encoding: str = "utf-8",
        delay: bool = False,
    ):
        super().__init__()
        self.filename = filename
        self.mode = mode
        self.encoding = encoding
        self.stream = None

        if not delay:
            self._open()

    def _open(self) -> None:
        if self.stream is None:
            directory = os.path.dirname(self.filename)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.stream = open(self.filename, self.mode, encoding=self.encoding)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to file."""
        with self._lock:
            if self.stream is None:
                self._open()
            self.stream.write(self.render(entry) + "\n")
            self.stream.flush()

    def close(self) -> None:
        """Close handler."""
        with self._lock:
            if self.stream is not None:
                self.stream.close()
                self.stream = None


class MemoryHandler(LogHandler):
    """Keeps the most recent entries in memory."""

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer: deque = deque(maxlen=max_size)

    def emit(self, entry: LogEntry) -> None:
        with self._lock:
            self.buffer.append(entry)

    def get_entries(self, level: Optional[LogLevel] = None) -> List[LogEntry]:
        """Get buffered entries, optionally only one level."""
        with self._lock:
            entries = list(self.buffer)
        if level is not None:
            entries = [entry for entry in entries if entry.level == level]
        return entries

    def messages(self) -> List[str]:
        return [entry.message for entry in self.get_entries()]

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.get_entries()]

    def clear(self) -> None:
        with self._lock:
            self.buffer.clear()
