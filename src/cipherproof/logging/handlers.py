"""Log handlers for cipherproof."""

import sys
from collections import deque
from typing import Any, List, Optional

from .core import LogEntry, LogHandler, LogLevel


class ConsoleHandler(LogHandler):
    """Console log handler (stderr by default)."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to console."""
        with self._lock:
            stream = self.stream if self.stream is not None else sys.stderr
            stream.write(self.format(entry) + "\n")
            stream.flush()

    def close(self) -> None:
        with self._lock:
            self.stream = None


class MemoryHandler(LogHandler):
    """Keeps the most recent entries in memory; used by tests and diagnostics."""

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer: deque = deque(maxlen=max_size)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to memory."""
        with self._lock:
            self.buffer.append(entry)

    def get_entries(
        self, level: Optional[LogLevel] = None, algorithm_id: Optional[str] = None
    ) -> List[LogEntry]:
        """Return buffered entries, optionally filtered."""
        with self._lock:
            entries = list(self.buffer)
        if level is not None:
            entries = [e for e in entries if e.level == level]
        if algorithm_id is not None:
            entries = [e for e in entries if e.context.algorithm_id == algorithm_id]
        return entries

    def messages(self) -> List[str]:
        with self._lock:
            return [entry.message for entry in self.buffer]

    def clear(self) -> None:
        with self._lock:
            self.buffer.clear()

    def close(self) -> None:
        self.clear()
