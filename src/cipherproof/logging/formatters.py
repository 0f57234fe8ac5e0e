"""Log formatters for cipherproof."""

import json
import time
import traceback
from typing import Optional

from .core import LogEntry, LogFormatter


def _iso_timestamp(timestamp: float) -> str:
    return (
        time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
        + f".{int((timestamp % 1) * 1000000):06d}Z"
    )


class JSONFormatter(LogFormatter):
    """JSON log formatter, one object per line."""

    def __init__(
        self,
        include_context: bool = True,
        include_exception: bool = True,
        include_extra: bool = True,
        include_thread: bool = False,
        indent: Optional[int] = None,
    ):
        self.include_context = include_context
        self.include_exception = include_exception
        self.include_extra = include_extra
        self.include_thread = include_thread
        self.indent = indent

    def format(self, entry: LogEntry) -> str:
        """Format log entry as JSON."""
        data = {
            "timestamp": _iso_timestamp(entry.timestamp),
            "level": entry.level.value,
            "logger": entry.logger_name,
        }

        if self.include_context:
            data["context"] = {
                k: v for k, v in entry.context.to_dict().items() if v not in (None, {})
            }

        if self.include_exception and entry.exception is not None:
            data["exception"] = {
                "type": type(entry.exception).__name__,
                "message": str(entry.exception),
                "traceback": "".join(
                    traceback.format_exception(
                        type(entry.exception),
                        entry.exception,
                        entry.exception.__traceback__,
                    )
                ),
            }

        if self.include_extra and entry.extra:
            data["extra"] = entry.extra

        if self.include_thread:
            data["thread_id"] = entry.thread_id
            data["process_id"] = entry.process_id

        data["message"] = entry.message

        return json.dumps(data, indent=self.indent, default=str)


class TextFormatter(LogFormatter):
    """Human readable single line formatter."""

    def __init__(self, timestamp_format: str = "%Y-%m-%d %H:%M:%S"):
        self.timestamp_format = timestamp_format

    def format(self, entry: LogEntry) -> str:
        """Format log entry as text."""
        stamp = time.strftime(self.timestamp_format, time.localtime(entry.timestamp))
        line = f"{stamp} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"

        ctx = entry.context
        tags = [
            f"{name}={value}"
            for name, value in (
                ("algorithm", ctx.algorithm_id),
                ("op", ctx.operation),
                ("backend", ctx.backend_kind),
                ("request", ctx.request_id),
            )
            if value
        ]
        if tags:
            line += " (" + ", ".join(tags) + ")"

        if entry.exception is not None:
            line += f" | {type(entry.exception).__name__}: {entry.exception}"

        return line
