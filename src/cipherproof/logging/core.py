"""Core logging interfaces and data structures for cipherproof.

This module defines the structured log entry, the context attached to
every entry, and the manager that routes entries to handlers. Modules obtain
a logger with :func:`get_logger` and log with keyword context::

    logger = get_logger(__name__)
    logger.info("Circuit ready", context=LogContext(algorithm_id="chacha20"))
"""

import json
import os
import sys
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """Log levels, in increasing order of severity."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_LEVEL_ORDER = {level: index for index, level in enumerate(LogLevel)}


@dataclass
class LogContext:
    """Log context information."""

    component: Optional[str] = None
    operation: Optional[str] = None
    algorithm_id: Optional[str] = None
    backend_kind: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "component": self.component,
            "operation": self.operation,
            "algorithm_id": self.algorithm_id,
            "backend_kind": self.backend_kind,
            "request_id": self.request_id,
            "metadata": self.metadata,
        }

    def merged(self, other: Optional["LogContext"]) -> "LogContext":
        """Return a new context where fields set on ``other`` win."""
        if other is None:
            return self
        return LogContext(
            component=other.component or self.component,
            operation=other.operation or self.operation,
            algorithm_id=other.algorithm_id or self.algorithm_id,
            backend_kind=other.backend_kind or self.backend_kind,
            request_id=other.request_id or self.request_id,
            metadata={**self.metadata, **other.metadata},
        )


@dataclass
class LogEntry:
    """Log entry data structure."""

    timestamp: float
    level: LogLevel
    message: str
    logger_name: str
    context: LogContext
    exception: Optional[BaseException] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    thread_id: Optional[int] = None
    process_id: Optional[int] = None

    def __post_init__(self):
        if self.thread_id is None:
            self.thread_id = threading.get_ident()
        if self.process_id is None:
            self.process_id = os.getpid()

    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary."""
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "logger_name": self.logger_name,
            "context": self.context.to_dict(),
            "exception": str(self.exception) if self.exception else None,
            "extra": self.extra,
            "thread_id": self.thread_id,
            "process_id": self.process_id,
        }

    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class LogConfig:
    """Log configuration."""

    def __init__(
        self,
        name: str = "cipherproof",
        level: LogLevel = LogLevel.INFO,
        format_type: str = "text",
        handlers: List[str] = None,
        stream: Any = None,
    ):
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = handlers if handlers is not None else ["console"]
        self.stream = stream

    @classmethod
    def from_env(cls, prefix: str = "CIPHERPROOF_LOG_") -> "LogConfig":
        """Build a configuration from ``<prefix>LEVEL`` and ``<prefix>FORMAT``."""
        level_name = os.environ.get(f"{prefix}LEVEL", LogLevel.INFO.value).lower()
        try:
            level = LogLevel(level_name)
        except ValueError:
            level = LogLevel.INFO
        return cls(level=level, format_type=os.environ.get(f"{prefix}FORMAT", "text"))


def level_enabled(level: LogLevel, threshold: LogLevel) -> bool:
    """Check whether ``level`` is at or above ``threshold``."""
    return _LEVEL_ORDER[level] >= _LEVEL_ORDER[threshold]


class LogFormatter(ABC):
    """Abstract log formatter."""

    @abstractmethod
    def format(self, entry: LogEntry) -> str:
        """Format log entry."""
        pass


class LogHandler(ABC):
    """Abstract log handler."""

    def __init__(self, name: str = None):
        self.name = name or self.__class__.__name__
        self.formatter: Optional[LogFormatter] = None
        self.level: LogLevel = LogLevel.DEBUG
        self._lock = threading.RLock()

    def set_formatter(self, formatter: LogFormatter) -> None:
        """Set formatter."""
        with self._lock:
            self.formatter = formatter

    def set_level(self, level: LogLevel) -> None:
        """Set log level."""
        with self._lock:
            self.level = level

    def format(self, entry: LogEntry) -> str:
        """Format an entry with the configured formatter."""
        if self.formatter:
            return self.formatter.format(entry)
        return f"{entry.timestamp} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"

    @abstractmethod
    def emit(self, entry: LogEntry) -> None:
        """Emit log entry."""
        pass

    def handle(self, entry: LogEntry) -> None:
        """Handle log entry."""
        if level_enabled(entry.level, self.level):
            self.emit(entry)

    def close(self) -> None:
        """Release handler resources."""
        pass


class LogManager:
    """Routes log entries from loggers to handlers."""

    def __init__(self, config: LogConfig = None):
        self.config = config or LogConfig()
        self.loggers: Dict[str, "ProverLogger"] = {}
        self.handlers: Dict[str, LogHandler] = {}
        self._lock = threading.RLock()
        self._context = LogContext(component=self.config.name)

        self._setup_defaults()

    def _setup_defaults(self) -> None:
        from .formatters import JSONFormatter, TextFormatter
        from .handlers import ConsoleHandler

        if "console" in self.config.handlers:
            handler = ConsoleHandler(stream=self.config.stream)
            if self.config.format_type == "json":
                handler.set_formatter(JSONFormatter())
            else:
                handler.set_formatter(TextFormatter())
            self.add_handler("console", handler)

    def get_logger(self, name: str) -> "ProverLogger":
        """Get logger."""
        with self._lock:
            if name not in self.loggers:
                self.loggers[name] = ProverLogger(name)
            return self.loggers[name]

    def add_handler(self, name: str, handler: LogHandler) -> None:
        """Add handler."""
        with self._lock:
            self.handlers[name] = handler

    def remove_handler(self, name: str) -> None:
        """Remove handler."""
        with self._lock:
            handler = self.handlers.pop(name, None)
        if handler is not None:
            handler.close()

    def set_context(self, context: LogContext) -> None:
        """Set global context."""
        with self._lock:
            self._context = context

    def get_context(self) -> LogContext:
        """Get global context."""
        with self._lock:
            return self._context

    def log(
        self,
        level: LogLevel,
        message: str,
        logger_name: str = "root",
        context: LogContext = None,
        exception: BaseException = None,
        extra: Dict[str, Any] = None,
    ) -> None:
        """Log a message."""
        if not level_enabled(level, self.config.level):
            return

        with self._lock:
            entry = LogEntry(
                timestamp=time.time(),
                level=level,
                message=message,
                logger_name=logger_name,
                context=self._context.merged(context),
                exception=exception,
                extra=extra or {},
            )
            handlers = list(self.handlers.values())

        for handler in handlers:
            try:
                handler.handle(entry)
            except Exception as e:
                # a broken handler must not break the caller
                sys.stderr.write(f"cipherproof logging handler {handler.name} failed: {e}\n")

    def shutdown(self) -> None:
        """Shutdown log manager."""
        with self._lock:
            for handler in self.handlers.values():
                handler.close()
            self.loggers.clear()
            self.handlers.clear()


class ProverLogger:
    """Logger bound to a name; resolves the active manager on every call."""

    def __init__(self, name: str):
        self.name = name

    @property
    def manager(self) -> LogManager:
        return get_log_manager()

    def log(
        self,
        level: LogLevel,
        message: str,
        context: LogContext = None,
        exception: BaseException = None,
        extra: Dict[str, Any] = None,
    ) -> None:
        """Log a message."""
        self.manager.log(
            level=level,
            message=message,
            logger_name=self.name,
            context=context,
            exception=exception,
            extra=extra,
        )

    def trace(self, message: str, **kwargs) -> None:
        self.log(LogLevel.TRACE, message, **kwargs)

    def debug(self, message: str, **kwargs) -> None:
        self.log(LogLevel.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.log(LogLevel.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.log(LogLevel.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.log(LogLevel.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        self.log(LogLevel.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log an error with the exception currently being handled."""
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            kwargs.setdefault("exception", exc_info[1])
        self.log(LogLevel.ERROR, message, **kwargs)


# Global log manager instance
_global_manager: Optional[LogManager] = None
_global_lock = threading.Lock()


def get_log_manager() -> LogManager:
    """Get the process log manager, creating a default one if needed."""
    global _global_manager
    with _global_lock:
        if _global_manager is None:
            _global_manager = LogManager(LogConfig.from_env())
        return _global_manager


def get_logger(name: str = "root") -> ProverLogger:
    """Get logger instance."""
    return get_log_manager().get_logger(name)


def setup_logging(config: LogConfig) -> LogManager:
    """Setup logging with configuration."""
    global _global_manager
    with _global_lock:
        previous = _global_manager
        _global_manager = LogManager(config)
    if previous is not None:
        previous.shutdown()
    return _global_manager


def shutdown_logging() -> None:
    """Shutdown logging."""
    global _global_manager
    with _global_lock:
        manager = _global_manager
        _global_manager = None
    if manager is not None:
        manager.shutdown()
