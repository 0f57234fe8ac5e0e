"""cipherproof logging.

Structured logging for the proof orchestration layer: log entries carry
a context (component, operation, algorithm, backend) and are routed by a
process wide manager to console or in-memory handlers, formatted as JSON
or text.
"""

from .core import (
    LogConfig,
    LogContext,
    LogEntry,
    LogFormatter,
    LogHandler,
    LogLevel,
    LogManager,
    ProverLogger,
    get_log_manager,
    get_logger,
    setup_logging,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter
from .handlers import ConsoleHandler, MemoryHandler

__all__ = [
    # Core
    "LogLevel",
    "LogConfig",
    "LogContext",
    "LogEntry",
    "LogFormatter",
    "LogHandler",
    "LogManager",
    "ProverLogger",
    "get_log_manager",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
    # Handlers
    "ConsoleHandler",
    "MemoryHandler",
]
