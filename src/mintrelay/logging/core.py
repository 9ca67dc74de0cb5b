"""Core logging interfaces and data structures for the relayer.

Loggers are cheap handles obtained with :func:`get_logger` at import time.
They resolve the process-wide :class:`LogManager` on every call, so
:func:`setup_logging` can reconfigure output after modules have been imported.
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
    """Log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown log level: {value!r}")


_LEVEL_RANK = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARNING: 30,
    LogLevel.ERROR: 40,
    LogLevel.CRITICAL: 50,
}


@dataclass
class LogContext:
    """Relay context attached to a log entry."""

    component: Optional[str] = None
    operation: Optional[str] = None
    message_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    chain_id: Optional[int] = None
    block_number: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary, dropping unset fields."""
        data = {
            "component": self.component,
            "operation": self.operation,
            "message_id": self.message_id,
            "transaction_hash": self.transaction_hash,
            "chain_id": self.chain_id,
            "block_number": self.block_number,
        }
        data = {key: value for key, value in data.items() if value is not None}
        if self.metadata:
            data["metadata"] = self.metadata
        return data

    def merged(self, other: Optional["LogContext"]) -> "LogContext":
        """Return a copy where fields set on ``other`` win."""
        if other is None:
            return self
        return LogContext(
            component=other.component or self.component,
            operation=other.operation or self.operation,
            message_id=other.message_id or self.message_id,
            transaction_hash=other.transaction_hash or self.transaction_hash,
            chain_id=other.chain_id if other.chain_id is not None else self.chain_id,
            block_number=(
                other.block_number
                if other.block_number is not None
                else self.block_number
            ),
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
    process_id: int = field(default_factory=os.getpid)

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
            "process_id": self.process_id,
        }

    def to_json(self) -> str:
        """Convert log entry to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class LogConfig:
    """Log configuration."""

    def __init__(
        self,
        name: str = "mintrelay",
        level: LogLevel = LogLevel.INFO,
        format_type: str = "text",
        handlers: List[str] = None,
        log_file: Optional[str] = None,
    ):
        self.name = name
        self.level = level
        self.format_type = format_type
        self.handlers = handlers or ["console"]
        self.log_file = log_file

        if log_file and "file" not in self.handlers:
            self.handlers.append("file")


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

    def should_handle(self, entry: LogEntry) -> bool:
        """Check if handler should handle the entry."""
        return entry.level.rank >= self.level.rank

    def render(self, entry: LogEntry) -> str:
        if self.formatter:
            return self.formatter.format(entry)
        return (
            f"{entry.timestamp} [{entry.level.value.upper()}] "
            f"{entry.logger_name}: {entry.message}"
        )

    @abstractmethod
    def emit(self, entry: LogEntry) -> None:
        """Emit log entry."""
        pass

    def handle(self, entry: LogEntry) -> None:
        """Handle log entry."""
        if self.should_handle(entry):
            self.emit(entry)

    def close(self) -> None:
        """Release handler resources."""
        pass


class LogManager:
    """Routes log entries from every logger to the configured handlers."""

    def __init__(self, config: LogConfig = None):
        self.config = config or LogConfig()
        self.handlers: Dict[str, LogHandler] = {}
        self._lock = threading.RLock()
        self._context = LogContext()

        self._setup_defaults()

    def _setup_defaults(self) -> None:
        """Build handlers named in the configuration."""
        from .formatters import JSONFormatter, TextFormatter
        from .handlers import ConsoleHandler, FileHandler

        if self.config.format_type == "json":
            formatter = JSONFormatter()
        else:
            formatter = TextFormatter()

        if "console" in self.config.handlers:
            console = ConsoleHandler()
            console.set_formatter(formatter)
            self.add_handler("console", console)

        if "file" in self.config.handlers and self.config.log_file:
            file_handler = FileHandler(self.config.log_file)
            file_handler.set_formatter(JSONFormatter())
            self.add_handler("file", file_handler)

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

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level.rank >= self.config.level.rank

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
        if not self.is_enabled_for(level):
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

            for handler in list(self.handlers.values()):
                handler.handle(entry)

    def shutdown(self) -> None:
        """Shutdown log manager."""
        with self._lock:
            for handler in self.handlers.values():
                handler.close()
            self.handlers.clear()


class RelayLogger:
    """Named logger handle."""

    def __init__(self, name: str):
        self.name = name

    def log(
        self,
        level: LogLevel,
        message: str,
        context: LogContext = None,
        exception: BaseException = None,
        extra: Dict[str, Any] = None,
    ) -> None:
        """Log a message."""
        _get_manager().log(
            level=level,
            message=message,
            logger_name=self.name,
            context=context,
            exception=exception,
            extra=extra,
        )

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
        exc = sys.exc_info()[1]
        if exc is not None:
            kwargs.setdefault("exception", exc)
        self.log(LogLevel.ERROR, message, **kwargs)


# Global log manager instance
_global_manager: Optional[LogManager] = None
_manager_lock = threading.Lock()
_loggers: Dict[str, RelayLogger] = {}


def _get_manager() -> LogManager:
    global _global_manager
    if _global_manager is None:
        with _manager_lock:
            if _global_manager is None:
                _global_manager = LogManager()
    return _global_manager


def get_logger(name: str = "root") -> RelayLogger:
    """Get logger instance."""
    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers.setdefault(name, RelayLogger(name))
    return logger


def setup_logging(config: LogConfig) -> LogManager:
    """Setup logging with configuration."""
    global _global_manager
    with _manager_lock:
        previous = _global_manager
        _global_manager = LogManager(config)
    if previous is not None:
        previous.shutdown()
    return _global_manager


def shutdown_logging() -> None:
    """Shutdown logging."""
    global _global_manager
    with _manager_lock:
        manager, _global_manager = _global_manager, None
    if manager is not None:
        manager.shutdown()
