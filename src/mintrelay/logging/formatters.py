"""Log formatters for the relayer."""

import json
import time
import traceback
from typing import Optional

from .core import LogEntry, LogFormatter


def _format_exception(exception: BaseException) -> str:
    return "".join(
        traceback.format_exception(
            type(exception), exception, exception.__traceback__
        )
    )


class JSONFormatter(LogFormatter):
    """One JSON object per line."""

    def __init__(
        self,
        include_context: bool = True,
        include_extra: bool = True,
        include_process: bool = False,
        timestamp_format: str = "iso",
        indent: Optional[int] = None,
    ):
        self.include_context = include_context
        self.include_extra = include_extra
        self.include_process = include_process
        self.timestamp_format = timestamp_format
        self.indent = indent

    def format(self, entry: LogEntry) -> str:
        """Format log entry as JSON."""
        data = {
            "timestamp": self._format_timestamp(entry.timestamp),
            "level": entry.level.value,
            "logger": entry.logger_name,
            "message": entry.message,
        }

        if self.include_context:
            context = entry.context.to_dict()
            if context:
                data["context"] = context

        if entry.exception is not None:
            data["exception"] = {
                "type": type(entry.exception).__name__,
                "message": str(entry.exception),
                "traceback": _format_exception(entry.exception),
            }

        if self.include_extra and entry.extra:
            data["extra"] = entry.extra

        if self.include_process:
            data["process_id"] = entry.process_id

        return json.dumps(data, indent=self.indent, default=str)

    def _format_timestamp(self, timestamp: float) -> str:
        if self.timestamp_format == "iso":
            return (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
                + f".{int((timestamp % 1) * 1000):03d}Z"
            )
        elif self.timestamp_format == "unix":
            return str(timestamp)
        return time.strftime(self.timestamp_format, time.gmtime(timestamp))


class TextFormatter(LogFormatter):
    """Human readable single-line formatter."""

    def __init__(
        self,
        include_context: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        self.include_context = include_context
        self.timestamp_format = timestamp_format

    def format(self, entry: LogEntry) -> str:
        """Format log entry."""
        line = (
            f"{time.strftime(self.timestamp_format, time.localtime(entry.timestamp))} "
            f"[{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"
        )

        if self.include_context:
            context = entry.context.to_dict()
            context.pop("metadata", None)
            if context:
                pairs = " ".join(f"{key}={value}" for key, value in context.items())
                line = f"{line} ({pairs})"

        if entry.extra:
            pairs = " ".join(f"{key}={value}" for key, value in entry.extra.items())
            line = f"{line} {pairs}"

        if entry.exception is not None:
            line = f"{line}\n{_format_exception(entry.exception).rstrip()}"

        return line
