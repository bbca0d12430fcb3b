"""
Event Logger module for the magpie pipeline.

Every pipeline component reports through one EventLogger. An event is a
component name, a message and a small dict of structured fields; it is
rendered as a JSON object, a readable line, or both, and written to stderr
unless another stream is given.
"""

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, TextIO

from .enums import LogLevel


OUTPUT_FORMATS = ("json", "text", "both")


@dataclass
class LogEntry:
    """One emitted event."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "component": self.component,
            "message": self.message,
            "data": self.data,
        }


def render_json(entry: LogEntry) -> str:
    return json.dumps(entry.to_dict(), ensure_ascii=False, default=str)


def render_text(entry: LogEntry) -> str:
    """``[timestamp] LEVEL [Component] message {fields}``"""
    line = f"[{entry.timestamp}] {entry.level.value.upper()} [{entry.component}] {entry.message}"
    if entry.data:
        line += " " + json.dumps(entry.data, ensure_ascii=False, default=str)
    return line


class EventLogger:
    """
    Leveled, structured event logger.

    Events below ``level`` are discarded before anything is built. Emitted
    events are also kept in :attr:`entries` so tests can inspect them.
    """

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        level: str = "info",
    ):
        """
        Args:
            output_format: 'json', 'text' or 'both' (JSON line first)
            output_stream: Destination stream, sys.stderr by default
            level: Minimum level: 'debug', 'info', 'warn' or 'error'
        """
        if output_format not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output_format: {output_format}")

        renderers: list[Callable[[LogEntry], str]] = []
        if output_format in ("json", "both"):
            renderers.append(render_json)
        if output_format in ("text", "both"):
            renderers.append(render_text)

        self._format = output_format
        self._renderers = renderers
        self._stream = output_stream or sys.stderr
        self._min_level = LogLevel(level.lower())
        self._entries: list[LogEntry] = []

    @property
    def output_format(self) -> str:
        return self._format

    @property
    def min_level(self) -> LogLevel:
        return self._min_level

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def is_enabled_for(self, level: LogLevel) -> bool:
        return level.severity >= self._min_level.severity

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Emit one event.

        Returns:
            The emitted LogEntry, or None if ``level`` is below the minimum
        """
        if not self.is_enabled_for(level):
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=dict(data or {}),
        )
        self._entries.append(entry)

        for render in self._renderers:
            self._stream.write(render(entry) + "\n")
        self._stream.flush()

        return entry

    def debug(self, component: str, message: str, data: Optional[dict] = None) -> None:
        self.log(LogLevel.DEBUG, component, message, data)

    def info(self, component: str, message: str, data: Optional[dict] = None) -> None:
        self.log(LogLevel.INFO, component, message, data)

    def warn(self, component: str, message: str, data: Optional[dict] = None) -> None:
        self.log(LogLevel.WARN, component, message, data)

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[BaseException] = None,
        request_url: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Emit an ERROR event describing a failure.

        The exception's type and text are stored as ``error_type`` and
        ``error_message``; ``request_url`` names the source being fetched.
        ``additional_data`` is copied, never modified.
        """
        data = dict(additional_data or {})
        if error is not None:
            data["error_message"] = str(error)
            data["error_type"] = type(error).__name__
        if request_url is not None:
            data["request_url"] = request_url
        return self.log(LogLevel.ERROR, component, message, data)


class NullLogger(EventLogger):
    """Logger that records nothing; used for silent runs."""

    def __init__(self) -> None:
        super().__init__(output_stream=_NullStream(), level="error")

    def log(self, level, component, message, data=None):
        return None


class _NullStream:
    def write(self, text: str) -> int:
        return len(text)

    def flush(self) -> None:
        pass
