# components/observability/logging_system.py
"""
Structured logging system for the live device simulation server.

Provides:
- Structured logging (JSON and plain text formats)
- Audit trail for session and simulation lifecycle
- Alarm logging for device faults and rule violations
- Log rotation and retention

Events carry session/device context so a single connection can be
traced across the session manager, orchestrator, and catalog pipeline.
"""

import asyncio
import json
import logging
import logging.handlers
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = [
    "EventSeverity",
    "EventCategory",
    "AlarmPriority",
    "LogEntry",
    "UptimeFormatter",
    "JSONFormatter",
    "EventLogger",
    "configure_logging",
    "get_logger",
]

# Process start reference for uptime stamps
_PROCESS_START = time.monotonic()


def uptime() -> float:
    """Seconds since the logging system was imported."""
    return time.monotonic() - _PROCESS_START


# ----------------------------------------------------------------
# Event classification
# ----------------------------------------------------------------


class EventSeverity(Enum):
    """
    Event severity levels (syslog ordering).

    Lower number = higher severity
    """

    CRITICAL = 1
    ALERT = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7


class EventCategory(Enum):
    """Event categories."""

    SESSION = "session"  # Connect/disconnect, bind/unbind
    DEVICE = "device"  # Device health and readings
    SIMULATION = "simulation"  # Shared simulation run lifecycle
    CATALOG = "catalog"  # Catalog sync, rules engine, CRM mirror
    ALARM = "alarm"  # Faults and rule violations
    AUDIT = "audit"  # Audit trail events
    SYSTEM = "system"  # Process/server events
    COMMUNICATION = "communication"  # Transport-level events


class AlarmPriority(Enum):
    """Alarm priority levels."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


LOGGING_TO_SEVERITY = {
    logging.CRITICAL: EventSeverity.CRITICAL,
    logging.ERROR: EventSeverity.ERROR,
    logging.WARNING: EventSeverity.WARNING,
    logging.INFO: EventSeverity.INFO,
    logging.DEBUG: EventSeverity.DEBUG,
}

SEVERITY_TO_LOGGING = {
    EventSeverity.CRITICAL: logging.CRITICAL,
    EventSeverity.ALERT: logging.CRITICAL,
    EventSeverity.ERROR: logging.ERROR,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.NOTICE: logging.INFO,
    EventSeverity.INFO: logging.INFO,
    EventSeverity.DEBUG: logging.DEBUG,
}


# ----------------------------------------------------------------
# Structured log entry
# ----------------------------------------------------------------


@dataclass
class LogEntry:
    """Structured log entry."""

    uptime: float  # Seconds since process start
    wall_time: float  # Unix timestamp
    severity: EventSeverity
    category: EventCategory
    message: str

    # Context
    device: str = ""
    session: str = ""
    component: str = ""

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    data: dict[str, Any] = field(default_factory=dict)

    alarm_priority: AlarmPriority | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialisation."""
        entry_dict: dict[str, Any] = {
            "uptime": self.uptime,
            "wall_time": self.wall_time,
            "severity": self.severity.name,
            "category": self.category.value,
            "message": self.message,
            "event_id": self.event_id,
        }

        if self.device:
            entry_dict["device"] = self.device
        if self.session:
            entry_dict["session"] = self.session
        if self.component:
            entry_dict["component"] = self.component
        if self.data:
            entry_dict["data"] = self.data
        if self.alarm_priority:
            entry_dict["alarm_priority"] = self.alarm_priority.name

        return entry_dict

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_human_readable(self) -> str:
        """Convert to human-readable format."""
        parts = [f"[{self.severity.name:8s}]"]
        if self.device:
            parts.append(f"{self.device}:")
        parts.append(self.message)
        if self.session:
            parts.append(f"[session={self.session}]")
        return " ".join(parts)


# ----------------------------------------------------------------
# Formatters
# ----------------------------------------------------------------


class UptimeFormatter(logging.Formatter):
    """Format log records with a process uptime prefix."""

    def __init__(self):
        super().__init__(fmt="[UP:%(uptime)9.2fs] [%(levelname)8s] %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        record.uptime = uptime()
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def __init__(self, device: str = ""):
        super().__init__()
        self.device = device

    def format(self, record: logging.LogRecord) -> str:
        severity = LOGGING_TO_SEVERITY.get(record.levelno, EventSeverity.INFO)

        log_entry = LogEntry(
            uptime=uptime(),
            wall_time=record.created,
            severity=severity,
            category=EventCategory.SYSTEM,
            message=record.getMessage(),
            device=self.device,
            component=record.name,
        )

        if record.exc_info:
            log_entry.data["exception"] = self.formatException(record.exc_info)

        return log_entry.to_json()


# ----------------------------------------------------------------
# Event logger
# ----------------------------------------------------------------


class EventLogger:
    """
    Logger wrapper with structured events.

    Wraps Python's logging with:
    - Event classification (severity + category)
    - In-memory audit trail for session/simulation lifecycle
    - Alarm logging
    - Optional rotating JSON file output
    """

    def __init__(
        self,
        name: str,
        device: str = "",
        log_dir: Path | None = None,
        enable_console: bool = True,
        level: int = logging.DEBUG,
        max_audit_entries: int = 10000,
    ):
        """
        Initialise event logger.

        Args:
            name: Logger name (typically module name)
            device: Device name for context
            log_dir: Directory for JSON log files (None = no file logging)
            enable_console: Enable console output
            level: Minimum logging level
            max_audit_entries: Maximum audit trail entries to retain
        """
        self.name = name
        self.device = device
        self.log_dir = log_dir

        self.logger = logging.getLogger(name if not device else f"{name}.{device}")
        self.logger.setLevel(level)
        self.logger.propagate = False
        self.logger.handlers.clear()

        if enable_console:
            handler = logging.StreamHandler()
            handler.setLevel(level)
            handler.setFormatter(UptimeFormatter())
            self.logger.addHandler(handler)

        if log_dir:
            self._add_json_handler(level)

        self.audit_trail: list[LogEntry] = []
        self._audit_lock = asyncio.Lock()
        self._max_audit_entries = max_audit_entries

    def _add_json_handler(self, level: int) -> None:
        """Add JSON file handler with rotation."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"{self.device or 'server'}.json.log"

        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter(device=self.device))
        self.logger.addHandler(handler)

    # ----------------------------------------------------------------
    # Standard logging methods
    # ----------------------------------------------------------------

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, **kwargs)

    # ----------------------------------------------------------------
    # Structured events
    # ----------------------------------------------------------------

    async def log_event(
        self,
        severity: EventSeverity,
        category: EventCategory,
        message: str,
        **kwargs,
    ) -> LogEntry:
        """
        Log a structured event.

        Args:
            severity: Event severity level
            category: Event category
            message: Event message
            **kwargs: Additional context (session, component, data, ...)

        Returns:
            LogEntry that was created
        """
        device = kwargs.pop("device", self.device)

        entry = LogEntry(
            uptime=uptime(),
            wall_time=time.time(),
            severity=severity,
            category=category,
            message=message,
            device=device,
            **kwargs,
        )

        self.logger.log(
            SEVERITY_TO_LOGGING.get(severity, logging.INFO), entry.to_human_readable()
        )

        if category in (EventCategory.AUDIT, EventCategory.ALARM):
            async with self._audit_lock:
                self.audit_trail.append(entry)
                if len(self.audit_trail) > self._max_audit_entries:
                    self.audit_trail = self.audit_trail[-self._max_audit_entries :]

        return entry

    async def log_audit(
        self, message: str, action: str = "", result: str = "", **kwargs
    ) -> LogEntry:
        """
        Log audit trail event.

        Args:
            message: Audit message
            action: Action performed (connect, start_simulation, ...)
            result: Outcome of the action
            **kwargs: Additional context
        """
        data = kwargs.pop("data", {})
        data.update({"action": action, "result": result})

        return await self.log_event(
            severity=EventSeverity.NOTICE,
            category=EventCategory.AUDIT,
            message=message,
            data=data,
            **kwargs,
        )

    async def log_alarm(
        self, message: str, priority: AlarmPriority, **kwargs
    ) -> LogEntry:
        """
        Log alarm event.

        Args:
            message: Alarm message
            priority: Alarm priority
            **kwargs: Additional context
        """
        severity_map = {
            AlarmPriority.CRITICAL: EventSeverity.CRITICAL,
            AlarmPriority.HIGH: EventSeverity.ALERT,
            AlarmPriority.MEDIUM: EventSeverity.WARNING,
            AlarmPriority.LOW: EventSeverity.NOTICE,
        }

        return await self.log_event(
            severity=severity_map.get(priority, EventSeverity.WARNING),
            category=EventCategory.ALARM,
            message=message,
            alarm_priority=priority,
            **kwargs,
        )

    # ----------------------------------------------------------------
    # Audit trail access
    # ----------------------------------------------------------------

    async def get_audit_trail(
        self,
        limit: int = 100,
        category: EventCategory | None = None,
        session: str | None = None,
    ) -> list[LogEntry]:
        """
        Get audit trail entries (most recent last).

        Args:
            limit: Maximum number of entries to return
            category: Filter by category
            session: Filter by session id
        """
        async with self._audit_lock:
            entries = self.audit_trail
            if category:
                entries = [e for e in entries if e.category == category]
            if session:
                entries = [e for e in entries if e.session == session]
            return entries[-limit:]

    async def clear_audit_trail(self) -> int:
        """Clear audit trail and return the number of entries removed."""
        async with self._audit_lock:
            count = len(self.audit_trail)
            self.audit_trail.clear()
            return count


# ----------------------------------------------------------------
# Global logger factory
# ----------------------------------------------------------------

_loggers: dict[str, EventLogger] = {}
_loggers_lock = threading.Lock()
_default_log_dir: Path | None = None
_default_level: int = logging.DEBUG


def configure_logging(
    log_dir: Path | str | None = None,
    level: int | str = logging.DEBUG,
) -> None:
    """
    Configure global logging settings.

    The level applies to every logger; the log directory only to loggers
    created after this call.

    Args:
        log_dir: Directory for JSON log files
        level: Minimum level (int or name such as "INFO")
    """
    global _default_log_dir, _default_level

    if log_dir:
        _default_log_dir = Path(log_dir)
        _default_log_dir.mkdir(parents=True, exist_ok=True)
    else:
        _default_log_dir = None

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    _default_level = level

    with _loggers_lock:
        for event_logger in _loggers.values():
            event_logger.logger.setLevel(level)
            for handler in event_logger.logger.handlers:
                handler.setLevel(level)


def get_logger(name: str, device: str = "", **kwargs) -> EventLogger:
    """
    Get or create an event logger.

    Thread-safe logger factory.

    Args:
        name: Logger name (typically __name__)
        device: Device name for context
        **kwargs: Additional EventLogger arguments
    """
    logger_key = f"{name}:{device}"

    with _loggers_lock:
        if logger_key not in _loggers:
            if "log_dir" not in kwargs and _default_log_dir:
                kwargs["log_dir"] = _default_log_dir
            kwargs.setdefault("level", _default_level)

            _loggers[logger_key] = EventLogger(name, device, **kwargs)

        return _loggers[logger_key]
