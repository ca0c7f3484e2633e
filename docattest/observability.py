"""
DOCATTEST Observability Framework

Structured logging and a tamper-evident audit trail for the attestation core.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                 DocumentLifecycleController             │
    │  log.info("msg", document_id=x)   audit.log(...)        │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │             DocAttestLogger / AuditLogger               │
    │  correlation IDs, layer tags, hash-chained audit events │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                  logging handlers                        │
    │        StructuredHandler (JSON) │ text formatter         │
    └─────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
import time
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from docattest.canonical import canonical_digest

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Layer(Enum):
    """Attestation core components, for log categorization."""
    OWNERSHIP = "ownership"
    DIRECTORY = "directory"
    STORE = "store"
    LEDGER = "ledger"
    LIFECYCLE = "lifecycle"
    EVENTS = "events"
    SNAPSHOT = "snapshot"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs structured JSON."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def _make_handler(log_format: str) -> logging.Handler:
    if log_format == "text":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        return handler
    return StructuredHandler()


class DocAttestLogger:
    """
    Structured logger for attestation core components.

    Includes the correlation ID and layer in every log event; keyword
    arguments become the event's structured context.
    """

    def __init__(
        self,
        name: str,
        layer: Layer,
        level: Optional[LogLevel] = None,
        log_format: Optional[str] = None,
    ):
        from docattest.config import get_config

        obs = get_config().observability
        level = level or LogLevel(obs.log_level.get())
        log_format = log_format or obs.log_format.get()

        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"docattest.{layer.value}.{name}")
        self._logger.setLevel(getattr(logging, level.value.upper()))
        self._logger.propagate = False

        if not self._logger.handlers:
            self._logger.addHandler(_make_handler(log_format))

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=round(duration_ms, 3),
            **context,
        )


def generate_correlation_id() -> str:
    return f"corr-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> str:
    """Get the current correlation ID, creating one for this context if absent."""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def get_logger(name: str, layer: Layer) -> DocAttestLogger:
    return DocAttestLogger(name, layer)


T = TypeVar("T")


def timed_operation(
    logger: DocAttestLogger,
    operation_name: str,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for timing and logging operations."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            start = time.monotonic()
            success = True
            error_code = ""
            try:
                return func(*args, **kwargs)
            except Exception as e:
                success = False
                error_code = getattr(e, "code", type(e).__name__)
                raise
            finally:
                duration_ms = (time.monotonic() - start) * 1000
                if success:
                    logger.operation(operation_name, duration_ms, success)
                else:
                    logger.operation(operation_name, duration_ms, success, rejected=error_code)
        return wrapper
    return decorator


# =============================================================================
# AUDIT LOGGER
# =============================================================================

@dataclass
class AuditEvent:
    """One entry in the tamper-evident audit trail."""
    sequence: int
    timestamp: str
    actor: str
    action: str
    resource_type: str
    resource_id: str
    outcome: str  # success, denied
    correlation_id: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    previous_digest: Optional[str] = None
    event_digest: str = ""

    def __post_init__(self):
        if not self.event_digest:
            self.event_digest = self.compute_digest()

    def compute_digest(self) -> str:
        content = asdict(self)
        content.pop("event_digest")
        return canonical_digest(content)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuditLogger:
    """
    Hash-chained audit trail.

    Each entry's digest covers the previous entry's digest, so editing or
    dropping any entry breaks verification of everything after it.
    """

    def __init__(self, logger: Optional[DocAttestLogger] = None):
        self._logger = logger
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def log(
        self,
        actor: str,
        action: str,
        resource_type: str,
        resource_id: str,
        outcome: str,
        **details: Any,
    ) -> AuditEvent:
        with self._lock:
            previous = self._events[-1].event_digest if self._events else None
            event = AuditEvent(
                sequence=len(self._events) + 1,
                timestamp=datetime.now(timezone.utc).isoformat(),
                actor=actor or "",
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                outcome=outcome,
                correlation_id=get_correlation_id(),
                details=details,
                previous_digest=previous,
            )
            self._events.append(event)

        if self._logger:
            self._logger.info(
                f"AUDIT: {action} on {resource_type}/{resource_id} -> {outcome}",
                operation="audit",
                actor=event.actor,
                event_digest=event.event_digest,
            )
        return event

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """
        Verify audit chain integrity.

        Returns (valid, first_invalid_index).
        """
        with self._lock:
            for i, event in enumerate(self._events):
                if event.compute_digest() != event.event_digest:
                    return (False, i)
                expected_prev = self._events[i - 1].event_digest if i > 0 else None
                if event.previous_digest != expected_prev:
                    return (False, i)
            return (True, None)

    def get_events(
        self,
        actor: Optional[str] = None,
        outcome: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEvent]:
        with self._lock:
            events = list(self._events)

        if actor:
            events = [e for e in events if e.actor == actor]
        if outcome:
            events = [e for e in events if e.outcome == outcome]
        if resource_id:
            events = [e for e in events if e.resource_id == resource_id]

        return events[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
