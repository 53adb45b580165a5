from jobflow.events.audit import AuditService
from jobflow.events.sinks import (
    AuditEventSink,
    EventSink,
    EventType,
    LoggingEventSink,
    emit_safely,
    get_event_sink,
)

__all__ = [
    "AuditService",
    "AuditEventSink",
    "EventSink",
    "EventType",
    "LoggingEventSink",
    "emit_safely",
    "get_event_sink",
]
