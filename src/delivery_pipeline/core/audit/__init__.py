"""Audit trail events and sinks."""

from delivery_pipeline.core.audit.sinks import AuditSink, CompositeAuditSink, FileAuditSink, LoggingAuditSink
from delivery_pipeline.core.audit.types import AuditAction, AuditEvent, AuditStatus

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditSink",
    "AuditStatus",
    "CompositeAuditSink",
    "FileAuditSink",
    "LoggingAuditSink",
]
