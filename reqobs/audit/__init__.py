"""
Audit Emission Package.

This package builds one compliance record per completed request and
delivers it, best-effort, to an audit sink.

Components:
- models: Pydantic models for audit records
- service: AuditSink interface and the rotating JsonlAuditSink
- emitter: AuditEmitter building and sending records
- middleware: FastAPI middleware scheduling emission after the response
"""

from .models import (
    AuditRecord,
    CallerIdentityEntry,
    CallerIdentityType,
    OperationCategory,
    OperationResult,
    OperationType,
    RecordType,
    TargetResourceEntry,
)
from .service import AuditSink, JsonlAuditSink, validate_record
from .emitter import AuditConfig, AuditEmitter
from .middleware import AuditMiddleware, add_audit_middleware


__all__ = [
    # Models
    "AuditRecord",
    "CallerIdentityEntry",
    "CallerIdentityType",
    "OperationCategory",
    "OperationResult",
    "OperationType",
    "RecordType",
    "TargetResourceEntry",
    # Sinks
    "AuditSink",
    "JsonlAuditSink",
    "validate_record",
    # Emitter
    "AuditConfig",
    "AuditEmitter",
    # Middleware
    "AuditMiddleware",
    "add_audit_middleware",
]
