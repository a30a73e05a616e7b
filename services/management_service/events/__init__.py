from services.management_service.events.activity import (
    ActivityEvent,
    ActivitySink,
    MemoryActivitySink,
    StorageActivitySink,
)

from services.management_service.events.audit_progress import (
    AuditProgressEvent,
    AuditProgressPayload,
    publish_audit_progress,
)

__all__ = [
    "ActivityEvent",
    "ActivitySink",
    "MemoryActivitySink",
    "StorageActivitySink",
    "AuditProgressEvent",
    "AuditProgressPayload",
    "publish_audit_progress",
]
