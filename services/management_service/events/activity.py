from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.logging_config import get_logger
from services.management_service.db.storage import Storage

logger = get_logger(__name__)


@dataclass
class ActivityEvent:
    agent_type: str
    message: str
    audit_id: Optional[str] = None
    website_id: Optional[str] = None
    reasoning: Optional[str] = None
    action: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ActivitySink:
    async def emit(self, event: ActivityEvent) -> None:
        raise NotImplementedError


class StorageActivitySink(ActivitySink):
    """Appends activity events to the activity_logs table.

    Observability only: a failed write is logged and dropped.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    async def emit(self, event: ActivityEvent) -> None:
        logger.info(
            f"[{event.agent_type}] {event.message}",
            extra={"audit_id": event.audit_id, "website_id": event.website_id, "action": event.action},
        )
        try:
            await self.storage.create_activity_log(
                website_id=event.website_id,
                audit_id=event.audit_id,
                agent_type=event.agent_type,
                message=event.message,
                reasoning=event.reasoning,
                action=event.action,
                meta=event.metadata or None,
            )
        except Exception as e:
            logger.error(f"Failed to store activity event: {e}", extra={"audit_id": event.audit_id})


class MemoryActivitySink(ActivitySink):
    def __init__(self):
        self.events: List[ActivityEvent] = []

    async def emit(self, event: ActivityEvent) -> None:
        self.events.append(event)
