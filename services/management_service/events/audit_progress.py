import json
import uuid
from datetime import datetime, timezone
from typing import Optional

import aio_pika
from pydantic import BaseModel

from services.management_service.config import settings
from config.logging_config import get_logger

logger = get_logger(__name__)

EXCHANGE_NAME = "site_audit.events"
ROUTING_KEY = "audit.progress"


class AuditProgressPayload(BaseModel):
    audit_id: str
    website_id: str
    status: str
    coarse_status: str
    progress: int
    current_step: Optional[str] = None
    error: Optional[str] = None


class AuditProgressEvent(BaseModel):
    event_id: str
    event_name: str = "AuditProgress"
    produced_at: str
    payload: AuditProgressPayload

    @classmethod
    def build(
        cls,
        audit_id: str,
        website_id: str,
        status: str,
        coarse_status: str,
        progress: int,
        current_step: Optional[str] = None,
        error: Optional[str] = None,
    ) -> "AuditProgressEvent":
        payload = AuditProgressPayload(
            audit_id=audit_id,
            website_id=website_id,
            status=status,
            coarse_status=coarse_status,
            progress=progress,
            current_step=current_step,
            error=error,
        )
        return cls(
            event_id=str(uuid.uuid4()),
            produced_at=datetime.now(timezone.utc).isoformat(),
            payload=payload,
        )

    def to_bytes(self) -> bytes:
        return json.dumps(self.model_dump(), ensure_ascii=False).encode("utf-8")


async def publish_audit_progress(event: AuditProgressEvent, rabbitmq_url: Optional[str] = None) -> bool:
    """Publish a progress event. Returns False when publishing is disabled or failed; never raises."""
    url = rabbitmq_url or settings.rabbitmq_url
    if not url:
        return False

    try:
        conn = await aio_pika.connect_robust(url)
        async with conn:
            ch = await conn.channel()
            ex = await ch.declare_exchange(
                EXCHANGE_NAME,
                aio_pika.ExchangeType.TOPIC,
                durable=True,
            )
            msg = aio_pika.Message(
                body=event.to_bytes(),
                content_type="application/json",
                headers={"event_type": event.event_name, "event_id": event.event_id},
            )
            await ex.publish(msg, routing_key=ROUTING_KEY)
        return True
    except Exception as exc:
        logger.error(
            f"Failed to publish AuditProgress event: {exc}",
            extra={"audit_id": event.payload.audit_id},
        )
        return False
