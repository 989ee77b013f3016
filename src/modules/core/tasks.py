"""Outbox relay.

Events written to ``outbox_events`` inside the business transaction are
pushed to the broker's ``domain_events`` topic exchange, routed by
``<topic>.<event_type>``.  Failed events are retried on later runs until
``OUTBOX_MAX_RETRIES`` is reached.
"""

import structlog
from celery import current_app, shared_task
from django.conf import settings
from django.db.models import Q
from kombu import Exchange
from kombu.exceptions import KombuError

from modules.core.models import EventStatus, OutboxEvent

logger = structlog.get_logger(__name__)

DOMAIN_EVENTS = Exchange("domain_events", type="topic", durable=True)


def publish_event(event: OutboxEvent) -> None:
    body = {
        "event_id": str(event.id),
        "event_type": event.event_type,
        "aggregate_id": event.aggregate_id,
        "payload": event.payload,
        "occurred_at": event.created_at.isoformat(),
    }
    with current_app.producer_or_acquire() as producer:
        producer.publish(
            body,
            exchange=DOMAIN_EVENTS,
            routing_key=f"{event.topic}.{event.event_type}",
            declare=[DOMAIN_EVENTS],
            serializer="json",
            retry=True,
        )


def pending_events(batch_size: int):
    return OutboxEvent.objects.filter(
        Q(status=EventStatus.PENDING)
        | Q(status=EventStatus.FAILED, retry_count__lt=settings.OUTBOX_MAX_RETRIES)
    ).order_by("created_at")[:batch_size]


@shared_task(name="core.relay_outbox_events")
def relay_outbox_events(batch_size: int = 0) -> dict:
    """Publish one batch of pending outbox events, oldest first."""
    published = failed = 0
    for event in pending_events(batch_size or settings.OUTBOX_RELAY_BATCH_SIZE):
        try:
            publish_event(event)
        except (KombuError, OSError) as exc:
            event.mark_as_failed(str(exc))
            failed += 1
            logger.warning(
                "outbox.publish_failed",
                event_id=str(event.id),
                event_type=event.event_type,
                retry_count=event.retry_count,
                error=str(exc),
            )
            continue
        event.mark_as_published()
        published += 1

    if published or failed:
        logger.info("outbox.relayed", published=published, failed=failed)
    return {"published": published, "failed": failed}
