"""Event handlers for recurrence domain events."""

from __future__ import annotations

import structlog

from modules.recurrence.events import RecurringOrderGenerated
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class RecurringOrderGeneratedHandler(IEventHandler[RecurringOrderGenerated]):
    def handle(self, event: RecurringOrderGenerated) -> None:
        logger.info(
            "recurrence.event.order_generated",
            template_id=str(event.aggregate_id),
            order_id=event.generated_order_id,
            delivery_date=str(event.delivery_date),
        )


recurring_order_generated_handler = RecurringOrderGeneratedHandler()
