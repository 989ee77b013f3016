"""Database-backed audit log.

Implements ``shared.domain.ports.IAuditLog`` by appending immutable
``AuditEntry`` rows.  Values are normalised to JSON-friendly primitives so
UUIDs, dates and Decimals can be recorded as-is by callers.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog

from modules.core.models import AuditEntry
from shared.domain.ports import IAuditLog

logger = structlog.get_logger(__name__)


class DatabaseAuditLog(IAuditLog):
    """Writes one ``AuditEntry`` per recorded change."""

    def record(
        self,
        entity: Any,
        old_value: Any,
        new_value: Any,
        actor: Optional[Any],
        label: str,
    ) -> None:
        entry = AuditEntry.objects.create(
            entity_type=entity._meta.label,
            entity_id=str(entity.pk),
            label=label,
            old_value=_normalize(old_value),
            new_value=_normalize(new_value),
            actor_id=getattr(actor, "pk", actor),
        )
        logger.info(
            "audit.recorded",
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            label=label,
        )


def _normalize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalize(val) for key, val in value.items()}
    return value
