"""Default notification sink: structured log lines."""

from __future__ import annotations

import structlog

from shared.domain.ports import INotificationSink, NotificationKind

logger = structlog.get_logger(__name__)

_LEVELS = {
    "success": "info",
    "warning": "warning",
    "danger": "error",
}


class LoggingNotificationSink(INotificationSink):
    """Writes every notification as a ``notification.sent`` log event."""

    def notify(self, kind: NotificationKind, title: str, body: str) -> None:
        level = _LEVELS.get(kind, "info")
        getattr(logger, level)("notification.sent", kind=kind, title=title, body=body)
