"""
Celery configuration for the order lifecycle service.

DJANGO_SETTINGS_MODULE is set before the app is instantiated so Celery
reads the Django settings (``CELERY_`` prefix).  The beat schedule drives
the daily recurring-order pass and the outbox relay.
"""

import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("microgreens")

# Reads Django settings with the CELERY_ prefix
app.config_from_object("django.conf:settings", namespace="CELERY")

# Discovers tasks.py in every installed app
app.autodiscover_tasks()

app.conf.beat_schedule = {
    # Daily recurring-order pass, shortly after midnight local time
    "process-recurring-orders": {
        "task": "recurrence.process_recurring_orders",
        "schedule": crontab(hour=0, minute=30),
        "options": {"queue": "recurrence"},
    },
    # Outbox relay to the broker
    "relay-outbox-events": {
        "task": "core.relay_outbox_events",
        "schedule": 30.0,
    },
}
