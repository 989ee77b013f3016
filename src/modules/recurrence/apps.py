from django.apps import AppConfig


class RecurrenceConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "modules.recurrence"
    label = "recurrence"

    def ready(self) -> None:
        from modules.recurrence.events import RecurringOrderGenerated
        from modules.recurrence.handlers import recurring_order_generated_handler
        from shared.infrastructure.bus import event_bus

        event_bus.subscribe(RecurringOrderGenerated, recurring_order_generated_handler)
