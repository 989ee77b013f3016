"""Unit tests for shared persistence: soft delete, outbox and audit log."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from modules.core.audit import DatabaseAuditLog
from modules.core.models import AuditEntry, EventStatus, OutboxEvent
from modules.customers.models import Customer

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# BaseModel / SoftDeleteModel
# ---------------------------------------------------------------------------


class TestSoftDelete:
    def test_primary_key_is_uuid7(self, customer):
        assert isinstance(customer.id, UUID)
        assert customer.id.version == 7

    def test_delete_hides_from_alive(self, customer):
        count, _ = customer.delete()

        assert count == 1
        assert customer.is_deleted
        assert not Customer.objects.alive().filter(id=customer.id).exists()
        assert Customer.objects.dead().filter(id=customer.id).exists()

    def test_delete_twice_is_a_noop(self, customer):
        customer.delete()
        assert customer.delete() == (0, {})

    def test_restore(self, customer):
        customer.delete()
        customer.restore()
        assert Customer.objects.alive().filter(id=customer.id).exists()

    def test_queryset_delete_is_soft(self, customer, wholesale_customer):
        count, _ = Customer.objects.all().delete()

        assert count == 2
        assert Customer.objects.count() == 2
        assert Customer.objects.alive().count() == 0


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


class TestOutboxEvent:
    @pytest.fixture()
    def event(self):
        return OutboxEvent.objects.create(
            event_type="OrderStatusChanged",
            payload={"new_status": "packing"},
            aggregate_id="some-order",
            topic="orders",
        )

    def test_defaults_to_pending(self, event):
        assert event.status == EventStatus.PENDING
        assert event.retry_count == 0

    def test_mark_as_published(self, event):
        event.mark_as_published()
        event.refresh_from_db()
        assert event.status == EventStatus.PUBLISHED
        assert event.processed_at is not None

    def test_mark_as_failed_counts_retries(self, event):
        event.mark_as_failed("broker down")
        event.mark_as_failed("broker down")
        event.refresh_from_db()
        assert event.status == EventStatus.FAILED
        assert event.retry_count == 2
        assert event.error_message == "broker down"


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


class TestDatabaseAuditLog:
    def test_records_normalised_values(self, customer):
        DatabaseAuditLog().record(
            customer,
            {"limit": Decimal("10.50"), "since": date(2025, 1, 1)},
            {"limit": Decimal("12.00"), "ids": (customer.id,)},
            None,
            "customer.limit_changed",
        )

        entry = AuditEntry.objects.get()
        assert entry.entity_type == "customers.Customer"
        assert entry.entity_id == str(customer.id)
        assert entry.old_value == {"limit": "10.50", "since": "2025-01-01"}
        assert entry.new_value == {"limit": "12.00", "ids": [str(customer.id)]}
        assert entry.actor_id is None

    def test_accepts_user_or_user_id(self, customer, user):
        audit = DatabaseAuditLog()
        audit.record(customer, None, None, user, "a")
        audit.record(customer, None, None, user.pk, "b")

        assert set(AuditEntry.objects.values_list("actor_id", flat=True)) == {user.pk}
