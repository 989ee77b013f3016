import pytest

pytestmark = pytest.mark.unit


class TestSensitiveDataMasking:
    def test_email_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "customer": "orders@harbourbistro.example"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "harbourbistro" not in result["customer"]
        assert "***MASKED***" in result["customer"]

    def test_password_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "data": "password='s3cret123'"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "s3cret123" not in result["data"]
        assert "***MASKED***" in result["data"]

    def test_token_masked(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "test", "header": "token=abc123xyz"}
        result = mask_sensitive_data(None, None, event_dict)
        assert "abc123xyz" not in result["header"]
        assert "***MASKED***" in result["header"]

    def test_non_sensitive_data_unchanged(self):
        from config.settings import mask_sensitive_data

        event_dict = {
            "event": "order.status_updated",
            "order_id": "ORD-20250108-A1B2C3",
            "source_event": "harvest.completed",
        }
        result = mask_sensitive_data(None, None, event_dict)
        assert result["order_id"] == "ORD-20250108-A1B2C3"
        assert result["source_event"] == "harvest.completed"

    def test_non_string_values_untouched(self):
        from config.settings import mask_sensitive_data

        event_dict = {"event": "recurrence.run_finished", "generated": 3}
        result = mask_sensitive_data(None, None, event_dict)
        assert result["generated"] == 3
