"""
Unit tests for error message sanitization.
"""

from webhook_queue.queue.errors import (
    REDACTED_MESSAGE,
    PayloadRejectedError,
    sanitize_error_message,
)


class TestSanitizeErrorMessage:
    """Tests for sanitize_error_message."""

    def test_plain_exception(self):
        """Test ordinary messages pass through."""
        assert sanitize_error_message(ValueError("order not found")) == "order not found"

    def test_empty_message_uses_type_name(self):
        """Test exceptions without a message are named by type."""
        assert sanitize_error_message(TimeoutError()) == "TimeoutError"

    def test_redacts_credentials(self):
        """Test messages mentioning secrets are replaced."""
        for message in (
            "invalid password for user admin",
            "Access token expired",
            "bad API_KEY header",
            "apikey rejected",
            "client secret mismatch",
        ):
            assert sanitize_error_message(RuntimeError(message)) == REDACTED_MESSAGE

    def test_redacts_connection_strings(self):
        """Test database URLs are never logged."""
        error = RuntimeError("could not connect to postgresql+asyncpg://app@db:5432/webhooks")
        assert sanitize_error_message(error) == REDACTED_MESSAGE

    def test_truncates_long_messages(self):
        """Test long messages are cut to 500 characters plus an ellipsis."""
        result = sanitize_error_message(RuntimeError("x" * 2000))

        assert len(result) == 503
        assert result.endswith("...")

    def test_strings_are_truncated_not_redacted(self):
        """Test plain strings are only truncated."""
        assert sanitize_error_message("token") == "token"
        assert len(sanitize_error_message("y" * 600)) == 503

    def test_unknown_values(self):
        """Test non-error values map to a generic message."""
        assert sanitize_error_message(None) == "Unknown error"
        assert sanitize_error_message(42) == "Unknown error"


class TestPayloadRejectedError:
    """Tests for PayloadRejectedError."""

    def test_carries_reason_and_details(self):
        """Test the reason and details are kept for logging."""
        error = PayloadRejectedError("payload too large", size=70000, max_size=65536)

        assert str(error) == "payload too large"
        assert error.reason == "payload too large"
        assert error.details == {"size": 70000, "max_size": 65536}
