"""
Tests for the structured logging helpers.
"""

from unittest.mock import Mock

from appsync_simulator.structured_logging.enhanced_logging_config import (
    bind_request_context,
    clear_request_context,
    detect_environment,
    get_current_context,
    log_exception_once,
    sanitize_sensitive_data,
)


class TestSanitizeSensitiveData:
    """Test redaction of credentials."""

    def test_api_key_and_authorization_redacted(self):
        event = {"event": "handshake", "x-api-key": "da2-secret", "Authorization": "Bearer t", "host": "h"}

        sanitized = sanitize_sensitive_data(None, "info", event)

        assert sanitized == {"event": "handshake", "x-api-key": "[REDACTED]", "Authorization": "[REDACTED]", "host": "h"}

    def test_nested_values_redacted(self):
        sanitized = sanitize_sensitive_data(None, "info", {"auth": {"headers": {"api_key": "k"}}})

        assert sanitized["auth"]["headers"]["api_key"] == "[REDACTED]"


class TestRequestContext:
    """Test contextvar binding."""

    def test_bind_and_clear(self):
        clear_request_context()
        bind_request_context(correlation_id="corr-1", connection_id="conn-1")

        assert get_current_context() == {"correlation_id": "corr-1", "connection_id": "conn-1"}

        clear_request_context()
        assert get_current_context() == {}

    def test_correlation_id_generated(self):
        bind_request_context()
        try:
            assert get_current_context()["correlation_id"]
        finally:
            clear_request_context()


class TestLogExceptionOnce:
    """Test duplicate suppression."""

    def test_logs_then_marks(self):
        bound_logger = Mock()
        error = RuntimeError("x")

        log_exception_once(bound_logger, "error", "failed", exc=error)
        log_exception_once(bound_logger, "error", "failed", exc=error)

        bound_logger.error.assert_called_once_with("failed", error_type="RuntimeError", error="x")
        assert error.already_logged

    def test_without_exception(self):
        bound_logger = Mock()

        log_exception_once(bound_logger, "warning", "note", topic="t")

        bound_logger.warning.assert_called_once_with("note", topic="t")


def test_detect_environment_under_pytest():
    assert detect_environment() == "unit_test"
