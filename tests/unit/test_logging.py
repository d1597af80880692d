"""Tests for logging helpers."""

from __future__ import annotations

from structlog.testing import capture_logs

from cloud_vault.core.exceptions import TransferError
from cloud_vault.logging import _redact_sensitive, get_logger, log_failure


class TestRedaction:
    def test_secret_keys_redacted(self) -> None:
        event = _redact_sensitive(None, "info", {"event": "x", "password": "pw", "access_token": "t", "host": "h"})
        assert event["password"] == "***REDACTED***"
        assert event["access_token"] == "***REDACTED***"
        assert event["host"] == "h"

    def test_s3_and_credential_keys_redacted(self) -> None:
        event = _redact_sensitive(None, "info", {
            "event": "x", "access_key": "AKIA", "stored_credential": "c", "backend": "s3",
        })
        assert event["access_key"] == "***REDACTED***"
        assert event["stored_credential"] == "***REDACTED***"
        assert event["backend"] == "s3"


class TestLogFailure:
    def test_includes_traceback_by_default(self) -> None:
        log = get_logger("test")
        with capture_logs() as logs:
            log_failure(log, "upload_failed", TransferError("boom"), backend="ftp")

        assert logs[0]["event"] == "upload_failed"
        assert logs[0]["error_kind"] == "transfer"
        assert logs[0]["backend"] == "ftp"
        assert "exc_info" in logs[0]

    def test_suppress_stack(self) -> None:
        log = get_logger("test")
        with capture_logs() as logs:
            log_failure(log, "upload_failed", TransferError("boom"), suppress_stack=True)

        assert "exc_info" not in logs[0]
        assert logs[0]["error"] == "boom"
