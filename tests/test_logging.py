"""
Structured log lines and payload sanitization.
"""

import logging

from invman.core.codec import parse_assignments
from util.logging import StructuredLogger, sanitize_payload


class TestSanitizePayload:
    """Test redaction of secrets."""

    def test_redacts_sensitive_keys(self):
        payload = {"username": "alice", "password": "pw", "nested": {"token": "t"}}
        assert sanitize_payload(payload) == {
            "username": "alice", "password": "[REDACTED]", "nested": {"token": "[REDACTED]"},
        }

    def test_truncates_long_strings(self):
        assert sanitize_payload("x" * 150) == "x" * 100 + "..."

    def test_lists(self):
        assert sanitize_payload([{"secret": 1}, 2]) == [{"secret": "[REDACTED]"}, 2]


class TestStructuredLogger:
    """Test the operation log format."""

    def test_failed_operation_is_warning(self, caplog):
        log = StructuredLogger("invman.test")
        with caplog.at_level(logging.INFO, logger="invman.test"):
            log.log_operation("schema.alter", "failed", {"column": "qty"})
        assert caplog.records[0].levelno == logging.WARNING
        assert "Operation: schema.alter, Status: failed" in caplog.text

    def test_auth_attempt_never_logs_password(self, backend, caplog):
        backend.user_register("alice", "hunter2")
        with caplog.at_level(logging.INFO, logger="invman"):
            backend.authenticate("alice:hunter2")
        assert "auth.login" in caplog.text
        assert "hunter2" not in caplog.text

    def test_record_mutation_logged(self, backend, admin, qty_config, caplog):
        fields = parse_assignments(["qty=5"], qty_config.inventory_schema_declaration)
        with caplog.at_level(logging.INFO, logger="invman"):
            backend.inventory_add(fields, qty_config, admin)
        assert "Operation: inventory.add, Status: success" in caplog.text
        assert "'schema_version': 1" in caplog.text
