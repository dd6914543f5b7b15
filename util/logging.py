"""
Structured operation logging for schema evolution, record mutations and
authentication. Every audited mutation is mirrored here for operators;
the ledgers in the database remain the source of truth.
"""

import logging
import os
from typing import Any, Dict, List

SENSITIVE_FIELDS = ['password', 'token', 'auth', 'secret']


class StructuredLogger:
    """Structured logger for inventory, schema and user operations."""

    def __init__(self, name: str = "invman"):
        self.logger = logging.getLogger(name)
        level = logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO
        self.logger.setLevel(level)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        if status in ("failed", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_schema_change(self, action: str, column: str, dispatcher: int, version: int = None,
                          status: str = "success", details: Dict[str, Any] = None):
        """Log a schema alter/remove."""
        log_details = {"column": column, "dispatcher": dispatcher}
        if version is not None:
            log_details["schema_version"] = version
        if details:
            log_details.update(details)

        self.log_operation(f"schema.{action}", status, log_details)

    def log_record_mutation(self, action: str, record_id: Any, dispatcher: int, schema_version: int = None,
                            status: str = "success", details: Dict[str, Any] = None):
        """Log an inventory add/edit/remove."""
        log_details = {"record_id": record_id, "dispatcher": dispatcher}
        if schema_version is not None:
            log_details["schema_version"] = schema_version
        if details:
            log_details.update(details)

        self.log_operation(f"inventory.{action}", status, log_details)

    def log_auth_attempt(self, username: str, success: bool, reason: str = ""):
        """Log an authentication attempt. Passwords are never passed here."""
        log_details = {"username": username}
        if reason:
            log_details["reason"] = reason[:100]

        self.log_operation("auth.login", "success" if success else "failed", log_details)

    def log_validation_error(self, operation: str, errors: List[Any], target_identifier: str = None):
        """Log validation errors with truncated details."""
        sanitized_errors = [str(error)[:100] for error in errors]
        log_details = {
            "operation": operation,
            "errors": sanitized_errors,
            "error_count": len(sanitized_errors)
        }
        if target_identifier:
            log_details["target_identifier"] = target_identifier

        self.log_operation("validation.error", "rejected", log_details)

    def log_storage_error(self, operation: str, error: Exception):
        """Log a rolled back transaction."""
        self.logger.error(f"Operation: {operation}, Status: rolled_back, Error: {str(error)[:200]}")

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, sensitive_fields: List[str] = None) -> Any:
    """Redact secrets and truncate long strings before they reach a log line."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if k in sensitive_fields:
                sanitized[k] = "[REDACTED]"
            else:
                sanitized[k] = sanitize_payload(v, sensitive_fields)
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
