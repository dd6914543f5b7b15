"""
Error kinds surfaced by the inventory core. None of them are retried.
"""


class InvManError(Exception):
    """Base exception for inventory operations."""
    pass


class ValidationError(InvManError):
    """Declaration rule, notation or field value rejected before any write."""
    pass


class AuthenticationError(InvManError):
    """Missing or malformed token, or credentials that do not match."""

    def __init__(self, reason: str):
        super().__init__(f"User authentication failure ({reason})")
        self.reason = reason


class RegistrationError(InvManError):
    """User registration refused."""

    def __init__(self, reason: str):
        super().__init__(f"User registration failed ({reason})")
        self.reason = reason


class NotFoundError(InvManError):
    """Schema column or record identifier does not exist."""
    pass


class RecordStateError(InvManError):
    """Mutation attempted on a record that is already deleted."""
    pass


class StorageError(InvManError):
    """A statement failed inside a transaction; the transaction was rolled back."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed and was rolled back: {cause}")
        self.operation = operation
        self.cause = cause


class StaleConfigError(InvManError):
    """The caller's AppConfig no longer matches the persisted schema."""

    def __init__(self):
        super().__init__("Configuration is out of date, reload it with get_config() and retry")
