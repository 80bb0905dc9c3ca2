"""Relay exceptions."""


class RelayError(RuntimeError):
    """Base exception for the relay."""


class ConfigError(RelayError):
    """Raised when a destination table or credential is missing or malformed."""


class DeliveryError(RelayError):
    """Raised when a destination answers with something other than a usable success."""

    def __init__(self, message: str, error=None, status_code: int | None = None):
        super().__init__(message)
        self.error = error
        self.status_code = status_code
