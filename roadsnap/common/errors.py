"""Domain errors and failure typing."""


class OverrideError(Exception):
    """Base class for override engine failures."""

    error_code = "OVERRIDE_ERROR"


class ConfigError(OverrideError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class RequestValidationError(OverrideError):
    """Raised when an inbound batch fails shape checks."""

    error_code = "REQUEST_INVALID"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = list(details or [])


class ProviderError(OverrideError):
    """Raised by road-graph providers; absorbed by the road locator."""

    error_code = "PROVIDER_ERROR"


class StoreError(OverrideError):
    """Raised when the external override store fails."""

    error_code = "STORE_ERROR"
