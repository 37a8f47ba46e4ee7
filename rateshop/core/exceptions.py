"""
Errors raised while quoting shipments.

Every error carries a stable code and a details dict so a failed carrier can
be recorded on the shipment and reported later with its context intact.

    RateShopError
    ├── InvalidInputError      bad shipment from the caller
    ├── ConfigurationError     unusable carrier or adjuster setup
    └── AdapterError           one carrier failed
        ├── AdapterTransportError
        ├── AdapterTimeoutError
        └── AdapterParseError

RateManager.get_rates() lets only InvalidInputError through. Adapter errors
stay on shipment.errors.
"""
from typing import Optional, Dict, Any


class RateShopError(Exception):
    """
    Root of the rateshop errors.

    code defaults to the class's default_code. severity ranks how urgently an
    operator should look: P1 for setup mistakes, P2 for carrier outages, P3
    for rejected caller input.
    """

    default_code: str = "RATESHOP_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code if code is not None else self.default_code
        self.severity = severity if severity is not None else self.default_severity
        self.details = dict(details) if details else {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for log records and CLI output."""
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code}: {self.message!r})"


class InvalidInputError(RateShopError):
    """Caller supplied a shipment that cannot be quoted."""
    default_code = "INVALID_INPUT"
    default_severity = "P3"

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["field"] = field
        super().__init__(message, details=details, **kwargs)


class ConfigurationError(RateShopError):
    """Carrier or adjuster configuration is unusable."""
    default_code = "CONFIGURATION_ERROR"
    default_severity = "P1"


# =============================================================================
# ADAPTER ERRORS
# =============================================================================

class AdapterError(RateShopError):
    """Base exception for a failure scoped to a single carrier adapter."""
    default_code = "ADAPTER_ERROR"
    default_severity = "P2"

    def __init__(self, message: str, provider_name: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["provider_name"] = provider_name
        self.provider_name = provider_name
        super().__init__(message, details=details, **kwargs)


class AdapterTransportError(AdapterError):
    """Network failure or non-success response from the carrier."""
    default_code = "ADAPTER_TRANSPORT_FAILED"

    def __init__(self, message: str, status_code: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        self.status_code = status_code
        super().__init__(message, details=details, **kwargs)


class AdapterTimeoutError(AdapterError):
    """Carrier did not answer within the adapter's time budget."""
    default_code = "ADAPTER_TIMEOUT"

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["timeout_seconds"] = timeout
        super().__init__(message, details=details, **kwargs)


class AdapterParseError(AdapterError):
    """Carrier response body could not be understood."""
    default_code = "ADAPTER_PARSE_FAILED"
