"""Error taxonomy for the rate engine.

Every failure carries a machine-readable ``code`` so the storefront can render a
distinct state for each. These are business results, not transport errors: the
HTTP layer answers them with ``success: false`` in a 200 response.
"""
from typing import Any, Dict, Optional


class RateEngineError(Exception):
    """Base exception for all rate engine failures."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class IntegrationDisabledError(RateEngineError):
    """Raised when live rating is switched off."""

    code = "INTEGRATION_DISABLED"

    def __init__(self):
        super().__init__("Live shipping rates are not enabled. Enable the rating integration in settings.")


class MissingApiKeyError(RateEngineError):
    """Raised when the active mode has no rating credential."""

    code = "MISSING_API_KEY"

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"No rating API key is configured for {mode} mode.")


class MissingConfigError(RateEngineError):
    """Raised when the origin address or package configuration is absent."""

    code = "MISSING_CONFIG"


class InvalidRequestError(RateEngineError):
    """Raised when the destination address lacks required fields."""

    code = "INVALID_REQUEST"


class ZoneBlockedError(RateEngineError):
    """Raised when zone policy refuses the destination."""

    code = "ZONE_BLOCKED"

    def __init__(self, message: str, zone_info: Optional[Dict[str, Any]] = None):
        self.zone_info = zone_info
        super().__init__(message)


class NoCarriersError(RateEngineError):
    """Raised when carrier resolution yields nothing to rate against."""

    code = "NO_CARRIERS"

    def __init__(self):
        super().__init__(
            "No active carriers found. Enable carriers in the carrier configuration or check the rating account."
        )


class RatingProviderError(RateEngineError):
    """Raised when the rating provider call fails or times out.

    ``details`` holds the provider's raw body for diagnostics; it is never meant
    for end users.
    """

    code = "RATING_PROVIDER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, details=details)


def failure(err: RateEngineError) -> Dict[str, Any]:
    """Failure envelope shared by the engine and the HTTP layer."""
    out: Dict[str, Any] = {"success": False, "error": err.to_dict()}
    zone_info = getattr(err, "zone_info", None)
    if zone_info:
        out["zone_info"] = zone_info
    return out
