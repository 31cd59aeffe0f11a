"""Failure types returned by the FIPE gateway.

The gateway facade never lets these escape to callers; they are carried in
``GatewayResult.error``. Lower layers (client, ledger, resolver) raise them
and the facade converts them.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for every typed gateway failure."""

    code = "GATEWAY_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class UpstreamUnavailable(GatewayError):
    """The pricing API could not be reached or answered with something unusable."""

    code = "UPSTREAM_UNAVAILABLE"


class UpstreamError(UpstreamUnavailable):
    """A single upstream round trip failed (non-2xx, timeout, network, bad payload)."""

    code = "UPSTREAM_ERROR"

    def __init__(self, message: str = "", status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class QuotaExhausted(GatewayError):
    """The daily upstream call budget is spent."""

    code = "QUOTA_EXHAUSTED"


class InvalidRequest(GatewayError, ValueError):
    """A lookup argument was rejected before any cache or quota interaction."""

    code = "INVALID_REQUEST"


class InvalidVehicleType(InvalidRequest):
    """vehicle_type outside {cars, motorcycles, trucks}."""

    code = "INVALID_VEHICLE_TYPE"


class InvalidReference(InvalidRequest):
    """A caller supplied reference code that is not syntactically valid."""

    code = "INVALID_REFERENCE"
