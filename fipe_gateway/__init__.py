"""FIPE Gateway - cached, quota-limited access to the FIPE vehicle pricing API.

Every read goes cache-first; only misses spend one unit of the shared daily
upstream budget, and only successful answers are cached.
"""

from fipe_gateway.cache.engine import CacheEngine
from fipe_gateway.core.errors import (
    GatewayError,
    InvalidReference,
    InvalidRequest,
    InvalidVehicleType,
    QuotaExhausted,
    UpstreamError,
    UpstreamUnavailable,
)
from fipe_gateway.core.gateway import FipeGateway, GatewayResult
from fipe_gateway.core.service import GatewayService
from fipe_gateway.quota.ledger import QuotaDecision, QuotaLedger
from fipe_gateway.upstream.client import FipeClient

__version__ = "0.1.0"

__all__ = [
    "CacheEngine",
    "FipeClient",
    "FipeGateway",
    "GatewayError",
    "GatewayResult",
    "GatewayService",
    "InvalidReference",
    "InvalidRequest",
    "InvalidVehicleType",
    "QuotaDecision",
    "QuotaExhausted",
    "QuotaLedger",
    "UpstreamError",
    "UpstreamUnavailable",
]
