"""Gateway facade: the only way the rest of the system reaches the pricing API."""

import sqlite3
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fipe_gateway.cache.engine import CacheEngine
from fipe_gateway.core.config import DEFAULT_CONFIG
from fipe_gateway.core.errors import GatewayError, InvalidRequest, QuotaExhausted, UpstreamError, UpstreamUnavailable
from fipe_gateway.core.pricing import CONDITION_FACTORS, estimate_price
from fipe_gateway.core.references import ReferenceResolver
from fipe_gateway.core.singleflight import SingleFlight
from fipe_gateway.core.ttl_manager import TTLManager
from fipe_gateway.database.models import CacheKey
from fipe_gateway.quota.ledger import QuotaDecision, QuotaLedger
from fipe_gateway.upstream.client import FipeClient
from fipe_gateway.upstream.models import CatalogItem, Operation, Reference, VehicleInfo, VehicleType
from fipe_gateway.utils.logger import get_logger


@dataclass
class GatewayResult:
    """Outcome of a gateway lookup.

    Exactly one of ``value`` / ``error`` is meaningful. ``value`` may be an
    empty list, which is a successful answer; test ``ok`` instead of the
    value's truthiness.
    """

    value: Any = None
    error: Optional[GatewayError] = None
    reference: Optional[str] = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None


def _encode_items(items) -> List[Dict[str, Any]]:
    return [item.to_dict() for item in items]


def _decoder(factory) -> Callable[[Any], Any]:
    return lambda payload: [factory(item) for item in payload]


def _encode_vehicle(vehicle: VehicleInfo) -> Dict[str, Any]:
    return vehicle.to_dict()


class FipeGateway:
    """Cache-first, quota-gated access to the FIPE pricing API.

    Every read follows the same decision tree: resolve the reference, build
    the cache key, serve a live cache entry if there is one, otherwise spend
    one quota unit and call upstream, caching only successful answers.
    Failures come back as ``GatewayResult.error``; nothing is retried.

    Concurrent misses on the same key are coalesced so that one upstream
    call (and one quota unit) serves all of them.

    Example:
        >>> gateway = FipeGateway(cache, ledger, FipeClient(token="..."))
        >>> result = gateway.get_brands("cars")
        >>> result.ok, result.reference
        (True, '324')
    """

    def __init__(
        self,
        cache_engine: CacheEngine,
        quota_ledger: QuotaLedger,
        client: FipeClient,
        ttl_manager: Optional[TTLManager] = None,
        coalesce_misses: bool = True,
        wait_timeout: Optional[float] = None,
    ):
        """
        Args:
            cache_engine: Shared cache store
            quota_ledger: Shared daily quota ledger
            client: Upstream client; only called after the ledger allowed it
            ttl_manager: TTL policy per operation, defaults from DEFAULT_CONFIG
            coalesce_misses: Share one upstream call among concurrent misses of a key
            wait_timeout: Seconds a coalesced waiter blocks before giving up
        """
        self.cache_engine = cache_engine
        self.quota_ledger = quota_ledger
        self.client = client
        self.ttl_manager = ttl_manager or TTLManager(DEFAULT_CONFIG)
        self.coalesce_misses = coalesce_misses
        self.wait_timeout = wait_timeout
        self.resolver = ReferenceResolver(self._load_references)
        self._inflight = SingleFlight()
        self.logger = get_logger("core.gateway")

    # Lookup pipeline

    def _lookup(self, key: CacheKey, fetch: Callable[[], Any], encode, decode, caller: str):
        """Return ``(value, cached)`` for ``key``. Raises GatewayError."""
        entry = self.cache_engine.get(key)
        if entry is not None:
            self.logger.info(f"Cache hit for {key.serialize()}")
            return decode(entry.value), True

        self.logger.info(f"Cache miss for {key.serialize()}")
        if self.coalesce_misses:
            payload, shared = self._inflight.do(
                key, lambda: self._fill(key, fetch, encode, caller), timeout=self.wait_timeout
            )
            if shared:
                self.logger.debug(f"Joined in-flight upstream call for {key.operation}")
        else:
            payload = self._fill(key, fetch, encode, caller)
        return decode(payload), False

    def _fill(self, key: CacheKey, fetch: Callable[[], Any], encode, caller: str):
        # A previous leader may have filled the key after our miss
        entry = self.cache_engine.get(key)
        if entry is not None:
            return entry.value

        if self.quota_ledger.try_consume(endpoint=key.operation, caller=caller) is not QuotaDecision.ALLOWED:
            raise QuotaExhausted(f"Daily limit of {self.quota_ledger.daily_limit()} upstream calls reached")

        # UpstreamError propagates uncached; the spent unit is not refunded
        payload = encode(fetch())

        ttl = self.ttl_manager.get_ttl_for_operation(key.operation)
        try:
            self.cache_engine.set(key, payload, ttl)
        except sqlite3.Error as e:
            self.logger.error(f"Failed to cache {key.operation} answer: {e}")
        return payload

    def _execute(self, operation: Operation, run: Callable[[], GatewayResult]) -> GatewayResult:
        try:
            return run()
        except InvalidRequest as e:
            self.logger.info(f"Rejected {operation.value}: {e.message}")
            return GatewayResult(error=e)
        except QuotaExhausted as e:
            return GatewayResult(error=e)
        except GatewayError as e:
            self.logger.error(f"{operation.value} failed: {e.message}")
            return GatewayResult(error=e)
        except FutureTimeoutError:
            self.logger.error(f"{operation.value}: timed out waiting for in-flight upstream call")
            return GatewayResult(error=UpstreamUnavailable("Timed out waiting for in-flight upstream call"))
        except Exception as e:
            self.logger.exception(f"Unexpected error in {operation.value}")
            return GatewayResult(error=UpstreamUnavailable(f"Unexpected gateway error: {e}"))

    def _lookup_references(self, caller: str):
        key = CacheKey.build(Operation.REFERENCES)
        return self._lookup(
            key, self.client.fetch_references, _encode_items, _decoder(Reference.from_payload), caller
        )

    def _load_references(self, caller: str) -> List[Reference]:
        return self._lookup_references(caller)[0]

    def _resolve(self, reference, caller: str) -> str:
        return self.resolver.resolve(reference, caller=caller).code

    # Read operations

    def get_references(self, *, caller: str = "public") -> GatewayResult:
        """List pricing-table months, newest first."""

        def run():
            value, cached = self._lookup_references(caller)
            return GatewayResult(value=value, cached=cached)

        return self._execute(Operation.REFERENCES, run)

    def get_brands(self, vehicle_type, reference=None, *, caller: str = "public") -> GatewayResult:
        def run():
            vtype = VehicleType.parse(vehicle_type)
            ref = self._resolve(reference, caller)
            key = CacheKey.build(Operation.BRANDS, vtype, reference=ref)
            value, cached = self._lookup(
                key,
                lambda: self.client.fetch_brands(vtype.value, ref),
                _encode_items,
                _decoder(CatalogItem.from_payload),
                caller,
            )
            return GatewayResult(value=value, reference=ref, cached=cached)

        return self._execute(Operation.BRANDS, run)

    def get_models(self, vehicle_type, brand_id, reference=None, *, caller: str = "public") -> GatewayResult:
        def run():
            vtype = VehicleType.parse(vehicle_type)
            ref = self._resolve(reference, caller)
            key = CacheKey.build(Operation.MODELS, vtype, brand_id=brand_id, reference=ref)
            value, cached = self._lookup(
                key,
                lambda: self.client.fetch_models(vtype.value, key.brand_id, ref),
                _encode_items,
                _decoder(CatalogItem.from_payload),
                caller,
            )
            return GatewayResult(value=value, reference=ref, cached=cached)

        return self._execute(Operation.MODELS, run)

    def get_years(self, vehicle_type, brand_id, model_id, reference=None, *, caller: str = "public") -> GatewayResult:
        def run():
            vtype = VehicleType.parse(vehicle_type)
            ref = self._resolve(reference, caller)
            key = CacheKey.build(Operation.YEARS, vtype, brand_id=brand_id, model_id=model_id, reference=ref)
            value, cached = self._lookup(
                key,
                lambda: self.client.fetch_years(vtype.value, key.brand_id, key.model_id, ref),
                _encode_items,
                _decoder(CatalogItem.from_payload),
                caller,
            )
            return GatewayResult(value=value, reference=ref, cached=cached)

        return self._execute(Operation.YEARS, run)

    def get_vehicle_info(
        self, vehicle_type, brand_id, model_id, year_id, reference=None, *, caller: str = "public"
    ) -> GatewayResult:
        """Price of one vehicle/year: ``{brand, model, modelYear, fuel, price, codeFipe}``."""

        def run():
            vtype = VehicleType.parse(vehicle_type)
            ref = self._resolve(reference, caller)
            key = CacheKey.build(
                Operation.VEHICLE_INFO, vtype, brand_id=brand_id, model_id=model_id, year_id=year_id, reference=ref
            )
            value, cached = self._lookup(
                key,
                lambda: self.client.fetch_vehicle_info(vtype.value, key.brand_id, key.model_id, key.year_id, ref),
                _encode_vehicle,
                VehicleInfo.from_payload,
                caller,
            )
            return GatewayResult(value=value, reference=ref, cached=cached)

        return self._execute(Operation.VEHICLE_INFO, run)

    def search_vehicle_by_code(self, code_fipe, reference=None, *, caller: str = "public") -> GatewayResult:
        """Price lookup by FIPE code, e.g. ``"005340-6"``."""

        def run():
            code = str(code_fipe or "").strip()
            if not code:
                raise InvalidRequest("code_fipe is required")
            ref = self._resolve(reference, caller)
            key = CacheKey.build(Operation.SEARCH_BY_CODE, code_fipe=code, reference=ref)
            value, cached = self._lookup(
                key,
                lambda: self.client.fetch_by_code(code, ref),
                _encode_vehicle,
                VehicleInfo.from_payload,
                caller,
            )
            return GatewayResult(value=value, reference=ref, cached=cached)

        return self._execute(Operation.SEARCH_BY_CODE, run)

    def calculate_price(
        self, vehicle_type, brand_id, model_id, year_id, condition, reference=None, *, caller: str = "public"
    ) -> GatewayResult:
        """Estimate a resale price from the FIPE price and the vehicle's condition.

        The price comes from ``get_vehicle_info``, so a cached vehicle costs no
        quota. ``condition`` is one of ``excellent``, ``good``, ``regular`` or
        ``poor``.
        """
        condition = str(condition or "").strip().lower()
        if condition not in CONDITION_FACTORS:
            error = InvalidRequest(f"condition must be one of: {', '.join(CONDITION_FACTORS)}")
            self.logger.info(f"Rejected calculate_price: {error.message}")
            return GatewayResult(error=error)
        missing = [name for name, value in (("brand_id", brand_id), ("model_id", model_id), ("year_id", year_id))
                   if value is None or str(value).strip() == ""]
        if missing:
            error = InvalidRequest(f"Missing required field(s): {', '.join(missing)}")
            self.logger.info(f"Rejected calculate_price: {error.message}")
            return GatewayResult(error=error)

        info = self.get_vehicle_info(vehicle_type, brand_id, model_id, year_id, reference, caller=caller)
        if not info.ok:
            return info

        try:
            calculation = estimate_price(info.value.price, condition)
        except ValueError:
            error = UpstreamError(f"Unparseable FIPE price {info.value.price!r}")
            self.logger.error(f"calculate_price failed: {error.message}")
            return GatewayResult(error=error, reference=info.reference)

        value = {
            "vehicle_info": info.value.to_dict(),
            "price_calculation": calculation,
            "note": "Estimated price based on the FIPE table and the vehicle condition",
        }
        return GatewayResult(value=value, reference=info.reference, cached=info.cached)

    def get_status(self, *, caller: str = "public") -> Dict[str, Any]:
        """Upstream reachability and quota headroom.

        ``api_status`` is ``"online"`` when the reference list can be read,
        from the cache or from upstream.
        """
        has_calls = self.has_available_calls()
        references = self.get_references(caller=caller)
        latest = references.value[0].to_dict() if references.ok and references.value else None
        return {
            "api_status": "online" if references.ok else "offline",
            "has_available_calls": has_calls,
            "last_reference": latest,
        }

    # Quota and cache administration

    def has_available_calls(self) -> bool:
        """True while today's quota has units left. Touches neither cache nor quota."""
        return self.quota_ledger.remaining() > 0

    def get_usage_stats(self) -> Dict[str, Any]:
        counter = self.quota_ledger.counter()
        return {
            "date": counter.date.isoformat(),
            "total_calls": counter.count,
            "remaining_calls": counter.remaining,
            "rate_limit": counter.limit,
            "calls_by_endpoint": self.quota_ledger.usage_by_endpoint(),
        }

    def clear_cache(self) -> Dict[str, Any]:
        evicted = self.cache_engine.clear_all()
        return {"message": "FIPE cache cleared successfully", "evicted_count": evicted}
