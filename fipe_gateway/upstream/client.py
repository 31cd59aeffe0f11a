"""HTTP client for the FIPE pricing API."""

import gzip
import json
import socket
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
import zlib
from typing import Any, Dict, List, Optional

from fipe_gateway.core.errors import UpstreamError
from fipe_gateway.upstream.models import CatalogItem, Reference, VehicleInfo, VehicleType
from fipe_gateway.utils.logger import get_logger

DEFAULT_BASE_URL = "https://fipe.parallelum.com.br/api/v2"


class FipeClient:
    """Performs single round trips to the pricing API and normalizes the payloads.

    Every ``fetch_*`` method issues exactly one request: no retries, since a
    retry would spend another unit of the caller's daily quota. Charging the
    quota is the caller's job and must happen before calling in here.

    Example:
        >>> client = FipeClient(token="...", timeout=5)
        >>> brands = client.fetch_brands("cars", "324")
        >>> brands[0]
        CatalogItem(code='1', name='Acura')
    """

    def __init__(self, base_url: str = DEFAULT_BASE_URL, token: Optional[str] = None, timeout: float = 5):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.logger = get_logger("upstream.client")
        self._stats_lock = threading.Lock()
        self._stats = {"requests": 0, "errors": 0, "total_response_time_ms": 0}

    @classmethod
    def from_config(cls, upstream_config: dict) -> "FipeClient":
        return cls(
            base_url=upstream_config.get("base_url", DEFAULT_BASE_URL),
            token=upstream_config.get("token"),
            timeout=upstream_config.get("timeout", 5),
        )

    def _url(self, *segments, reference: Optional[str] = None) -> str:
        path = "/".join(urllib.parse.quote(str(s), safe="") for s in segments)
        url = f"{self.base_url}/{path}"
        if reference:
            url += "?" + urllib.parse.urlencode({"reference": reference})
        return url

    def _record(self, started: float, failed: bool) -> None:
        with self._stats_lock:
            self._stats["requests"] += 1
            self._stats["total_response_time_ms"] += int((time.time() - started) * 1000)
            if failed:
                self._stats["errors"] += 1

    def _decode_body(self, body: bytes, encoding: str, url: str) -> bytes:
        try:
            if body[:2] == b"\x1f\x8b" or encoding == "gzip":
                return gzip.decompress(body)
            if encoding == "deflate":
                return zlib.decompress(body)
        except (gzip.BadGzipFile, zlib.error, OSError) as e:
            raise UpstreamError(f"Could not decode {encoding or 'gzip'} body: {e}", url=url)
        return body

    def _get_json(self, url: str) -> Any:
        """One GET round trip. Raises UpstreamError on any failure."""
        req = urllib.request.Request(url, method="GET")
        req.add_header("Accept", "application/json")
        req.add_header("Accept-Encoding", "gzip, deflate")
        if self.token:
            req.add_header("X-Subscription-Token", self.token)

        self.logger.debug(f"GET {url} (timeout={self.timeout})")
        started = time.time()
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                status = response.getcode()
                body = response.read()
                encoding = (response.headers.get("Content-Encoding") or "").lower()
        except urllib.error.HTTPError as e:
            self._record(started, failed=True)
            self.logger.error(f"HTTP error from pricing API {url}: {e.code} {e.reason}")
            raise UpstreamError(f"Upstream HTTP error: {e.code} {e.reason}", status_code=e.code, url=url)
        except urllib.error.URLError as e:
            self._record(started, failed=True)
            self.logger.error(f"Network error accessing pricing API {url}: {e.reason}")
            raise UpstreamError(f"Upstream network error: {e.reason}", url=url)
        except (socket.timeout, TimeoutError) as e:
            self._record(started, failed=True)
            self.logger.error(f"Timed out after {self.timeout}s waiting for {url}")
            raise UpstreamError(f"Upstream timeout: {e}", url=url)
        except OSError as e:
            self._record(started, failed=True)
            self.logger.error(f"I/O error talking to pricing API {url}: {e}")
            raise UpstreamError(f"Upstream I/O error: {e}", url=url)

        if not 200 <= status < 300:
            self._record(started, failed=True)
            raise UpstreamError(f"Upstream returned status {status}", status_code=status, url=url)

        try:
            payload = json.loads(self._decode_body(body, encoding, url).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            self._record(started, failed=True)
            self.logger.error(f"Malformed JSON from {url}: {e}")
            raise UpstreamError(f"Malformed upstream payload: {e}", status_code=status, url=url)
        self._record(started, failed=False)
        return payload

    def _parse_list(self, payload: Any, factory, url: str) -> list:
        if not isinstance(payload, list):
            raise UpstreamError(f"Expected a JSON list, got {type(payload).__name__}", url=url)
        try:
            return [factory(item) for item in payload]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise UpstreamError(f"Malformed upstream list item: {e!r}", url=url)

    def _parse_vehicle(self, payload: Any, url: str) -> VehicleInfo:
        # Code lookups may answer with a one-element list
        if isinstance(payload, list) and payload:
            payload = payload[0]
        if not isinstance(payload, dict):
            raise UpstreamError("Expected a vehicle object", url=url)
        try:
            return VehicleInfo.from_payload(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed vehicle payload: {e!r}", url=url)

    def fetch_references(self) -> List[Reference]:
        url = self._url("references")
        return self._parse_list(self._get_json(url), Reference.from_payload, url)

    def fetch_brands(self, vehicle_type, reference: Optional[str]) -> List[CatalogItem]:
        vtype = VehicleType.parse(vehicle_type)
        url = self._url(vtype.value, "brands", reference=reference)
        return self._parse_list(self._get_json(url), CatalogItem.from_payload, url)

    def fetch_models(self, vehicle_type, brand_id, reference: Optional[str]) -> List[CatalogItem]:
        vtype = VehicleType.parse(vehicle_type)
        url = self._url(vtype.value, "brands", brand_id, "models", reference=reference)
        return self._parse_list(self._get_json(url), CatalogItem.from_payload, url)

    def fetch_years(self, vehicle_type, brand_id, model_id, reference: Optional[str]) -> List[CatalogItem]:
        vtype = VehicleType.parse(vehicle_type)
        url = self._url(vtype.value, "brands", brand_id, "models", model_id, "years", reference=reference)
        return self._parse_list(self._get_json(url), CatalogItem.from_payload, url)

    def fetch_vehicle_info(self, vehicle_type, brand_id, model_id, year_id, reference: Optional[str]) -> VehicleInfo:
        vtype = VehicleType.parse(vehicle_type)
        url = self._url(
            vtype.value, "brands", brand_id, "models", model_id, "years", year_id, reference=reference
        )
        return self._parse_vehicle(self._get_json(url), url)

    def fetch_by_code(self, code_fipe: str, reference: Optional[str]) -> VehicleInfo:
        url = self._url(code_fipe, reference=reference)
        return self._parse_vehicle(self._get_json(url), url)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats["average_response_time_ms"] = (
            stats["total_response_time_ms"] / stats["requests"] if stats["requests"] else 0.0
        )
        stats["error_rate"] = stats["errors"] / stats["requests"] if stats["requests"] else 0.0
        return stats
