"""Request routing for GatewayHTTPRequestHandler."""

import datetime
import json
import re
from http.server import BaseHTTPRequestHandler
from typing import Any, Dict
from urllib.parse import parse_qs, unquote, urlparse

from fipe_gateway.core.errors import InvalidRequest, QuotaExhausted
from fipe_gateway.utils.logger import get_logger

_SEGMENT = r"([^/]+)"

# (pattern, gateway method, names of the path groups in call order)
READ_ROUTES = [
    (re.compile(r"^/references/?$"), "get_references", ()),
    (re.compile(rf"^/{_SEGMENT}/brands/?$"), "get_brands", ("vehicle_type",)),
    (re.compile(rf"^/{_SEGMENT}/brands/{_SEGMENT}/models/?$"), "get_models", ("vehicle_type", "brand_id")),
    (
        re.compile(rf"^/{_SEGMENT}/brands/{_SEGMENT}/models/{_SEGMENT}/years/?$"),
        "get_years",
        ("vehicle_type", "brand_id", "model_id"),
    ),
    (
        re.compile(rf"^/{_SEGMENT}/brands/{_SEGMENT}/models/{_SEGMENT}/years/{_SEGMENT}/?$"),
        "get_vehicle_info",
        ("vehicle_type", "brand_id", "model_id", "year_id"),
    ),
    (re.compile(rf"^/code/{_SEGMENT}/?$"), "search_vehicle_by_code", ("code_fipe",)),
]

# Non-cached public endpoints: path -> (method, handler name)
PUBLIC_ROUTES = {
    "/status": ("GET", "_handle_status"),
    "/calculate-price": ("POST", "_handle_calculate_price"),
}


def _timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _to_json(value: Any) -> Any:
    if isinstance(value, list):
        return [_to_json(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def status_for_error(error) -> int:
    """HTTP status for a GatewayResult error."""
    if isinstance(error, InvalidRequest):
        return 422
    if isinstance(error, QuotaExhausted):
        return 429
    return 502


class RequestProcessingMixin:
    """Routes requests to the gateway facade and the admin endpoints."""

    @property
    def logger(self):
        if hasattr(self, "service") and hasattr(self.service, "logger"):
            return self.service.logger
        return get_logger("core.handler")

    def _send_json(self, status_code: int, data: Dict[str, Any], headers: Dict[str, str] = None):
        body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, status_code: int, error_code: str, message: str):
        self._send_json(status_code, {"success": False, "error": message, "error_code": error_code})

    def _caller(self) -> str:
        caller = (self.headers.get("X-Caller-Id") or "").strip()
        return caller or "public"

    def _handle_request(self, method: str):
        try:
            parsed = urlparse(self.path)
            path = parsed.path
            self.logger.debug(f"Handling {method} request for path: {path}")

            if path.startswith("/admin/"):
                if not self.service.config.get("admin", {}).get("enabled", True):
                    self._send_error(404, "NOT_FOUND", f"No route for {path}")
                    return
                self._handle_admin_request(method, path)
                return

            public = PUBLIC_ROUTES.get(path.rstrip("/"))
            if public is not None:
                route_method, handler_name = public
                if method != route_method:
                    self._send_error(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")
                    return
                getattr(self, handler_name)()
                return

            for pattern, operation, names in READ_ROUTES:
                match = pattern.match(path)
                if match is None:
                    continue
                if method != "GET":
                    self._send_error(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")
                    return
                self._handle_read(operation, names, match, parse_qs(parsed.query))
                return

            self._send_error(404, "NOT_FOUND", f"No route for {path}")
        except Exception as e:
            self.logger.error(f"Exception while handling request: {e}")
            self._send_error(500, "INTERNAL_ERROR", "Internal server error")

    def _handle_read(self, operation: str, names, match, query: Dict[str, list]):
        kwargs = {name: unquote(value) for name, value in zip(names, match.groups())}
        if operation != "get_references":
            kwargs["reference"] = query.get("reference", [None])[0]

        self._send_result(getattr(self.service.gateway, operation)(caller=self._caller(), **kwargs))

    def _send_result(self, result):
        if isinstance(result.error, QuotaExhausted):
            self._send_quota_exhausted(result.error)
            return
        if not result.ok:
            self._send_error(status_for_error(result.error), result.error_code, result.error.message)
            return

        payload: Dict[str, Any] = {"success": True, "data": _to_json(result.value)}
        if result.reference is not None:
            payload["reference"] = result.reference
        self._send_json(200, payload, {"X-Cache": "HIT" if result.cached else "MISS"})

    def _send_quota_exhausted(self, error: QuotaExhausted):
        ledger = self.service.quota_ledger
        limit = ledger.daily_limit()
        retry_after = ledger.seconds_until_reset()
        reset_time = ledger.next_reset().isoformat()
        self.logger.info(f"Quota exhausted: limit={limit}, reset_time={reset_time}, retry_after={retry_after}")
        payload = {
            "success": False,
            "error": error.message,
            "error_code": error.code,
            "rate_limit": limit,
            "reset_time": reset_time,
        }
        headers = {
            "Retry-After": str(retry_after),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(ledger.remaining()),
            "X-RateLimit-Reset": str(retry_after),
        }
        self._send_json(429, payload, headers)

    def _read_json_body(self):
        content_length = int(self.headers.get("Content-Length", 0) or 0)
        raw = self.rfile.read(content_length) if content_length else b""
        if not raw:
            return {}
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None

    # Public endpoints

    def _handle_status(self):
        status = self.service.gateway.get_status(caller=self._caller())
        self._send_json(200, {"success": True, "data": {**status, "timestamp": _timestamp()}})

    def _handle_calculate_price(self):
        body = self._read_json_body()
        if not isinstance(body, dict):
            self._send_error(422, InvalidRequest.code, "Request body must be a JSON object")
            return
        result = self.service.gateway.calculate_price(
            body.get("vehicle_type"),
            body.get("brand_id"),
            body.get("model_id"),
            body.get("year_id"),
            body.get("condition"),
            body.get("reference"),
            caller=self._caller(),
        )
        self._send_result(result)

    # Admin endpoints

    def _handle_admin_request(self, method: str, path: str):
        self._log_admin_access(method, path)
        routes = {
            ("GET", "/admin/health"): self._handle_admin_health,
            ("GET", "/admin/status"): self._handle_admin_status,
            ("GET", "/admin/usage-stats"): self._handle_admin_usage_stats,
            ("POST", "/admin/clear-cache"): self._handle_admin_clear_cache,
        }
        handler = routes.get((method, path.rstrip("/")))
        if handler is not None:
            handler()
        elif any(route_path == path.rstrip("/") for _, route_path in routes):
            self._send_error(405, "METHOD_NOT_ALLOWED", f"Method {method} not allowed")
        else:
            self._send_error(404, "ENDPOINT_NOT_FOUND", f"Admin endpoint not found: {path}")

    def _log_admin_access(self, method: str, path: str):
        if self.service.config.get("admin", {}).get("log_access", True):
            self.logger.info(f"Admin access: {self.client_address[0]} {method} {path}")

    def _handle_admin_health(self):
        health = self.service.monitoring_manager.get_service_health()
        self._send_json(200, {"success": True, "timestamp": _timestamp(), **health})

    def _handle_admin_status(self):
        status = self.service.monitoring_manager.get_status()
        self._send_json(200, {"success": True, "timestamp": _timestamp(), "data": status})

    def _handle_admin_usage_stats(self):
        self._send_json(200, {"success": True, "data": self.service.gateway.get_usage_stats()})

    def _handle_admin_clear_cache(self):
        self._read_json_body()
        result = self.service.gateway.clear_cache()
        self.logger.info(f"Cache cleared via admin endpoint ({result['evicted_count']} entries)")
        self._send_json(200, {"success": True, "data": result})


class GatewayHTTPRequestHandler(RequestProcessingMixin, BaseHTTPRequestHandler):
    """HTTP request handler for the FIPE gateway."""

    server_version = "FipeGateway/1.0"

    def __init__(self, *args, service=None, **kwargs):
        self.service = service
        super().__init__(*args, **kwargs)

    def do_GET(self):
        self._handle_request("GET")

    def do_POST(self):
        self._handle_request("POST")

    def do_PUT(self):
        self._handle_request("PUT")

    def do_DELETE(self):
        self._handle_request("DELETE")

    def log_message(self, format, *args):
        self.logger.debug(f"{self.address_string()} - {format % args}")
