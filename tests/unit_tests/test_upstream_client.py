"""Tests for FipeClient against a local stand-in for the pricing API."""

import gzip
import json
import sys
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

from unittest.mock import patch

import pytest

from fipe_gateway.core.errors import InvalidVehicleType, UpstreamError
from fipe_gateway.upstream.client import FipeClient
from fipe_gateway.upstream.models import CatalogItem, Reference, VehicleInfo

VEHICLE = {
    "brand": "VW - VolksWagen",
    "model": "Gol 1.0",
    "modelYear": 2014,
    "fuel": "Gasolina",
    "price": "R$ 25.000,00",
    "codeFipe": "005340-6",
    "referenceMonth": "agosto de 2025",
    "fuelAcronym": "G",
    "vehicleType": 1,
}

ROUTES = {
    "/references": (200, [{"code": "324", "month": "agosto de 2025"}]),
    "/cars/brands": (200, [{"code": "59", "name": "VW - VolksWagen"}]),
    "/cars/brands/59/models": (200, [{"code": "5940", "name": "Gol 1.0"}]),
    "/cars/brands/59/models/5940/years": (200, [{"code": "2014-1", "name": "2014 Gasolina"}]),
    "/cars/brands/59/models/5940/years/2014-1": (200, VEHICLE),
    "/005340-6": (200, [VEHICLE]),
    "/trucks/brands": (200, []),
    "/motorcycles/brands": (503, {"error": "maintenance"}),
    "/broken": (200, "not-json"),
    "/not-a-list": (200, {"code": "1"}),
}


class StubPricingHandler(BaseHTTPRequestHandler):
    requests_seen = []

    def do_GET(self):
        path, _, query = self.path.partition("?")
        StubPricingHandler.requests_seen.append((path, query, self.headers))
        status, payload = ROUTES.get(path, (404, {"error": "not found"}))
        if payload == "not-json":
            body = b"<html>oops</html>"
        else:
            body = json.dumps(payload).encode("utf-8")
        gzip_it = path == "/cars/brands/59/models"
        if gzip_it:
            body = gzip.compress(body)
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        if gzip_it:
            self.send_header("Content-Encoding", "gzip")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture(scope="module")
def upstream():
    server = ThreadingHTTPServer(("127.0.0.1", 0), StubPricingHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


@pytest.fixture
def client(upstream):
    StubPricingHandler.requests_seen = []
    return FipeClient(base_url=upstream, token="secret-token", timeout=2)


def test_fetch_references(client):
    assert client.fetch_references() == [Reference("324", "agosto de 2025")]


def test_token_header_sent(client):
    client.fetch_references()
    _, _, headers = StubPricingHandler.requests_seen[-1]
    assert headers.get("X-Subscription-Token") == "secret-token"


def test_no_token_header_without_token(upstream):
    StubPricingHandler.requests_seen = []
    FipeClient(base_url=upstream).fetch_references()
    _, _, headers = StubPricingHandler.requests_seen[-1]
    assert "X-Subscription-Token" not in headers


def test_reference_sent_as_query(client):
    assert client.fetch_brands("cars", "324") == [CatalogItem("59", "VW - VolksWagen")]
    path, query, _ = StubPricingHandler.requests_seen[-1]
    assert path == "/cars/brands"
    assert query == "reference=324"


def test_gzip_body_decoded(client):
    assert client.fetch_models("cars", 59, "324") == [CatalogItem("5940", "Gol 1.0")]


def test_fetch_years_and_vehicle(client):
    assert client.fetch_years("cars", "59", "5940", None)[0].code == "2014-1"
    vehicle = client.fetch_vehicle_info("cars", "59", "5940", "2014-1", "324")
    assert isinstance(vehicle, VehicleInfo)
    assert vehicle.price == "R$ 25.000,00"
    assert vehicle.modelYear == 2014


def test_fetch_by_code_accepts_single_element_list(client):
    vehicle = client.fetch_by_code("005340-6", "324")
    assert vehicle.codeFipe == "005340-6"
    assert StubPricingHandler.requests_seen[-1][0] == "/005340-6"


def test_empty_list_is_valid(client):
    assert client.fetch_brands("trucks", "324") == []


def test_non_2xx_raises_upstream_error(client):
    with pytest.raises(UpstreamError) as excinfo:
        client.fetch_brands("motorcycles", "324")
    assert excinfo.value.status_code == 503
    assert client.get_stats()["errors"] == 1


def test_malformed_json_raises(client, upstream):
    with pytest.raises(UpstreamError, match="Malformed"):
        client._get_json(f"{upstream}/broken")


def test_list_expected(client, upstream):
    with pytest.raises(UpstreamError, match="Expected a JSON list"):
        client._parse_list(client._get_json(f"{upstream}/not-a-list"), CatalogItem.from_payload, "/not-a-list")


def test_invalid_vehicle_type(client):
    with pytest.raises(InvalidVehicleType):
        client.fetch_brands("boats", "324")
    assert StubPricingHandler.requests_seen == []


def test_network_error_raises_upstream_error():
    client = FipeClient(base_url="http://127.0.0.1:1", timeout=0.5)
    with pytest.raises(UpstreamError):
        client.fetch_references()


def test_timeout_raises_upstream_error(client):
    with patch("urllib.request.urlopen", side_effect=TimeoutError("timed out")):
        with pytest.raises(UpstreamError, match="timeout"):
            client.fetch_references()


def test_stats(client):
    client.fetch_references()
    client.fetch_brands("cars", None)
    stats = client.get_stats()
    assert stats["requests"] == 2
    assert stats["error_rate"] == 0.0
    assert stats["average_response_time_ms"] >= 0


def test_from_config():
    client = FipeClient.from_config({"base_url": "https://example.test/api/", "token": "t", "timeout": 3})
    assert client.base_url == "https://example.test/api"
    assert client.token == "t"
    assert client.timeout == 3
