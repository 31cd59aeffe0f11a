"""
Unit tests for MonitoringManager.
"""

import os
import sys
import tempfile
from datetime import datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent.parent.absolute()
sys.path.append(str(PROJECT_ROOT))

from unittest.mock import Mock

import pytest
import pytz

from fipe_gateway.cache.engine import CacheEngine
from fipe_gateway.core.gateway import FipeGateway
from fipe_gateway.database.manager import DatabaseManager
from fipe_gateway.monitoring.manager import MonitoringManager
from fipe_gateway.quota.ledger import QuotaLedger
from fipe_gateway.upstream.models import CatalogItem, Reference


class DummyClient:
    base_url = "https://example.test/api/v2"
    timeout = 5

    def fetch_references(self):
        return [Reference("324", "agosto de 2025")]

    def fetch_brands(self, vehicle_type, reference):
        return [CatalogItem("59", "VW - VolksWagen")]

    def get_stats(self):
        return {"requests": 4, "errors": 1, "total_response_time_ms": 400, "average_response_time_ms": 100.0,
                "error_rate": 0.25}


def clock():
    return pytz.timezone("America/Sao_Paulo").localize(datetime(2025, 8, 15, 12, 0))


@pytest.fixture
def db_manager():
    manager = DatabaseManager(":memory:")
    yield manager
    manager.close()


@pytest.fixture
def gateway(db_manager):
    ledger = QuotaLedger(db_manager, daily_limit=10, clock=clock)
    return FipeGateway(CacheEngine(db_manager), ledger, DummyClient())


@pytest.fixture
def monitoring(gateway, db_manager):
    return MonitoringManager(gateway, db_manager, start_time=1000.0)


def test_cache_stats(gateway, monitoring):
    gateway.get_brands("cars", "324")
    gateway.get_brands("cars", "324")

    stats = monitoring.get_cache_stats()
    assert stats["total_entries"] == 1
    assert stats["entries_by_operation"] == {"brands": 1}
    assert stats["hit_count"] == 1
    # The miss path checks the cache twice (lookup and fill)
    assert stats["miss_count"] == 2
    assert stats["sets"] == 1
    assert stats["ttl_classes"]["catalog"] == 43200


def test_quota_stats(gateway, monitoring):
    gateway.get_brands("cars", "324")
    stats = monitoring.get_quota_stats()
    assert stats["total_calls"] == 1
    assert stats["remaining_calls"] == 9
    assert stats["has_available_calls"] is True


def test_upstream_stats(monitoring):
    stats = monitoring.get_upstream_stats()
    assert stats["requests"] == 4
    assert stats["error_rate"] == 0.25
    assert stats["base_url"] == "https://example.test/api/v2"


def test_upstream_stats_without_client_stats(gateway, db_manager):
    gateway.client = Mock(spec=["fetch_brands"])
    stats = MonitoringManager(gateway, db_manager).get_upstream_stats()
    assert stats["requests"] == "unavailable"


def test_database_stats_in_memory(monitoring):
    stats = monitoring.get_database_stats()
    assert stats["db_file_path"] == "in_memory"
    assert stats["db_health"] == "healthy"


def test_database_stats_file():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "fipe.db")
        db_manager = DatabaseManager(path)
        ledger = QuotaLedger(db_manager, clock=clock)
        gateway = FipeGateway(CacheEngine(db_manager), ledger, DummyClient())
        stats = MonitoringManager(gateway).get_database_stats()
        assert stats["db_file_path"] == path
        assert isinstance(stats["db_file_size_bytes"], int)
        db_manager.close()


def test_health_degrades_when_quota_spent(gateway, monitoring):
    assert monitoring.get_service_health()["status"] == "healthy"
    gateway.quota_ledger.load_state({"date": "2025-08-15", "count": 10})
    health = monitoring.get_service_health()
    assert health["status"] == "degraded"
    assert health["uptime_seconds"] > 0
    assert health["active_threads"] >= 1


def test_status_combines_sections(monitoring):
    status = monitoring.get_status()
    assert set(status) >= {"status", "uptime_seconds", "cache", "quota", "upstream", "database"}
    assert status["api_status"] == "online"
    assert status["has_available_calls"] is True
    assert status["last_reference"] == {"code": "324", "label": "agosto de 2025"}
