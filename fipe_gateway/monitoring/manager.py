"""
MonitoringManager: operational metrics for the gateway's cache, quota and
upstream client, served by the admin status endpoint.
"""

import os
import sqlite3
import threading
import time
from typing import Any, Dict, Optional


class MonitoringManager:
    def __init__(self, gateway, db_manager=None, start_time: Optional[float] = None):
        """Initialize with the gateway whose components are reported on."""
        self.gateway = gateway
        self.db_manager = db_manager or getattr(gateway.cache_engine, "db_manager", None)
        self.start_time = start_time or time.time()

    def get_cache_stats(self) -> Dict[str, Any]:
        """Return entry counts, sizes, hit/miss rates and evictions."""
        stats: Dict[str, Any] = {}
        try:
            cache_engine = self.gateway.cache_engine
            stats.update(cache_engine.get_cache_performance())
            raw = cache_engine.get_stats()
            stats["hit_count"] = raw["hits"]
            stats["miss_count"] = raw["misses"]
            stats["miss_rate"] = 1.0 - stats["hit_rate"] if (raw["hits"] + raw["misses"]) else 0.0
            stats["sets"] = raw["sets"]
            stats["ttl_classes"] = dict(self.gateway.ttl_manager.ttl_classes)
        except sqlite3.Error as e:
            stats["error"] = str(e)
        return stats

    def get_quota_stats(self) -> Dict[str, Any]:
        """Return today's quota usage."""
        try:
            stats = self.gateway.get_usage_stats()
            stats["has_available_calls"] = stats["remaining_calls"] > 0
            return stats
        except sqlite3.Error as e:
            return {"error": str(e)}

    def get_upstream_stats(self) -> Dict[str, Any]:
        """Return upstream request volume, error rate and response times."""
        client = self.gateway.client
        if not hasattr(client, "get_stats"):
            return {"requests": "unavailable", "errors": "unavailable", "average_response_time_ms": "unavailable"}
        stats = client.get_stats()
        stats["base_url"] = getattr(client, "base_url", None)
        stats["timeout"] = getattr(client, "timeout", None)
        return stats

    def get_database_stats(self) -> Dict[str, Any]:
        """Return database path, size and health."""
        if self.db_manager is None:
            return {"db_file_path": "unavailable", "db_file_size_bytes": "unavailable", "db_health": "unavailable"}
        stats: Dict[str, Any] = {}
        if self.db_manager.in_memory:
            stats["db_file_path"] = "in_memory"
            stats["db_file_size_bytes"] = "in_memory"
        else:
            db_path = self.db_manager.database_path
            stats["db_file_path"] = db_path
            stats["db_file_size_bytes"] = os.path.getsize(db_path) if os.path.exists(db_path) else "file_not_found"
        try:
            self.db_manager.execute_query("SELECT 1")
            stats["db_health"] = "healthy"
        except sqlite3.Error:
            stats["db_health"] = "error"
        return stats

    def get_service_health(self) -> Dict[str, Any]:
        """Return uptime, active threads and the overall status."""
        database = self.get_database_stats()
        quota = self.get_quota_stats()
        if database.get("db_health") == "error" or "error" in quota:
            status = "error"
        elif not quota.get("has_available_calls", False):
            status = "degraded"
        else:
            status = "healthy"
        return {
            "status": status,
            "uptime_seconds": time.time() - self.start_time,
            "active_threads": threading.active_count(),
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            **self.get_service_health(),
            **self.gateway.get_status(caller="admin"),
            "cache": self.get_cache_stats(),
            "quota": self.get_quota_stats(),
            "upstream": self.get_upstream_stats(),
            "database": self.get_database_stats(),
        }
