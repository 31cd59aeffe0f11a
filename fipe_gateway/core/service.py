import time
from typing import Any, Dict, Optional

from fipe_gateway.cache.engine import CacheEngine
from fipe_gateway.core.config import ConfigurationManager
from fipe_gateway.core.gateway import FipeGateway
from fipe_gateway.core.ttl_manager import TTLManager
from fipe_gateway.database.manager import DatabaseManager
from fipe_gateway.monitoring.manager import MonitoringManager
from fipe_gateway.quota.ledger import QuotaLedger
from fipe_gateway.upstream.client import FipeClient
from fipe_gateway.utils.logger import configure_logging, get_logger


class GatewayService:
    """Wires the gateway components together and serves them over HTTP.

    The cache store and the quota ledger share one SQLite database and live
    as long as the service. The HTTP server is optional: library users can
    call ``service.gateway`` directly without ever calling ``start``.

    Example:
        Serving in the background:

        >>> config = {
        ...     "server": {"port": 8080},
        ...     "upstream": {"token": "..."},
        ...     "cache": {"database_path": "fipe_cache.db"},
        ... }
        >>> with GatewayService(config) as service:
        ...     print(service.gateway.get_usage_stats()["remaining_calls"])
        500
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, use_env: bool = False, client=None) -> None:
        """Initialize the service with configuration and all components.

        Args:
            config: User configuration, merged over DEFAULT_CONFIG
            use_env: Apply FIPE_* environment variable overrides
            client: Upstream client to use instead of one built from config

        Raises:
            ValueError: If configuration is invalid
        """
        self.config_manager = ConfigurationManager(config or {}, use_env=use_env)
        self.config = self.config_manager.config
        configure_logging(self.config["logging"])
        self.logger = get_logger("core.service")

        cache_cfg = self.config["cache"]
        quota_cfg = self.config["quota"]
        self.db_manager = DatabaseManager(cache_cfg["database_path"])
        self.cache_engine = CacheEngine(
            self.db_manager,
            max_response_size=cache_cfg["max_cache_response_size"],
            compression_threshold=cache_cfg["compression_threshold"],
            max_cache_entries=cache_cfg["max_cache_entries"],
        )
        self.quota_ledger = QuotaLedger(
            self.db_manager, daily_limit=quota_cfg["daily_limit"], timezone=quota_cfg["timezone"]
        )
        self.client = client or FipeClient.from_config(self.config["upstream"])
        gateway_cfg = self.config["gateway"]
        self.gateway = FipeGateway(
            self.cache_engine,
            self.quota_ledger,
            self.client,
            ttl_manager=TTLManager(self.config),
            coalesce_misses=gateway_cfg["coalesce_misses"],
            wait_timeout=self.config["upstream"]["timeout"] + gateway_cfg.get("coalesce_grace_seconds", 2),
        )
        self.start_time = time.time()
        self.monitoring_manager = MonitoringManager(self.gateway, self.db_manager, start_time=self.start_time)
        self.server: Optional[Any] = None
        self.running = False

    @property
    def address(self):
        if self.server is None:
            return None
        return self.server.server_address

    def start(self, blocking: bool = False) -> None:
        """Start the HTTP server.

        Args:
            blocking: If True, blocks until the server stops. If False,
                serves from a background thread.

        Raises:
            RuntimeError: If the server is already running
            OSError: If unable to bind to the configured host/port
        """
        from fipe_gateway.core.handler import GatewayHTTPRequestHandler
        from fipe_gateway.core.server import ThreadedHTTPServer

        if self.running:
            raise RuntimeError("Server is already running")

        host = self.config["server"]["host"]
        port = self.config["server"]["port"]
        if self.server is None:
            self.server = ThreadedHTTPServer((host, port), GatewayHTTPRequestHandler, self)
        self.running = True
        self.logger.info(f"FIPE gateway starting on {host}:{port} (blocking={blocking})")
        self.server.start(blocking=blocking)

    def stop(self) -> None:
        """Stop the HTTP server and release the database. Safe to call twice."""
        if self.server is not None:
            self.server.stop()
            self.server = None
        self.running = False
        self.db_manager.close()
        self.logger.info("FIPE gateway stopped.")

    def is_running(self) -> bool:
        return self.running

    def __enter__(self) -> "GatewayService":
        self.start(blocking=False)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
