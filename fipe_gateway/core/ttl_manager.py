"""TTL management utilities for cache configuration."""

from typing import Dict

# Operation -> TTL class
OPERATION_TTL_CLASSES: Dict[str, str] = {
    "references": "references",
    "brands": "catalog",
    "models": "catalog",
    "years": "catalog",
    "vehicle_info": "vehicle",
    "search_by_code": "vehicle",
}


class TTLManager:
    """Resolves the cache TTL of a gateway operation.

    Reference and catalog lists change at most monthly and get long TTLs;
    single-vehicle prices get a shorter one. Operations without a configured
    class fall back to ``cache.default_ttl_seconds``.
    """

    def __init__(self, config: dict):
        """Initialize TTL manager with configuration.

        Args:
            config: Full gateway configuration dictionary
        """
        cache_config = config.get("cache", {})
        self.default_ttl = cache_config.get("default_ttl_seconds", 86400)
        self.ttl_classes = dict(cache_config.get("ttl_classes", {}))

    def get_ttl_class(self, operation) -> str:
        name = getattr(operation, "value", operation)
        return OPERATION_TTL_CLASSES.get(name, "default")

    def get_ttl_for_operation(self, operation) -> int:
        """Get TTL in seconds for an operation (an Operation member or its value)."""
        return self.ttl_classes.get(self.get_ttl_class(operation), self.default_ttl)

    def get_default_ttl(self) -> int:
        return self.default_ttl
