"""Database models for FIPE Gateway."""

import hashlib
import json
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Optional


@dataclass(frozen=True)
class CacheKey:
    """Identity of a cached upstream answer.

    Two lookups share a cache entry iff every field is equal. Ids are kept as
    strings so ``brand_id=59`` and ``brand_id="59"`` map to the same entry.
    """

    operation: str
    vehicle_type: Optional[str] = None
    brand_id: Optional[str] = None
    model_id: Optional[str] = None
    year_id: Optional[str] = None
    code_fipe: Optional[str] = None
    reference: Optional[str] = None

    @classmethod
    def build(cls, operation, vehicle_type=None, brand_id=None, model_id=None, year_id=None, code_fipe=None,
              reference=None) -> "CacheKey":
        def norm(value):
            if value is None:
                return None
            return str(getattr(value, "value", value))

        return cls(
            operation=norm(operation),
            vehicle_type=norm(vehicle_type),
            brand_id=norm(brand_id),
            model_id=norm(model_id),
            year_id=norm(year_id),
            code_fipe=norm(code_fipe),
            reference=norm(reference),
        )

    def serialize(self) -> str:
        """Deterministic text form of the key."""
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))

    def digest(self) -> str:
        """SHA256 of ``serialize()``; the primary key of the cache table."""
        return hashlib.sha256(self.serialize().encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """A cached upstream answer."""

    key: CacheKey
    value: Any
    created_at: float
    expires_at: float
    access_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    @property
    def ttl_seconds(self) -> float:
        return self.expires_at - self.created_at


@dataclass
class QuotaCounter:
    """Upstream calls issued on one provider-timezone day."""

    date: date
    count: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


@dataclass
class ApiCallRecord:
    """One upstream call that was charged to the quota."""

    date: str
    endpoint: str
    caller: str
    called_at: str
