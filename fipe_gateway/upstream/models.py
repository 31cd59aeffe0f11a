"""Normalized DTOs for FIPE pricing API payloads."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fipe_gateway.core.errors import InvalidVehicleType


class VehicleType(str, Enum):
    """Vehicle segments exposed by the pricing API."""

    CARS = "cars"
    MOTORCYCLES = "motorcycles"
    TRUCKS = "trucks"

    @classmethod
    def parse(cls, value) -> "VehicleType":
        """Return the member for ``value`` or raise InvalidVehicleType."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidVehicleType(f"Invalid vehicle type {value!r}; expected one of: {allowed}")


class Operation(str, Enum):
    """Gateway lookups. Values are also the endpoint names in the quota call log."""

    REFERENCES = "references"
    BRANDS = "brands"
    MODELS = "models"
    YEARS = "years"
    VEHICLE_INFO = "vehicle_info"
    SEARCH_BY_CODE = "search_by_code"


@dataclass(frozen=True)
class Reference:
    """A monthly snapshot of the pricing table, e.g. ``Reference("324", "agosto de 2025")``."""

    code: str
    label: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Reference":
        # The v2 API calls the label "month"
        label = payload.get("label", payload.get("month", ""))
        return cls(code=str(payload["code"]), label=str(label or ""))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CatalogItem:
    """A brand, model or year entry: ``{code, name}``."""

    code: str
    name: str

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CatalogItem":
        return cls(code=str(payload["code"]), name=str(payload["name"]))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VehicleInfo:
    """Price lookup result for a single vehicle/year."""

    brand: str
    model: str
    modelYear: int
    fuel: str
    price: str
    codeFipe: str
    referenceMonth: Optional[str] = None
    fuelAcronym: Optional[str] = None
    vehicleType: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VehicleInfo":
        model_year = payload["modelYear"]
        return cls(
            brand=str(payload["brand"]),
            model=str(payload["model"]),
            modelYear=int(model_year),
            fuel=str(payload["fuel"]),
            price=str(payload["price"]),
            codeFipe=str(payload["codeFipe"]),
            referenceMonth=payload.get("referenceMonth"),
            fuelAcronym=payload.get("fuelAcronym"),
            vehicleType=payload.get("vehicleType"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
