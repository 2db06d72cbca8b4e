"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Generic, Mapping, Sequence, TypeVar

T = TypeVar("T")

CENT = Decimal("0.01")


class SourceFormatError(ValueError):
    pass


def round_money(value: Any) -> Decimal:
    """Quantize a price to two decimal places."""
    if isinstance(value, bool) or value is None or value == "":
        raise TypeError(f"Invalid price: {value!r}")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(slots=True)
class VariantRecord:
    variant_type: str | None
    variant_value: str | None
    stock: Any = 0
    price_modifier: Any = 0

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "VariantRecord":
        return cls(
            variant_type=data.get("variant_type"),
            variant_value=data.get("variant_value"),
            stock=data.get("stock") or 0,
            price_modifier=data.get("price_modifier") or 0,
        )

    @property
    def display_name(self) -> str | None:
        if self.variant_type and self.variant_value:
            return f"{self.variant_type}: {self.variant_value}"
        return self.variant_value or self.variant_type


@dataclass(slots=True)
class ProductRecord:
    name: str | None
    price: Any
    description: str = ""
    category: str = "disposable"
    stock: Any = 0
    variants: list[VariantRecord] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProductRecord":
        variants = data.get("variants") or []
        if not isinstance(variants, list) or not all(isinstance(item, Mapping) for item in variants):
            raise SourceFormatError(f"Product {data.get('name')!r}: variants must be a list of objects")
        return cls(
            name=data.get("name"),
            price=data.get("price"),
            description=data.get("description") or "",
            category=data.get("category") or "disposable",
            stock=data.get("stock") or 0,
            variants=[VariantRecord.from_mapping(item) for item in variants],
        )

    @property
    def expected_variant_rows(self) -> int:
        return max(1, len(self.variants))


@dataclass(slots=True)
class StoreRecord:
    id: str
    name: str | None
    address: str | None
    lat: Any
    lng: Any
    city: str | None
    area: str | None
    tel: str = ""
    service: list[Any] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoreRecord":
        store_id = data.get("id")
        if store_id is None or not str(store_id).strip():
            raise SourceFormatError(f"Store {data.get('name')!r} has no id")
        service = data.get("service") or []
        if not isinstance(service, list):
            service = [service]
        return cls(
            id=str(store_id).strip(),
            name=data.get("name"),
            address=data.get("address"),
            lat=data.get("lat"),
            lng=data.get("lng"),
            city=data.get("city"),
            area=data.get("area"),
            tel=data.get("tel") or "",
            service=service,
        )


@dataclass(slots=True)
class ImportBatch(Generic[T]):
    index: int
    records: Sequence[T]


@dataclass(slots=True)
class ImportSummary:
    inserted_count: int = 0
    batch_count: int = 0
    child_count: int = 0
    expected_count: int = 0
    actual_count: int = 0
