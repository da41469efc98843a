# supplywatch/models/observation.py

"""Supplier observation input and the canonical signal derived from it."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


@dataclass(frozen=True)
class SupplierObservation:
    """A single external read of a supplier listing."""

    product_id: str
    observed_at: datetime
    reachable: bool
    in_stock: bool
    price: Decimal | None = None
    supplier_rating: float | None = None
    stock_level: int | None = None


@dataclass(frozen=True)
class Signal:
    """Canonical change signal produced by the observation ingestor."""

    product_id: str
    observed_at: datetime
    reachable: bool
    price: Decimal | None
    previous_price: Decimal | None
    price_delta: Decimal | None
    stock_transition: tuple[bool, bool]
    supplier_rating: float | None = None
    stock_level: int | None = None

    @property
    def in_stock(self) -> bool:
        return self.stock_transition[1]
