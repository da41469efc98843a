# supplywatch/services/observation_source.py

"""Supplier observation sources.

The real fetcher that reads supplier pages lives outside this engine;
it only has to implement :class:`ObservationSource`.  The feed source
here replays recorded observations, which is what the CLI and tests
use.
"""

import json
import logging
from collections import defaultdict, deque
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, cast

from supplywatch.models.observation import SupplierObservation
from supplywatch.models.product import Product
from supplywatch.services.ingestor import ObservationIngestor, as_utc

logger = logging.getLogger("supplywatch.observations")


class ObservationSource(Protocol):
    """Supplies the next observation for a product, or ``None``."""

    async def observe(self, product: Product) -> SupplierObservation | None: ...


def _flag(row: dict[str, Any], key: str, default: bool) -> bool:
    value = row.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def parse_observation(row: dict[str, Any]) -> SupplierObservation:
    """Build an observation from a JSON row.

    Timestamps are normalised to UTC, naive ones being read as UTC.
    Raises ``ValueError`` (or ``KeyError``) for rows that are not
    observations at all; range checks are left to the ingestor.
    """
    return SupplierObservation(
        product_id=str(row["product_id"]),
        observed_at=as_utc(datetime.fromisoformat(str(row["observed_at"]))),
        reachable=_flag(row, "reachable", True),
        in_stock=_flag(row, "in_stock", True),
        price=ObservationIngestor.coerce_price(row.get("price")),
        supplier_rating=(
            float(row["supplier_rating"])
            if row.get("supplier_rating") is not None
            else None
        ),
        stock_level=(
            int(row["stock_level"]) if row.get("stock_level") is not None else None
        ),
    )


def load_feed(filepath: Path) -> list[SupplierObservation]:
    """Read a JSON list of observations, skipping malformed rows."""
    with open(filepath, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of observations in {filepath}")

    observations: list[SupplierObservation] = []
    for idx, row in enumerate(cast(list[object], data)):
        if not isinstance(row, dict):
            logger.warning("Skipping non-object row %d in %s", idx, filepath)
            continue
        try:
            observations.append(parse_observation(cast(dict[str, Any], row)))
        except (KeyError, ValueError) as exc:
            logger.warning("Skipping malformed row %d in %s: %s", idx, filepath, exc)
    return observations


class FeedObservationSource:
    """Serve pre-recorded observations per product in timestamp order."""

    def __init__(self, observations: list[SupplierObservation]) -> None:
        self._queues: dict[str, deque[SupplierObservation]] = defaultdict(deque)
        for obs in sorted(observations, key=lambda o: o.observed_at):
            self._queues[obs.product_id].append(obs)

    @classmethod
    def from_file(cls, filepath: Path) -> "FeedObservationSource":
        return cls(load_feed(filepath))

    def pending(self, product_id: str | None = None) -> int:
        if product_id is not None:
            return len(self._queues.get(product_id, ()))
        return sum(len(q) for q in self._queues.values())

    def product_ids(self) -> list[str]:
        return sorted(pid for pid, q in self._queues.items() if q)

    async def observe(self, product: Product) -> SupplierObservation | None:
        queue = self._queues.get(product.product_id)
        if not queue:
            return None
        return queue.popleft()
