# supplywatch/services/ingestor.py

"""Observation ingestor: validate raw observations into canonical signals."""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from supplywatch.errors import InvalidObservation
from supplywatch.models.observation import Signal, SupplierObservation
from supplywatch.models.product import Product

logger = logging.getLogger("supplywatch.ingestor")


class ObservationIngestor:
    """Validate supplier observations and derive a :class:`Signal`.

    The ingestor never touches the product; it only reads the prior
    supplier state to compute deltas.
    """

    @staticmethod
    def coerce_price(raw: object) -> Decimal | None:
        """Convert a raw price value into a :class:`Decimal`.

        Returns ``None`` for a missing price.  Raises ``ValueError``
        for values that are not numbers.
        """
        if raw is None:
            return None
        if isinstance(raw, bool):
            raise ValueError(f"Not a price: {raw!r}")
        try:
            return raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation as exc:
            raise ValueError(f"Not a price: {raw!r}") from exc

    @staticmethod
    def is_duplicate(product: Product, observation: SupplierObservation) -> bool:
        """True if this ``observed_at`` was already applied to the product."""
        return product.has_processed(_as_utc(observation))

    def normalize(
        self, product: Product, observation: SupplierObservation,
    ) -> Signal:
        """Validate *observation* and build the signal against *product*.

        Raises:
            InvalidObservation: price is negative, non-finite or
                missing on a reachable listing, or the observation is
                older than the last one applied.
        """
        try:
            signal = self._build(product, observation)
        except InvalidObservation as exc:
            logger.warning(
                "Discarded observation for %s at %s: %s",
                observation.product_id,
                observation.observed_at,
                exc.reason,
            )
            raise
        logger.debug(
            "Signal for %s: delta=%s stock=%s reachable=%s",
            signal.product_id,
            signal.price_delta,
            signal.stock_transition,
            signal.reachable,
        )
        return signal

    def _build(
        self, product: Product, observation: SupplierObservation,
    ) -> Signal:
        pid = observation.product_id
        if pid != product.product_id:
            raise InvalidObservation(
                pid, f"addressed to a different product ({product.product_id})"
            )

        observed_at = _as_utc(observation)
        if (
            product.last_observed_at is not None
            and observed_at < product.last_observed_at
        ):
            raise InvalidObservation(pid, "older than the last applied observation")

        try:
            price = self.coerce_price(observation.price)
        except ValueError as exc:
            raise InvalidObservation(pid, str(exc)) from exc

        if price is not None:
            if not price.is_finite():
                raise InvalidObservation(pid, f"non-finite price {price}")
            if price < 0:
                raise InvalidObservation(pid, f"negative price {price}")
        elif observation.reachable:
            raise InvalidObservation(pid, "reachable listing without a price")

        rating = observation.supplier_rating
        if rating is not None:
            if not math.isfinite(rating):
                raise InvalidObservation(pid, f"non-finite supplier rating {rating}")
            if rating < 0:
                raise InvalidObservation(pid, f"negative supplier rating {rating}")

        previous = product.supplier.current_price
        if not observation.reachable:
            # An unreachable page carries no usable price or stock data
            price = None
        delta = price - previous if price is not None and previous is not None else None

        was_in_stock = product.supplier.in_stock
        in_stock = observation.in_stock if observation.reachable else was_in_stock

        return Signal(
            product_id=pid,
            observed_at=observed_at,
            reachable=observation.reachable,
            price=price,
            previous_price=previous,
            price_delta=delta,
            stock_transition=(was_in_stock, in_stock),
            supplier_rating=rating if observation.reachable else None,
            stock_level=observation.stock_level if observation.reachable else None,
        )


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _as_utc(observation: SupplierObservation) -> datetime:
    return as_utc(observation.observed_at)
