# supplywatch/services/risk_engine.py

"""Risk scoring engine: 0-100 estimate of imminent listing failure.

The score is ``100 * (wt * T + wv * V + wr * R)`` where the weights
come from :class:`~supplywatch.config.policy.RiskWeights` and:

- ``T`` (transitions): every move into ``OUT_OF_STOCK`` or ``REMOVED``
  inside the trailing window contributes its event weight, halved every
  ``decay_half_life_days``.  The sum ``S`` is saturated as
  ``1 - exp(-S)``.
- ``V`` (volatility): population standard deviation of consecutive
  price deltas, relative to the mean observed price, divided by
  ``volatility_saturation`` and capped at 1.
- ``R`` (rating): ``1 - rating / max_rating``; unknown ratings count
  as ``unknown_rating_risk``.

Only history belonging to the current supplier url is considered, so a
healed product starts with a clean slate.
"""

import logging
import math
import statistics
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal

from supplywatch.config.policy import RiskPolicy
from supplywatch.models.product import AIInsight, Product, SupplierStatus

logger = logging.getLogger("supplywatch.risk")

_FAILURE_STATES = (SupplierStatus.OUT_OF_STOCK, SupplierStatus.REMOVED)


@dataclass(frozen=True)
class RiskBreakdown:
    """Component values behind one risk score."""

    transition: float
    volatility: float
    rating: float
    score: float


class RiskScoringEngine:
    """Compute and store ``AIInsight`` for a product."""

    def __init__(self, policy: RiskPolicy | None = None) -> None:
        self.policy = policy or RiskPolicy()
        self.policy.validate()

    # ── Components ───────────────────────────────────────

    def transition_component(self, product: Product, now: datetime) -> float:
        window = timedelta(days=self.policy.window_days)
        half_life = self.policy.decay_half_life_days
        url = product.supplier.url
        total = 0.0
        for event in product.transitions:
            if event.supplier_url != url or event.to_status not in _FAILURE_STATES:
                continue
            age = now - event.at
            if age < timedelta(0) or age > window:
                continue
            weight = (
                self.policy.removed_event_weight
                if event.to_status == SupplierStatus.REMOVED
                else self.policy.out_of_stock_event_weight
            )
            age_days = age.total_seconds() / 86400
            total += weight * 0.5 ** (age_days / half_life)
        return 1.0 - math.exp(-total)

    def volatility_component(self, product: Product, now: datetime) -> float:
        window_start = now - timedelta(days=self.policy.window_days)
        url = product.supplier.url
        prices: list[Decimal] = [
            p.price
            for p in sorted(product.price_points, key=lambda p: p.at)
            if p.supplier_url == url and window_start <= p.at <= now
        ]
        if len(prices) < 3:
            return 0.0
        deltas = [float(b - a) for a, b in zip(prices, prices[1:])]
        reference = float(sum(prices)) / len(prices)
        if reference <= 0:
            return 0.0
        relative = statistics.pstdev(deltas) / reference
        return min(1.0, relative / self.policy.volatility_saturation)

    def rating_component(self, product: Product) -> float:
        rating = product.supplier.supplier_rating
        if rating is None or not math.isfinite(rating):
            return self.policy.unknown_rating_risk
        normalised = min(max(rating / self.policy.max_rating, 0.0), 1.0)
        return 1.0 - normalised

    def breakdown(self, product: Product, now: datetime) -> RiskBreakdown:
        w = self.policy.weights
        t = self.transition_component(product, now)
        v = self.volatility_component(product, now)
        r = self.rating_component(product)
        raw = 100.0 * (
            w.transition_weight * t
            + w.volatility_weight * v
            + w.rating_weight * r
        )
        score = round(min(max(raw, 0.0), 100.0), 2)
        return RiskBreakdown(t, v, r, score)

    # ── Scoring run ──────────────────────────────────────

    def predict_removal(
        self,
        insight: AIInsight,
        score: float,
        now: datetime,
    ) -> datetime | None:
        """Extrapolate the date the score trend reaches 100.

        Only above the high-risk threshold and only on a rising trend
        between the previous run and this one.
        """
        if score <= self.policy.high_risk_threshold:
            return None
        prev_at = insight.last_analyzed
        if prev_at is None or now <= prev_at:
            return None
        rise = score - insight.risk_score
        if rise <= 0:
            return None
        slope = rise / (now - prev_at).total_seconds()
        return now + timedelta(seconds=(100.0 - score) / slope)

    def score(self, product: Product, now: datetime) -> AIInsight:
        """Recompute the product's risk insight and store it."""
        parts = self.breakdown(product, now)
        previous = product.insight
        predicted = self.predict_removal(previous, parts.score, now)
        product.insight = replace(
            previous,
            risk_score=parts.score,
            predicted_removal_date=predicted,
            last_analyzed=now,
            previous_score=previous.risk_score,
            previous_analyzed=previous.last_analyzed,
        )
        logger.info(
            "Risk for %s: %.2f (T=%.3f V=%.3f R=%.3f)%s",
            product.product_id,
            parts.score,
            parts.transition,
            parts.volatility,
            parts.rating,
            f" predicted removal {predicted.isoformat()}" if predicted else "",
        )
        return product.insight
