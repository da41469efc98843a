# tests/test_risk_engine.py

"""Tests for the risk scoring engine."""

import math
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from supplywatch.config.policy import RiskPolicy
from supplywatch.models.product import (
    AIInsight,
    PricePoint,
    Product,
    SupplierStatus,
    TransitionEvent,
    new_product,
    replace_link,
)
from supplywatch.services.candidate_search import parse_candidate
from supplywatch.services.risk_engine import RiskScoringEngine
from supplywatch.services.state_machine import SupplierStateMachine

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
URL = "https://supplier.example/headphones"


def _product(rating: float | None = None) -> Product:
    return new_product(
        "p-1", "u-1", "Wireless Headphones", URL,
        price=Decimal("50.00"), supplier_rating=rating, created_at=NOW,
    )


def _event(
    to_status: SupplierStatus, age: timedelta, url: str = URL,
) -> TransitionEvent:
    return TransitionEvent(NOW - age, SupplierStatus.ACTIVE, to_status, url)


class TestComponents(unittest.TestCase):
    """Each risk component in isolation."""

    def setUp(self) -> None:
        self.engine = RiskScoringEngine()

    def test_no_history_no_transition_risk(self) -> None:
        """A product with no failures has T = 0."""
        self.assertEqual(self.engine.transition_component(_product(), NOW), 0.0)

    def test_recent_removal(self) -> None:
        """A removal right now saturates to 1 - e^-4."""
        product = _product()
        product.record_transition(_event(SupplierStatus.REMOVED, timedelta(0)))
        self.assertAlmostEqual(
            self.engine.transition_component(product, NOW), 1 - math.exp(-4)
        )

    def test_decay_halves_per_half_life(self) -> None:
        """An out-of-stock event one half-life old weighs 0.5."""
        product = _product()
        product.record_transition(_event(SupplierStatus.OUT_OF_STOCK, timedelta(days=7)))
        self.assertAlmostEqual(
            self.engine.transition_component(product, NOW), 1 - math.exp(-0.5)
        )

    def test_events_outside_window_ignored(self) -> None:
        """Events older than the window do not count."""
        product = _product()
        product.record_transition(_event(SupplierStatus.REMOVED, timedelta(days=31)))
        self.assertEqual(self.engine.transition_component(product, NOW), 0.0)

    def test_events_of_previous_supplier_ignored(self) -> None:
        """History of a replaced supplier does not count."""
        product = _product()
        product.record_transition(
            _event(SupplierStatus.REMOVED, timedelta(hours=1), url="https://old.example")
        )
        self.assertEqual(self.engine.transition_component(product, NOW), 0.0)

    def test_recovery_transitions_ignored(self) -> None:
        """Moves back to ACTIVE are not failures."""
        product = _product()
        product.record_transition(_event(SupplierStatus.ACTIVE, timedelta(hours=1)))
        self.assertEqual(self.engine.transition_component(product, NOW), 0.0)

    def test_volatility_needs_three_prices(self) -> None:
        """Two prices give a single delta: no volatility."""
        product = _product()
        for i, price in enumerate(("50", "40")):
            product.record_price(PricePoint(NOW - timedelta(days=i), Decimal(price), URL))
        self.assertEqual(self.engine.volatility_component(product, NOW), 0.0)

    def test_stable_prices_no_volatility(self) -> None:
        """Constant prices have zero volatility."""
        product = _product()
        for i in range(5):
            product.record_price(PricePoint(NOW - timedelta(days=i), Decimal("50"), URL))
        self.assertEqual(self.engine.volatility_component(product, NOW), 0.0)

    def test_oscillating_prices_volatile(self) -> None:
        """Prices bouncing up and down produce volatility in (0, 1]."""
        product = _product()
        for i, price in enumerate(("50", "45", "50", "45")):
            product.record_price(PricePoint(NOW - timedelta(days=4 - i), Decimal(price), URL))
        volatility = self.engine.volatility_component(product, NOW)
        self.assertGreater(volatility, 0.3)
        self.assertLessEqual(volatility, 1.0)

    def test_rating_component(self) -> None:
        """Ratings map linearly; unknown is neutral."""
        self.assertAlmostEqual(self.engine.rating_component(_product(5.0)), 0.0)
        self.assertAlmostEqual(self.engine.rating_component(_product(2.5)), 0.5)
        self.assertAlmostEqual(self.engine.rating_component(_product(None)), 0.5)

    def test_non_finite_rating_treated_as_unknown(self) -> None:
        """A NaN or infinite rating falls back to the unknown-rating risk."""
        for raw in (float("nan"), float("inf")):
            with self.subTest(rating=raw):
                self.assertAlmostEqual(self.engine.rating_component(_product(raw)), 0.5)



class TestScore(unittest.TestCase):
    """Combined score, thresholds and prediction."""

    def setUp(self) -> None:
        self.engine = RiskScoringEngine()

    def test_score_bounds(self) -> None:
        """Scores always stay within 0-100."""
        product = _product(0.0)
        for hours in range(10):
            product.record_transition(_event(SupplierStatus.REMOVED, timedelta(hours=hours)))
        insight = self.engine.score(product, NOW)
        self.assertGreaterEqual(insight.risk_score, 0.0)
        self.assertLessEqual(insight.risk_score, 100.0)

    def test_nan_rating_keeps_score_in_range(self) -> None:
        """A removed listing with a NaN rating still scores into the heal bracket."""
        product = _product(float("nan"))
        product.record_transition(_event(SupplierStatus.REMOVED, timedelta(0)))
        score = self.engine.score(product, NOW).risk_score
        self.assertFalse(math.isnan(score))
        self.assertGreaterEqual(score, 70.0)
        self.assertLessEqual(score, 100.0)


    def test_fresh_removal_reaches_heal_threshold(self) -> None:
        """A just-removed listing scores at least 70 even with a top rating."""
        product = _product(5.0)
        product.record_transition(_event(SupplierStatus.REMOVED, timedelta(0)))
        self.assertGreaterEqual(self.engine.score(product, NOW).risk_score, 70.0)

    def test_single_stockout_stays_below_heal_threshold(self) -> None:
        """One stock-out on a well-rated supplier is not heal-worthy."""
        product = _product(4.7)
        product.record_transition(_event(SupplierStatus.OUT_OF_STOCK, timedelta(0)))
        self.assertLess(self.engine.score(product, NOW).risk_score, 70.0)

    def test_score_is_deterministic(self) -> None:
        """Same history and time give the same score."""
        a, b = _product(4.0), _product(4.0)
        for p in (a, b):
            p.record_transition(_event(SupplierStatus.OUT_OF_STOCK, timedelta(days=2)))
        self.assertEqual(
            self.engine.score(a, NOW).risk_score, self.engine.score(b, NOW).risk_score
        )

    def test_score_records_previous_run(self) -> None:
        """The previous score and time are kept for trend prediction."""
        product = _product(4.0)
        product.insight = AIInsight(risk_score=42.0, last_analyzed=NOW - timedelta(days=1))
        insight = self.engine.score(product, NOW)
        self.assertEqual(insight.previous_score, 42.0)
        self.assertEqual(insight.previous_analyzed, NOW - timedelta(days=1))
        self.assertEqual(insight.last_analyzed, NOW)
        self.assertIs(product.insight, insight)

    def test_prediction_only_above_high_risk(self) -> None:
        """No prediction at or below the high-risk threshold."""
        prior = AIInsight(risk_score=60.0, last_analyzed=NOW - timedelta(days=1))
        self.assertIsNone(self.engine.predict_removal(prior, 80.0, NOW))

    def test_prediction_extrapolates_trend(self) -> None:
        """80 -> 90 over a day predicts 100 one day later."""
        prior = AIInsight(risk_score=80.0, last_analyzed=NOW - timedelta(days=1))
        predicted = self.engine.predict_removal(prior, 90.0, NOW)
        self.assertIsNotNone(predicted)
        assert predicted is not None
        self.assertAlmostEqual(
            (predicted - NOW).total_seconds(), 86400, delta=1
        )

    def test_no_prediction_on_falling_trend(self) -> None:
        """A falling score gives no removal date."""
        prior = AIInsight(risk_score=95.0, last_analyzed=NOW - timedelta(days=1))
        self.assertIsNone(self.engine.predict_removal(prior, 85.0, NOW))

    def test_prediction_cleared_when_risk_drops(self) -> None:
        """A stored prediction is cleared once the score falls back."""
        product = _product(5.0)
        product.insight = AIInsight(
            risk_score=95.0,
            predicted_removal_date=NOW + timedelta(days=2),
            last_analyzed=NOW - timedelta(days=1),
        )
        insight = self.engine.score(product, NOW)
        self.assertIsNone(insight.predicted_removal_date)

    def test_policy_thresholds_configurable(self) -> None:
        """A lower high-risk threshold enables prediction sooner."""
        engine = RiskScoringEngine(RiskPolicy(high_risk_threshold=50.0))
        prior = AIInsight(risk_score=50.0, last_analyzed=NOW - timedelta(days=1))
        self.assertIsNotNone(engine.predict_removal(prior, 60.0, NOW))

    def test_supplier_swap_clears_history(self) -> None:
        """After a supplier change, old failures stop counting."""
        product = _product(5.0)
        product.record_transition(_event(SupplierStatus.REMOVED, timedelta(hours=1)))
        product.supplier = replace_link(product.supplier, url="https://new.example/x")
        self.assertEqual(self.engine.score(product, NOW).risk_score, 0.0)

    def test_healed_link_with_unreadable_rating(self) -> None:
        """A replacement whose rating reads "nan" scores as unknown rating."""
        candidate = parse_candidate({
            "url": "https://new.example/x", "title": "Wireless Headphones",
            "price": "48.00", "rating": "nan",
        })
        assert candidate is not None
        product = _product(4.0)
        SupplierStateMachine().reset_link(product, candidate, NOW)
        score = self.engine.score(product, NOW).risk_score
        self.assertTrue(0.0 <= score <= 100.0)
        self.assertAlmostEqual(score, 5.0)



if __name__ == "__main__":
    unittest.main()
