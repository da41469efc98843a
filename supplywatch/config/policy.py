# supplywatch/config/policy.py

"""Policy thresholds and weights for scoring, automation and matching.

The numeric defaults (two unreachable observations, heal at risk 70,
predict removal above 80, accept matches at 0.6) are domain defaults,
not fixed constants.  They are read from :class:`Settings` by
:func:`load_policy` and may be overridden per deployment.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal

from supplywatch.config.settings import Settings
from supplywatch.errors import ConfigurationError


@dataclass(frozen=True)
class RiskWeights:
    """Relative weight of each risk component; must sum to 1.0."""

    transition_weight: float = 0.75
    volatility_weight: float = 0.15
    rating_weight: float = 0.10

    def validate(self) -> None:
        weights = (
            self.transition_weight,
            self.volatility_weight,
            self.rating_weight,
        )
        if any(w < 0 for w in weights):
            raise ConfigurationError(f"Negative risk weight in {weights}")
        if not math.isclose(sum(weights), 1.0, abs_tol=1e-9):
            raise ConfigurationError(
                f"Risk weights must sum to 1.0, got {sum(weights):.6f}"
            )


@dataclass(frozen=True)
class RiskPolicy:
    """Parameters of the risk scoring formula."""

    weights: RiskWeights = field(default_factory=RiskWeights)
    window_days: int = 30
    decay_half_life_days: float = 7.0
    removed_event_weight: float = 4.0
    out_of_stock_event_weight: float = 1.0
    volatility_saturation: float = 0.25  # relative std-dev scoring 1.0
    unknown_rating_risk: float = 0.5
    max_rating: float = 5.0
    high_risk_threshold: float = 80.0
    baseline_score: float = 50.0

    def validate(self) -> None:
        self.weights.validate()
        if self.window_days <= 0 or self.decay_half_life_days <= 0:
            raise ConfigurationError("Risk window and half-life must be positive")
        if not 0 <= self.high_risk_threshold <= 100:
            raise ConfigurationError("high_risk_threshold must be in [0, 100]")
        if self.volatility_saturation <= 0 or self.max_rating <= 0:
            raise ConfigurationError("Saturation and max rating must be positive")


@dataclass(frozen=True)
class MonitorPolicy:
    """State machine and automation thresholds."""

    unreachable_threshold: int = 2
    price_tolerance: Decimal = Decimal("0.01")
    heal_risk_threshold: float = 70.0
    policy_timeout: float = 30.0
    heal_lease: float = 120.0
    auto_heal_enabled: bool = True
    price_alert_variance_pct: float = 10.0

    def validate(self) -> None:
        if self.unreachable_threshold < 1:
            raise ConfigurationError("unreachable_threshold must be >= 1")
        if self.price_tolerance < 0:
            raise ConfigurationError("price_tolerance must be >= 0")
        if not 0 <= self.heal_risk_threshold <= 100:
            raise ConfigurationError("heal_risk_threshold must be in [0, 100]")
        if self.policy_timeout <= 0:
            raise ConfigurationError("policy_timeout must be positive")


@dataclass(frozen=True)
class MatchPolicy:
    """Replacement matching thresholds."""

    acceptance_threshold: float = 0.6
    text_weight: float = 0.4
    image_weight: float = 0.6
    hash_size: int = 8
    min_candidate_rating: float = 4.5
    max_price_variance_pct: float = 10.0

    def validate(self) -> None:
        if not 0 <= self.acceptance_threshold <= 1:
            raise ConfigurationError("acceptance_threshold must be in [0, 1]")
        if not math.isclose(self.text_weight + self.image_weight, 1.0, abs_tol=1e-9):
            raise ConfigurationError("Match text/image weights must sum to 1.0")


@dataclass(frozen=True)
class EnginePolicy:
    """Bundle of every policy section handed to the engine."""

    risk: RiskPolicy = field(default_factory=RiskPolicy)
    monitor: MonitorPolicy = field(default_factory=MonitorPolicy)
    match: MatchPolicy = field(default_factory=MatchPolicy)

    def validate(self) -> "EnginePolicy":
        self.risk.validate()
        self.monitor.validate()
        self.match.validate()
        return self


def load_policy() -> EnginePolicy:
    """Build and validate the engine policy from :class:`Settings`."""
    return EnginePolicy(
        risk=RiskPolicy(
            weights=RiskWeights(
                transition_weight=Settings.TRANSITION_WEIGHT,
                volatility_weight=Settings.VOLATILITY_WEIGHT,
                rating_weight=Settings.RATING_WEIGHT,
            ),
            window_days=Settings.RISK_WINDOW_DAYS,
            decay_half_life_days=Settings.DECAY_HALF_LIFE_DAYS,
            high_risk_threshold=Settings.HIGH_RISK_THRESHOLD,
            baseline_score=Settings.BASELINE_RISK_SCORE,
        ),
        monitor=MonitorPolicy(
            unreachable_threshold=Settings.UNREACHABLE_THRESHOLD,
            price_tolerance=Settings.PRICE_TOLERANCE,
            heal_risk_threshold=Settings.HEAL_RISK_THRESHOLD,
            policy_timeout=Settings.POLICY_TIMEOUT,
            heal_lease=Settings.HEAL_LEASE,
            auto_heal_enabled=Settings.AUTO_HEAL_ENABLED,
            price_alert_variance_pct=Settings.PRICE_ALERT_VARIANCE_PCT,
        ),
        match=MatchPolicy(
            acceptance_threshold=Settings.MATCH_THRESHOLD,
            text_weight=Settings.MATCH_TEXT_WEIGHT,
            image_weight=Settings.MATCH_IMAGE_WEIGHT,
            hash_size=Settings.IMAGE_HASH_SIZE,
            min_candidate_rating=Settings.MIN_CANDIDATE_RATING,
            max_price_variance_pct=Settings.MAX_CANDIDATE_PRICE_VARIANCE_PCT,
        ),
    ).validate()
