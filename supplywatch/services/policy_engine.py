# supplywatch/services/policy_engine.py

"""Automation policy engine.

Decisions are a pure lookup on ``(status, risk bracket, heal pending)``
in :data:`DECISION_TABLE`, which lists every combination explicitly.
Only the ``AUTO_HEAL`` action has side effects: it takes a persisted
heal lease, asks the replacement matcher for a substitute under the
policy timeout, and records the outcome.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from supplywatch.config.policy import MonitorPolicy
from supplywatch.errors import NoSuitableReplacement, PolicyTimeout
from supplywatch.models.candidate import MatchResult
from supplywatch.models.product import (
    AutomationAction,
    AutomationLogEntry,
    Product,
    SupplierStatus,
)
from supplywatch.services.notifier import OperatorNotifier
from supplywatch.services.replacement_matcher import ReplacementMatcher
from supplywatch.services.risk_engine import RiskScoringEngine
from supplywatch.services.state_machine import (
    SupplierStateMachine,
    TransitionResult,
    describe_price_change,
)

logger = logging.getLogger("supplywatch.policy")

SaveFn = Callable[[Product], Awaitable[Product]]


class RiskBracket(str, Enum):
    BELOW_HEAL = "BELOW_HEAL"
    AT_OR_ABOVE_HEAL = "AT_OR_ABOVE_HEAL"


class PolicyAction(str, Enum):
    NONE = "NONE"                   # healthy listing
    ACCEPT_PRICE = "ACCEPT_PRICE"   # new price already applied by the state machine
    MONITOR = "MONITOR"             # degraded but below the heal threshold
    AUTO_HEAL = "AUTO_HEAL"         # look for a replacement supplier
    SKIP_PENDING = "SKIP_PENDING"   # a heal attempt is already in flight


_S = SupplierStatus
_B = RiskBracket
_A = PolicyAction

DECISION_TABLE: dict[tuple[SupplierStatus, RiskBracket, bool], PolicyAction] = {
    (_S.ACTIVE, _B.BELOW_HEAL, False): _A.NONE,
    (_S.ACTIVE, _B.BELOW_HEAL, True): _A.NONE,
    (_S.ACTIVE, _B.AT_OR_ABOVE_HEAL, False): _A.NONE,
    (_S.ACTIVE, _B.AT_OR_ABOVE_HEAL, True): _A.NONE,
    (_S.PRICE_CHANGED, _B.BELOW_HEAL, False): _A.ACCEPT_PRICE,
    (_S.PRICE_CHANGED, _B.BELOW_HEAL, True): _A.ACCEPT_PRICE,
    (_S.PRICE_CHANGED, _B.AT_OR_ABOVE_HEAL, False): _A.ACCEPT_PRICE,
    (_S.PRICE_CHANGED, _B.AT_OR_ABOVE_HEAL, True): _A.ACCEPT_PRICE,
    (_S.OUT_OF_STOCK, _B.BELOW_HEAL, False): _A.MONITOR,
    (_S.OUT_OF_STOCK, _B.BELOW_HEAL, True): _A.MONITOR,
    (_S.OUT_OF_STOCK, _B.AT_OR_ABOVE_HEAL, False): _A.AUTO_HEAL,
    (_S.OUT_OF_STOCK, _B.AT_OR_ABOVE_HEAL, True): _A.SKIP_PENDING,
    (_S.REMOVED, _B.BELOW_HEAL, False): _A.MONITOR,
    (_S.REMOVED, _B.BELOW_HEAL, True): _A.SKIP_PENDING,
    (_S.REMOVED, _B.AT_OR_ABOVE_HEAL, False): _A.AUTO_HEAL,
    (_S.REMOVED, _B.AT_OR_ABOVE_HEAL, True): _A.SKIP_PENDING,
}


@dataclass
class PolicyOutcome:
    """What the policy engine decided and did for one product."""

    action: PolicyAction
    product: Product
    match: MatchResult | None = None
    error: str = ""
    flagged: bool = False

    @property
    def healed(self) -> bool:
        return self.match is not None


class AutomationPolicyEngine:
    """Decide and carry out automated remediation for a product."""

    def __init__(
        self,
        matcher: ReplacementMatcher,
        state_machine: SupplierStateMachine,
        risk_engine: RiskScoringEngine,
        notifier: OperatorNotifier | None = None,
        policy: MonitorPolicy | None = None,
    ) -> None:
        self.matcher = matcher
        self.state_machine = state_machine
        self.risk_engine = risk_engine
        self.notifier = notifier or OperatorNotifier(webhook_url="")
        self.policy = policy or MonitorPolicy()

    def bracket(self, risk_score: float) -> RiskBracket:
        if risk_score >= self.policy.heal_risk_threshold:
            return RiskBracket.AT_OR_ABOVE_HEAL
        return RiskBracket.BELOW_HEAL

    def decide(self, product: Product, now: datetime) -> PolicyAction:
        """Pure decision from the product's persisted state."""
        pending = product.heal_in_flight(now, self.policy.heal_lease)
        key = (product.status, self.bracket(product.insight.risk_score), pending)
        return DECISION_TABLE[key]

    async def apply(
        self,
        product: Product,
        now: datetime,
        save: SaveFn,
        transition: TransitionResult | None = None,
    ) -> PolicyOutcome:
        """Run the decided action; *save* performs a conditional write."""
        action = self.decide(product, now)
        logger.debug(
            "Policy for %s: status=%s risk=%.2f -> %s",
            product.product_id,
            product.status.value,
            product.insight.risk_score,
            action.value,
        )

        if action == PolicyAction.ACCEPT_PRICE and transition is not None:
            await self._check_price_variance(product, transition)
        if action != PolicyAction.AUTO_HEAL:
            return PolicyOutcome(action, product)

        if not self.policy.auto_heal_enabled:
            return await self._flag(
                product, save, action, "auto-heal disabled; replacement needed",
            )
        return await self._heal(product, now, save)

    # ── Actions ──────────────────────────────────────────

    async def _heal(
        self, product: Product, now: datetime, save: SaveFn,
    ) -> PolicyOutcome:
        product.heal_pending = True
        product.heal_started_at = now
        product = await save(product)
        logger.info("Auto-heal started for %s", product.product_id)

        timeout = self.policy.policy_timeout
        try:
            match = await asyncio.wait_for(
                self.matcher.find_replacement(product), timeout
            )
        except asyncio.TimeoutError:
            self._release(product)
            await save(product)
            logger.warning(
                "Auto-heal for %s timed out after %.1fs",
                product.product_id,
                timeout,
            )
            raise PolicyTimeout(product.product_id, timeout) from None
        except NoSuitableReplacement as exc:
            self._release(product)
            return await self._flag(
                product, save, PolicyAction.AUTO_HEAL, exc.reason,
            )

        old_url = product.supplier.url
        self.state_machine.reset_link(product, match.candidate, now)
        product.automation_log.append(
            AutomationLogEntry(
                action=AutomationAction.AUTO_HEAL,
                timestamp=now,
                old_value=old_url,
                new_value=match.candidate.url,
                details=(
                    f"Switched to replacement supplier, "
                    f"match confidence {match.score:.2f}"
                ),
            )
        )
        product.insight = replace(
            product.insight, image_match_confidence=match.image_score,
        )
        self._release(product)
        product.clear_review()
        self.risk_engine.score(product, now)
        product = await save(product)
        logger.info(
            "Auto-heal succeeded for %s: %s -> %s",
            product.product_id,
            old_url,
            match.candidate.url,
        )
        await self.notifier.heal_succeeded(
            product.product_id, old_url, match.candidate.url, match.score,
        )
        return PolicyOutcome(PolicyAction.AUTO_HEAL, product, match=match)

    async def _flag(
        self,
        product: Product,
        save: SaveFn,
        action: PolicyAction,
        reason: str,
    ) -> PolicyOutcome:
        product.flag_for_review(reason)
        product = await save(product)
        await self.notifier.review_required(product.product_id, reason)
        return PolicyOutcome(action, product, error=reason, flagged=True)

    async def _check_price_variance(
        self, product: Product, transition: TransitionResult,
    ) -> None:
        threshold = self.policy.price_alert_variance_pct
        for entry in transition.log_entries:
            if entry.action != AutomationAction.PRICE_UPDATE:
                continue
            if entry.old_value is None or entry.new_value is None:
                continue
            _, pct = describe_price_change(
                Decimal(entry.old_value), Decimal(entry.new_value)
            )
            if pct is not None and abs(pct) > threshold:
                await self.notifier.price_variance(
                    product.product_id,
                    entry.old_value,
                    entry.new_value,
                    pct,
                    threshold,
                )

    @staticmethod
    def _release(product: Product) -> None:
        product.heal_pending = False
        product.heal_started_at = None
