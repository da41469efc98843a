# supplywatch/services/pipeline.py

"""Per-product monitoring pipeline.

One run takes a product through Ingest -> State Machine -> Risk
Scoring -> Policy (-> Replacement Matcher).  Runs for the same product
are serialised by a per-product lock; every write is a conditional
write, and a run that loses a write race is retried once from a fresh
load.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from supplywatch.config.policy import EnginePolicy
from supplywatch.errors import (
    AccessDenied,
    ConcurrentWriteConflict,
    InvalidObservation,
    PolicyTimeout,
)
from supplywatch.models.observation import SupplierObservation
from supplywatch.models.product import Product
from supplywatch.services.ingestor import ObservationIngestor
from supplywatch.services.locks import ProductLockRegistry
from supplywatch.services.notifier import OperatorNotifier
from supplywatch.services.policy_engine import (
    AutomationPolicyEngine,
    PolicyAction,
)
from supplywatch.services.replacement_matcher import ReplacementMatcher
from supplywatch.services.risk_engine import RiskScoringEngine
from supplywatch.services.state_machine import (
    SupplierStateMachine,
    TransitionResult,
)
from supplywatch.storage.product_store import ProductStore

logger = logging.getLogger("supplywatch.pipeline")

MAX_ATTEMPTS = 2


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineOutcome:
    """Summary of one pipeline run for one product."""

    product_id: str
    observed_at: datetime | None = None
    ingested: bool = False
    duplicate: bool = False
    rejected: str = ""
    transition: TransitionResult | None = None
    risk_score: float | None = None
    action: PolicyAction | None = None
    healed: bool = False
    flagged: bool = False
    error: str = ""
    attempts: int = 0


class MonitoringPipeline:
    """Wire the engine components around the product store."""

    def __init__(
        self,
        store: ProductStore,
        matcher: ReplacementMatcher,
        policy: EnginePolicy | None = None,
        notifier: OperatorNotifier | None = None,
        locks: ProductLockRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.policy = (policy or EnginePolicy()).validate()
        self.store = store
        self.notifier = notifier or OperatorNotifier(webhook_url="")
        self.locks = locks or ProductLockRegistry()
        self.clock = clock
        self.ingestor = ObservationIngestor()
        self.state_machine = SupplierStateMachine(self.policy.monitor)
        self.risk_engine = RiskScoringEngine(self.policy.risk)
        self.policy_engine = AutomationPolicyEngine(
            matcher=matcher,
            state_machine=self.state_machine,
            risk_engine=self.risk_engine,
            notifier=self.notifier,
            policy=self.policy.monitor,
        )

    # ── Store I/O ────────────────────────────────────────

    async def _load(self, product_id: str, user_id: str | None) -> Product:
        product = await asyncio.to_thread(self.store.load, product_id)
        if user_id is not None and product.user_id != user_id:
            raise AccessDenied(product_id, user_id)
        return product

    async def _save(self, product: Product) -> Product:
        return await asyncio.to_thread(self.store.save, product)

    # ── Public entry points ──────────────────────────────

    async def process(
        self,
        product_id: str,
        observation: SupplierObservation,
        user_id: str | None = None,
    ) -> PipelineOutcome:
        """Apply one supplier observation to one product.

        Raises:
            PersistenceUnavailable: the store could not be reached; the
                observation was not recorded as processed.
            ConcurrentWriteConflict: the run lost two write races.
        """
        outcome = PipelineOutcome(product_id, observed_at=observation.observed_at)
        async with self.locks.hold(product_id):
            await self._with_retry(
                outcome, lambda: self._run_observation(outcome, observation, user_id)
            )
        return outcome

    async def reevaluate(
        self, product_id: str, user_id: str | None = None,
    ) -> PipelineOutcome:
        """Rescore a product and run a policy pass without an observation."""
        outcome = PipelineOutcome(product_id)
        async with self.locks.hold(product_id):
            await self._with_retry(
                outcome, lambda: self._run_rescore(outcome, user_id)
            )
        return outcome

    # ── Runs ─────────────────────────────────────────────

    async def _with_retry(
        self,
        outcome: PipelineOutcome,
        run: Callable[[], Awaitable[None]],
    ) -> None:
        for attempt in range(1, MAX_ATTEMPTS + 1):
            outcome.attempts = attempt
            try:
                await run()
                return
            except ConcurrentWriteConflict:
                if attempt == MAX_ATTEMPTS:
                    logger.error(
                        "Write conflict persisted for %s after %d attempts",
                        outcome.product_id,
                        attempt,
                    )
                    raise
                logger.warning(
                    "Write conflict on %s, retrying pipeline run",
                    outcome.product_id,
                )

    async def _run_observation(
        self,
        outcome: PipelineOutcome,
        observation: SupplierObservation,
        user_id: str | None,
    ) -> None:
        product = await self._load(outcome.product_id, user_id)
        transition: TransitionResult | None = outcome.transition

        if not outcome.ingested:
            if self.ingestor.is_duplicate(product, observation):
                logger.info(
                    "Observation for %s at %s already applied",
                    outcome.product_id,
                    observation.observed_at,
                )
                outcome.duplicate = True
                return
            try:
                signal = self.ingestor.normalize(product, observation)
            except InvalidObservation as exc:
                outcome.rejected = exc.reason
                return

            transition = self.state_machine.apply(product, signal)
            product.mark_processed(signal.observed_at)
            self.risk_engine.score(product, signal.observed_at)
            product = await self._save(product)
            outcome.ingested = True
            outcome.transition = transition

        outcome.risk_score = product.insight.risk_score
        await self._run_policy(outcome, product, transition)

    async def _run_rescore(
        self, outcome: PipelineOutcome, user_id: str | None,
    ) -> None:
        product = await self._load(outcome.product_id, user_id)
        self.risk_engine.score(product, self.clock())
        product = await self._save(product)
        outcome.risk_score = product.insight.risk_score
        await self._run_policy(outcome, product, None)

    async def _run_policy(
        self,
        outcome: PipelineOutcome,
        product: Product,
        transition: TransitionResult | None,
    ) -> None:
        try:
            result = await self.policy_engine.apply(
                product, self.clock(), self._save, transition,
            )
        except PolicyTimeout as exc:
            outcome.action = PolicyAction.AUTO_HEAL
            outcome.error = str(exc)
            logger.warning("%s; retrying next cycle", exc)
            return
        outcome.action = result.action
        outcome.healed = result.healed
        outcome.flagged = result.flagged
        outcome.error = result.error
        outcome.risk_score = result.product.insight.risk_score
