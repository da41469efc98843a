# supplywatch/services/scheduler.py

"""Worker pool and periodic scheduling for the monitoring pipeline.

The scheduler owns the process-wide scheduling state: the job queue,
the worker tasks and the periodic loops.  It has an explicit lifecycle
(:meth:`MonitorScheduler.start` / :meth:`MonitorScheduler.shutdown`);
shutdown stops intake and lets in-flight pipeline runs finish their
current write before anything is cancelled.
"""

import asyncio
import logging
from collections import Counter, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from supplywatch.config.settings import Settings
from supplywatch.errors import (
    AccessDenied,
    ConcurrentWriteConflict,
    PersistenceUnavailable,
    ProductNotFound,
)
from supplywatch.models.observation import SupplierObservation
from supplywatch.models.product import SupplierStatus
from supplywatch.services.observation_source import ObservationSource
from supplywatch.services.pipeline import MonitoringPipeline, PipelineOutcome

logger = logging.getLogger("supplywatch.scheduler")

# Statuses that still get fresh supplier observations
OBSERVED_STATUSES = (
    SupplierStatus.ACTIVE,
    SupplierStatus.PRICE_CHANGED,
    SupplierStatus.OUT_OF_STOCK,
)


class JobKind(str, Enum):
    OBSERVE = "observe"
    REEVALUATE = "reevaluate"


@dataclass
class Job:
    """One unit of work for one product."""

    product_id: str
    kind: JobKind
    user_id: str | None = None
    observation: SupplierObservation | None = None
    attempts: int = 0


class MonitorScheduler:
    """Run pipeline jobs on a pool of asyncio workers."""

    def __init__(
        self,
        pipeline: MonitoringPipeline,
        source: ObservationSource,
        worker_count: int | None = None,
        observation_interval: float | None = None,
        rescore_interval: float | None = None,
        shutdown_grace: float | None = None,
        retry_limit: int | None = None,
        retry_delay: float | None = None,
        periodic: bool = True,
    ) -> None:
        self.pipeline = pipeline
        self.source = source
        self.worker_count = worker_count or Settings.WORKER_COUNT
        self.observation_interval = observation_interval or Settings.OBSERVATION_INTERVAL
        self.rescore_interval = rescore_interval or Settings.RESCORE_INTERVAL
        self.shutdown_grace = (
            shutdown_grace if shutdown_grace is not None else Settings.SHUTDOWN_GRACE
        )
        self.retry_limit = retry_limit or Settings.PERSISTENCE_RETRY_LIMIT
        self.retry_delay = (
            retry_delay if retry_delay is not None else Settings.PERSISTENCE_RETRY_DELAY
        )
        self.periodic = periodic

        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._queued: Counter[str] = Counter()
        self._workers: list[asyncio.Task[None]] = []
        self._busy: set[asyncio.Task[None]] = set()
        self._loops: list[asyncio.Task[None]] = []
        self._retries: set[asyncio.Task[None]] = set()
        self._running = False
        self._stopping = False
        self.outcomes: deque[PipelineOutcome] = deque(maxlen=500)
        self.failures: Counter[str] = Counter()

    # ── Lifecycle ────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running and not self._stopping

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._stopping = False
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"supplywatch-worker-{i}")
            for i in range(self.worker_count)
        ]
        if self.periodic:
            self._loops = [
                asyncio.create_task(
                    self._every(self.observation_interval, self.run_observation_cycle),
                    name="supplywatch-observe-loop",
                ),
                asyncio.create_task(
                    self._every(self.rescore_interval, self.run_rescore_cycle),
                    name="supplywatch-rescore-loop",
                ),
            ]
        logger.info("Scheduler started with %d workers", self.worker_count)

    async def shutdown(self) -> None:
        """Stop intake, let busy workers finish, then cancel the rest."""
        if not self._running:
            return
        self._stopping = True
        for task in self._loops + list(self._retries):
            task.cancel()

        idle = [w for w in self._workers if w not in self._busy]
        for task in idle:
            task.cancel()
        if self._busy:
            logger.info("Waiting for %d in-flight pipeline runs", len(self._busy))
            _, still_running = await asyncio.wait(
                set(self._busy), timeout=self.shutdown_grace
            )
            for task in still_running:
                logger.warning("Cancelling %s after shutdown grace", task.get_name())
                task.cancel()

        await asyncio.gather(
            *self._workers, *self._loops, *self._retries, return_exceptions=True
        )
        dropped = self._queue.qsize()
        if dropped:
            logger.info("Dropped %d queued jobs at shutdown", dropped)
        self._workers, self._loops = [], []
        self._retries.clear()
        self._queued.clear()
        self._queue = asyncio.Queue()
        self._running = False
        logger.info("Scheduler stopped")

    async def __aenter__(self) -> "MonitorScheduler":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    # ── Intake ───────────────────────────────────────────

    def _enqueue(self, job: Job) -> bool:
        if not self.running:
            return False
        self._queued[job.product_id] += 1
        self._queue.put_nowait(job)
        return True

    def is_queued(self, product_id: str) -> bool:
        return self._queued[product_id] > 0

    async def submit_observation(
        self, observation: SupplierObservation, user_id: str | None = None,
    ) -> bool:
        """Queue a pushed observation for its product."""
        return self._enqueue(
            Job(observation.product_id, JobKind.OBSERVE, user_id, observation)
        )

    async def force_reevaluate(self, product_id: str, user_id: str) -> bool:
        """Queue one observation cycle for a product on behalf of a user.

        Returns ``True`` when accepted.  Rejected when the scheduler is
        not running, the product is unknown or belongs to another user,
        or a job for it is already waiting.  The run itself completes
        asynchronously.
        """
        if not self.running:
            logger.info("Rejected re-evaluate for %s: scheduler not running", product_id)
            return False
        if self.is_queued(product_id):
            logger.info("Rejected re-evaluate for %s: already queued", product_id)
            return False
        try:
            product = await asyncio.to_thread(self.pipeline.store.load, product_id)
        except ProductNotFound:
            logger.info("Rejected re-evaluate for unknown product %s", product_id)
            return False
        if product.user_id != user_id:
            logger.warning(
                "Rejected re-evaluate for %s: not owned by %s", product_id, user_id
            )
            return False
        return self._enqueue(Job(product_id, JobKind.OBSERVE, user_id))

    async def run_observation_cycle(self, user_id: str | None = None) -> int:
        """Queue an observation job for every live listing."""
        ids = await asyncio.to_thread(
            self.pipeline.store.list_ids, user_id, OBSERVED_STATUSES
        )
        queued = sum(
            1 for pid in ids if self._enqueue(Job(pid, JobKind.OBSERVE, user_id))
        )
        logger.info("Observation cycle queued %d products", queued)
        return queued

    async def run_rescore_cycle(self, user_id: str | None = None) -> int:
        """Queue a rescoring and policy pass for every product."""
        ids = await asyncio.to_thread(self.pipeline.store.list_ids, user_id)
        queued = sum(
            1 for pid in ids if self._enqueue(Job(pid, JobKind.REEVALUATE, user_id))
        )
        logger.info("Rescore cycle queued %d products", queued)
        return queued

    # ── Workers ──────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        task = asyncio.current_task()
        while not self._stopping:
            job = await self._queue.get()
            if task is not None:
                self._busy.add(task)
            try:
                await self._execute(job)
            finally:
                self._queued[job.product_id] -= 1
                if self._queued[job.product_id] <= 0:
                    del self._queued[job.product_id]
                self._queue.task_done()
                if task is not None:
                    self._busy.discard(task)
        logger.debug("Worker %d exiting", index)

    async def _execute(self, job: Job) -> None:
        try:
            outcome = await self._run_job(job)
        except PersistenceUnavailable as exc:
            self.failures["persistence"] += 1
            logger.critical(
                "Persistence unavailable for %s: %s", job.product_id, exc, exc_info=True
            )
            self._schedule_retry(job)
            return
        except ConcurrentWriteConflict as exc:
            self.failures["conflict"] += 1
            logger.warning("Transient failure for %s: %s", job.product_id, exc)
            return
        except (ProductNotFound, AccessDenied) as exc:
            self.failures["rejected"] += 1
            logger.warning("Job for %s rejected: %s", job.product_id, exc)
            return
        except Exception as exc:
            self.failures["unexpected"] += 1
            logger.error("Pipeline run for %s failed", job.product_id, exc_info=True)
            await self.pipeline.notifier.pipeline_failure(job.product_id, str(exc))
            return
        if outcome is not None:
            self.outcomes.append(outcome)

    async def _run_job(self, job: Job) -> PipelineOutcome | None:
        if job.kind == JobKind.REEVALUATE:
            return await self.pipeline.reevaluate(job.product_id, job.user_id)

        observation = job.observation
        if observation is None:
            product = await asyncio.to_thread(self.pipeline.store.load, job.product_id)
            observation = await self.source.observe(product)
            if observation is None:
                # Nothing new from the supplier: refresh the score instead
                return await self.pipeline.reevaluate(job.product_id, job.user_id)
            job.observation = observation
        return await self.pipeline.process(job.product_id, observation, job.user_id)

    def _schedule_retry(self, job: Job) -> None:
        job.attempts += 1
        if job.attempts >= self.retry_limit or self._stopping:
            logger.critical(
                "Giving up on %s after %d persistence failures",
                job.product_id,
                job.attempts,
            )
            return

        async def requeue() -> None:
            await asyncio.sleep(self.retry_delay)
            self._enqueue(job)

        task = asyncio.create_task(requeue())
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _every(
        self, interval: float, cycle: Callable[[], Awaitable[int]],
    ) -> None:
        while not self._stopping:
            await asyncio.sleep(interval)
            try:
                await cycle()
            except PersistenceUnavailable:
                logger.critical("Scheduled cycle could not reach the store", exc_info=True)
