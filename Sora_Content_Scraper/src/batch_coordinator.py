"""
Batch Coordinator

Drives the probing loop:

    GENERATING -> DISPATCHING -> AWAITING -> RECONCILING -> (DONE | GENERATING)

Each batch draws fresh codes, probes them concurrently under a semaphore,
records rejected codes in the tried set and accepted codes in the success
ledger, and checkpoints the tried set before the next batch starts. The loop
ends on the first accepted code (or after ``max_batches`` when one is set).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

import Sora_Content_Scraper.src.logger
from Sora_Content_Scraper.src.code_generator import CodeGenerator
from Sora_Content_Scraper.src.code_ledger import CodeStore, SuccessLedger
from Sora_Content_Scraper.src.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_PER_TASK_DELAY,
    NO_RESPONSE,
    STRICT_POLICY,
    RejectionPolicy,
)

logger = logging.getLogger('SCS.Batch')


class BatchState(Enum):
    GENERATING = "generating"
    DISPATCHING = "dispatching"
    AWAITING = "awaiting"
    RECONCILING = "reconciling"
    DONE = "done"


@dataclass
class BatchOutcome:
    """Per-batch classification of probe results."""
    accepted: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    statuses: Dict[str, int] = field(default_factory=dict)


@dataclass
class BatchRunResult:
    accepted: List[str]
    batches: int
    probed: int
    tried_total: int


class BatchCoordinator:
    def __init__(
        self,
        prober,
        store: CodeStore,
        ledger: SuccessLedger,
        generator: Optional[CodeGenerator] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrency: Optional[int] = None,
        per_task_delay: float = DEFAULT_PER_TASK_DELAY,
        policy: RejectionPolicy = STRICT_POLICY,
        retry_unreachable: bool = False,
        max_batches: Optional[int] = None,
    ):
        """
        Args:
            prober: object with ``async probe(code) -> int``
            store: durable tried set (``load`` / ``save``)
            ledger: success ledger, appended to for accepted codes
            generator: code source, defaults to 6 chars over 0-9A-Z
            batch_size: codes per batch
            concurrency: max probes in flight; defaults to ``batch_size``
            per_task_delay: pause after each probe before its task completes
            policy: which statuses count as rejection
            retry_unreachable: keep NO_RESPONSE codes out of the tried set
            max_batches: stop after this many batches (None = until success)
        """
        self.prober = prober
        self.store = store
        self.ledger = ledger
        self.generator = generator or CodeGenerator()
        self.batch_size = batch_size
        self.concurrency = concurrency or batch_size
        self.per_task_delay = per_task_delay
        self.policy = policy
        self.retry_unreachable = retry_unreachable
        self.max_batches = max_batches

        self.state = BatchState.GENERATING
        self.tried: Set[str] = set()
        self.stats = {"batches": 0, "probed": 0, "accepted": 0, "rejected": 0, "deferred": 0}

    def _transition(self, state: BatchState):
        logger.debug(f"Batch {self.stats['batches']}: {self.state.value} -> {state.value}")
        self.state = state

    async def _probe_one(self, code: str, semaphore: asyncio.Semaphore) -> int:
        async with semaphore:
            logger.debug(f"Attempting code: {code}")
            status = await self.prober.probe(code)
        await asyncio.sleep(self.per_task_delay)
        return status

    def classify(self, statuses: Dict[str, int]) -> BatchOutcome:
        outcome = BatchOutcome(statuses=dict(statuses))
        for code, status in statuses.items():
            if status == NO_RESPONSE and self.retry_unreachable:
                outcome.deferred.append(code)
            elif self.policy.is_rejected(status):
                outcome.rejected.append(code)
            else:
                outcome.accepted.append(code)
        return outcome

    async def run_batch(self) -> BatchOutcome:
        """One GENERATING..RECONCILING pass. Persists the tried set before returning."""
        self._transition(BatchState.GENERATING)
        batch = sorted(self.generator.fill_batch(self.tried, self.batch_size))

        self._transition(BatchState.DISPATCHING)
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [asyncio.create_task(self._probe_one(code, semaphore)) for code in batch]

        self._transition(BatchState.AWAITING)
        results = await asyncio.gather(*tasks)

        self._transition(BatchState.RECONCILING)
        outcome = self.classify(dict(zip(batch, results)))

        for code in outcome.accepted:
            logger.info(f"Status {outcome.statuses[code]} for code {code}: not rejected, recording")
        await asyncio.gather(*(self.ledger.append(code) for code in outcome.accepted))

        self.tried.update(outcome.rejected)
        await asyncio.to_thread(self.store.save, set(self.tried))

        self.stats["batches"] += 1
        self.stats["probed"] += len(batch)
        self.stats["accepted"] += len(outcome.accepted)
        self.stats["rejected"] += len(outcome.rejected)
        self.stats["deferred"] += len(outcome.deferred)
        logger.info(
            f"Batch {self.stats['batches']}: {len(outcome.rejected)} rejected, "
            f"{len(outcome.accepted)} accepted, {len(outcome.deferred)} unreachable "
            f"(tried total: {len(self.tried)})"
        )
        return outcome

    async def run(self) -> BatchRunResult:
        self.tried = await asyncio.to_thread(self.store.load)
        await self.ledger.ensure_exists()
        logger.info(f"Starting with {len(self.tried)} tried codes; success file: {self.ledger.path}")

        accepted: List[str] = []
        while True:
            outcome = await self.run_batch()
            if outcome.accepted:
                accepted = outcome.accepted
                self._transition(BatchState.DONE)
                logger.info(f"Found {len(accepted)} non-rejected code(s). Stopping loop.")
                break
            if self.max_batches is not None and self.stats["batches"] >= self.max_batches:
                logger.info(f"Reached max batches ({self.max_batches}) without an accepted code")
                self._transition(BatchState.DONE)
                break

        return BatchRunResult(
            accepted=accepted,
            batches=self.stats["batches"],
            probed=self.stats["probed"],
            tried_total=len(self.tried),
        )
