"""Fire-and-forget transaction submission.

Node timers call ``TransactionSubmitter.dispatch`` which builds the outgoing
transaction and drops a job on a bounded queue without awaiting anything. A
small pool of worker tasks drains the queue: sign with the node's bound key,
push through the node's endpoint, record the outcome. Nothing raised while
submitting ever reaches the node's timer.
"""
import asyncio
import logging
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field

import iotfleet.constants as C
from iotfleet.chain import ChainClient
from iotfleet.errors import ChainError
from iotfleet.models import ContractAction, NodeRecord, OutgoingTransaction
from iotfleet.signing import BoundSigner

log = logging.getLogger("iotfleet.submitter")


@dataclass(slots=True)
class SubmissionJob:
    node: NodeRecord
    signer: BoundSigner
    tx: OutgoingTransaction
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(slots=True)
class SubmissionRecord:
    node_id: int
    endpoint: str
    outcome: C.SubmitOutcome
    node_time: int
    tx_id: str | None = None
    detail: str | None = None
    latency: float | None = None


class SubmissionStats:
    """Running tallies of submission outcomes for logs and the control API."""

    def __init__(self, recent: int = 1000) -> None:
        self.count_by_outcome: Counter[str] = Counter()
        self.count_by_endpoint: Counter[str] = Counter()
        self.failed_by_node: Counter[int] = Counter()
        self.recent: deque[SubmissionRecord] = deque(maxlen=recent)

    def record(self, rec: SubmissionRecord) -> None:
        self.count_by_outcome[rec.outcome.value] += 1
        self.count_by_endpoint[rec.endpoint] += 1
        if rec.outcome is not C.SubmitOutcome.ACCEPTED:
            self.failed_by_node[rec.node_id] += 1
        self.recent.append(rec)

    @property
    def total(self) -> int:
        return sum(self.count_by_outcome.values())

    def snapshot_stats(self) -> dict:
        return {
            "total": self.total,
            "by_outcome": dict(self.count_by_outcome),
            "by_endpoint": dict(self.count_by_endpoint),
            "nodes_with_failures": len(self.failed_by_node),
        }


class TransactionSubmitter:
    def __init__(
        self,
        client_factory: Callable[[str], ChainClient],
        action: ContractAction | None = None,
        *,
        workers: int = C.SUBMIT_WORKERS,
        queue_size: int = C.SUBMIT_QUEUE_SIZE,
        timeout: float = C.SUBMIT_TIMEOUT,
        rolling_window: int | None = None,
        stats: SubmissionStats | None = None,
    ):
        self.client_factory = client_factory
        self.action = action or ContractAction()
        self.workers = workers
        self.timeout = timeout
        self.rolling_window = rolling_window
        self.stats = stats or SubmissionStats()
        self.queue: asyncio.Queue[SubmissionJob] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def dispatch(self, node: NodeRecord, signer: BoundSigner, node_time: int) -> bool:
        """Queue one submission for ``node``. Never blocks, never raises on a full queue."""
        tx = OutgoingTransaction.build(node, node_time, self.action, rolling_window=self.rolling_window)
        try:
            self.queue.put_nowait(SubmissionJob(node=node, signer=signer, tx=tx))
        except asyncio.QueueFull:
            log.warning("submission queue full (%s), dropping tx from node %s", self.queue.maxsize, node.id)
            self.stats.record(SubmissionRecord(node.id, node.endpoint, C.SubmitOutcome.DROPPED, node_time))
            return False
        return True

    async def submit(self, job: SubmissionJob) -> SubmissionRecord:
        node = job.node
        rec = SubmissionRecord(node.id, node.endpoint, C.SubmitOutcome.ACCEPTED, job.tx.node_time)
        try:
            signed = job.signer.sign(job.tx)
            client = self.client_factory(node.endpoint)
            res = await asyncio.wait_for(client.push_transaction(signed), timeout=self.timeout)
            rec.tx_id = res.get("transaction_id")
            log.debug("node %s tx %s accepted by %s", node.id, rec.tx_id, node.endpoint)
        except asyncio.TimeoutError:
            rec.outcome = C.SubmitOutcome.TIMEOUT
            rec.detail = f"no response in {self.timeout}s"
            log.warning("node %s submit timed out on %s", node.id, node.endpoint)
        except ChainError as e:
            # An HTTP status means the endpoint answered and refused the transaction
            rec.outcome = C.SubmitOutcome.REJECTED if e.status is not None else C.SubmitOutcome.FAILED_NET
            rec.detail = e.body or str(e)
            log.warning("node %s submit %s on %s: %s", node.id, rec.outcome, node.endpoint, e)
        except Exception as e:
            rec.outcome = C.SubmitOutcome.FAILED_NET
            rec.detail = str(e)
            log.error("node %s submit error on %s: %s: %s", node.id, node.endpoint, type(e).__name__, e)
        rec.latency = time.monotonic() - job.enqueued_at
        self.stats.record(rec)
        return rec

    async def _worker(self, n: int) -> None:
        log.debug("submit worker %s starting", n)
        while True:
            job = await self.queue.get()
            try:
                await self.submit(job)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"submit_worker_{i}") for i in range(self.workers)
        ]
        log.info("submitter started with %s workers (queue max %s)", self.workers, self.queue.maxsize)

    async def drain(self) -> None:
        await self.queue.join()

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("submitter stopped: %s", self.stats.snapshot_stats())
