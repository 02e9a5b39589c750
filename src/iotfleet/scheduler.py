"""Per-node timers.

Each node runs as its own asyncio task on the shared event loop. A node
starts PENDING and sleeps its random start delay. Its first fire is the
PENDING -> STEADY transition, which arms the fixed period anchored at that
instant. After that it fires every ``period`` seconds until the process exits.
Every fire only bumps the node's counter and hands a job to the submitter, so
a fire never waits on the network.
"""
import asyncio
import logging
import time
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable

import iotfleet.constants as C
from iotfleet.factory import BuiltNode
from iotfleet.models import NodeRecord
from iotfleet.signing import BoundSigner
from iotfleet.submitter import TransactionSubmitter

log = logging.getLogger("iotfleet.scheduler")

Sleep = Callable[[float], Awaitable[None]]


class NodeRunner:
    def __init__(
        self,
        node: NodeRecord,
        signer: BoundSigner,
        submitter: TransactionSubmitter,
        *,
        period: float = C.DEFAULT_PERIOD_SEC,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.node = node
        self.signer = signer
        self.submitter = submitter
        self.period = period
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep
        self.anchor: float | None = None
        self.last_remaining: int | None = None

    def _now_mono(self) -> float:
        if self._monotonic is None:
            self._monotonic = asyncio.get_running_loop().time
        return self._monotonic()

    def _arm_interval(self) -> None:
        """The one-time PENDING -> STEADY side effect: start the fixed cadence from now."""
        if self.node.transition():
            self.anchor = self._now_mono()
            log.debug("node %s steady, period %ss", self.node.id, self.period)

    def fire(self) -> None:
        node = self.node
        if node.state is C.NodeState.PENDING:
            self._arm_interval()
        node.tx_count += 1

        now_sec = int(self._clock())
        # Observational only: an expired snapshot still gets submitted
        self.last_remaining = node.tapos.remaining(now_sec)
        log.debug(
            "running node %s (%s) tx #%s at %s, tapos remaining %ss",
            node.id, node.credential.name, node.tx_count, now_sec, self.last_remaining,
        )
        self.submitter.dispatch(node, self.signer, now_sec)

    async def run(self) -> None:
        log.debug("node %s starting in %.3f seconds", self.node.id, self.node.start_delay)
        await self._sleep(self.node.start_delay)
        slot = 0
        while True:
            try:
                self.fire()
            except Exception:
                log.exception("node %s fire failed; keeping schedule", self.node.id)
            if self.anchor is None:
                self.anchor = self._now_mono()

            # Fires sit on a fixed grid anchored at the first fire, so late wakeups don't drift
            slot += 1
            now = self._now_mono()
            next_at = self.anchor + slot * self.period
            if next_at <= now:
                late = slot
                slot = int((now - self.anchor) // self.period) + 1
                next_at = self.anchor + slot * self.period
                log.warning("node %s overran %s period(s), skipping to slot %s", self.node.id, slot - late, slot)
            await self._sleep(max(0.0, next_at - now))


class FleetScheduler:
    """Owns one runner task per node. There is no per-node stop."""

    def __init__(
        self,
        submitter: TransactionSubmitter,
        *,
        period: float = C.DEFAULT_PERIOD_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self.submitter = submitter
        self.period = period
        self.clock = clock
        self.runners: list[NodeRunner] = []
        self._tasks: list[asyncio.Task] = []

    def add(self, built: BuiltNode) -> NodeRunner:
        runner = NodeRunner(built.record, built.signer, self.submitter, period=self.period, clock=self.clock)
        self.runners.append(runner)
        return runner

    def add_all(self, nodes: Iterable[BuiltNode]) -> None:
        for b in nodes:
            self.add(b)

    @property
    def nodes(self) -> list[NodeRecord]:
        return [r.node for r in self.runners]

    def start(self) -> None:
        for r in self.runners[len(self._tasks):]:
            self._tasks.append(asyncio.create_task(r.run(), name=f"node_{r.node.id}"))
        log.info("scheduled %s nodes, period %ss", len(self._tasks), self.period)

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def snapshot_stats(self) -> dict:
        by_state = Counter(r.node.state.value for r in self.runners)
        return {
            "nodes": len(self.runners),
            "by_state": dict(by_state),
            "fires": sum(r.node.tx_count for r in self.runners),
        }
