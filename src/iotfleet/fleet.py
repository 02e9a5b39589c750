import asyncio
import logging
import random
import time
from collections.abc import Callable

from iotfleet.bootstrap import BootstrapResult, ClientFactory, resolve_endpoints
from iotfleet.chain import ChainClientPool
from iotfleet.config import FleetConfig
from iotfleet.errors import FleetStartupError
from iotfleet.factory import NodeFactory
from iotfleet.scheduler import FleetScheduler
from iotfleet.signing import KeypairSigner, Signer
from iotfleet.submitter import TransactionSubmitter

log = logging.getLogger("iotfleet.fleet")

REPORT_INTERVAL = 60


class Fleet:
    """Bootstrap the endpoint pool and TAPoS once, then build and run every node."""

    def __init__(
        self,
        config: FleetConfig,
        *,
        client_factory: ClientFactory | None = None,
        signer: Signer | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.clients = client_factory or ChainClientPool()
        self.signer = signer or KeypairSigner()
        self.rng = rng or random.Random(config.seed)
        self.submitter = TransactionSubmitter(
            self.clients,
            config.contract,
            workers=config.submitter.workers,
            queue_size=config.submitter.queue_size,
            timeout=config.submitter.timeout,
            rolling_window=config.tapos_expiry_sec if config.rolling_expiration else None,
        )
        self.scheduler = FleetScheduler(self.submitter, period=config.period_sec, clock=clock)
        self.bootstrap: BootstrapResult | None = None
        self.started_at: float | None = None

    @property
    def tapos(self):
        return self.bootstrap.tapos if self.bootstrap else None

    @property
    def pool(self):
        return self.bootstrap.pool if self.bootstrap else None

    async def resolve(self) -> BootstrapResult:
        net, ep = self.config.network, self.config.endpoints
        log.info("Resolving endpoints for %s (%s mode, %s seeds)...", net.name, ep.mode, len(net.seeds))
        self.bootstrap = await resolve_endpoints(
            net.seeds,
            self.clients,
            chain_id=net.chain_id,
            mode=ep.mode,
            pool_max=ep.pool_max,
            tapos_window=self.config.tapos_expiry_sec,
            trust_seeds=ep.trust_seeds,
            producer_limit=ep.producer_limit,
            active_only=ep.active_only,
        )
        return self.bootstrap

    async def start(self) -> int:
        """Resolve, instantiate and schedule the fleet. Returns the number of live nodes.

        Raises FleetStartupError when the pool is empty, TAPoS could not be
        fetched, or not a single node could be built.
        """
        result = await self.resolve()
        if not result.pool:
            raise FleetStartupError(f"no usable endpoints for network {self.config.network.name}")
        if result.tapos is None:
            raise FleetStartupError("could not obtain TAPoS reference data from any seed")

        factory = NodeFactory(
            result.pool,
            self.config.credentials,
            result.tapos,
            self.signer,
            period=self.config.period_sec,
            rng=self.rng,
        )
        n = self.config.nodes
        log.info("Instantiating %s nodes...", n)
        nodes = factory.build(n, register=self.scheduler.add)
        if n and not nodes:
            raise FleetStartupError("every node failed to instantiate")

        self.submitter.start()
        self.scheduler.start()
        self.started_at = time.monotonic()
        return len(nodes)

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.submitter.stop()
        aclose = getattr(self.clients, "aclose", None)
        if aclose is not None:
            await aclose()
        log.info("fleet stopped")

    def snapshot_stats(self) -> dict:
        return {
            "network": self.config.network.name,
            "pool": list(self.pool or ()),
            "period_sec": self.config.period_sec,
            "uptime_seconds": time.monotonic() - self.started_at if self.started_at else 0,
            "scheduler": self.scheduler.snapshot_stats(),
            "submissions": self.submitter.stats.snapshot_stats(),
            "queue_size": self.submitter.queue.qsize(),
        }


async def periodic_report(fleet: Fleet, stop: asyncio.Event, interval: float = REPORT_INTERVAL):
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            s = fleet.snapshot_stats()
            log.info(
                "fires=%s submissions=%s queue=%s",
                s["scheduler"]["fires"], s["submissions"]["by_outcome"], s["queue_size"],
            )


async def run_fleet(config: FleetConfig, stop: asyncio.Event | None = None, **kwargs) -> Fleet:
    """Run until ``stop`` is set (forever if not given)."""
    stop = stop or asyncio.Event()
    fleet = Fleet(config, **kwargs)
    try:
        await fleet.start()
        await periodic_report(fleet, stop)
    finally:
        await fleet.stop()
    return fleet
