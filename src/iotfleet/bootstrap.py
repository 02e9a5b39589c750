"""Endpoint pool construction.

Walk the configured seeds in order. The first seed that answers the TAPoS
queries provides the run's one snapshot. Depending on the mode each seed is
either admitted itself (direct) or used to discover producer API endpoints,
each validated against the expected chain id (discovery). Failures are per
candidate: log, skip, carry on.
"""
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import iotfleet.constants as C
from iotfleet.chain import ChainClient, normalize_endpoint
from iotfleet.errors import ChainError
from iotfleet.models import EndpointPool, TaposSnapshot
from iotfleet.tapos import fetch_tapos

log = logging.getLogger("iotfleet.bootstrap")

ClientFactory = Callable[[str], ChainClient]


@dataclass(frozen=True, slots=True)
class BootstrapResult:
    pool: EndpointPool
    tapos: TaposSnapshot | None

    @property
    def usable(self) -> bool:
        return bool(self.pool) and self.tapos is not None


def descriptor_endpoints(doc: dict) -> list[str]:
    """API endpoints advertised in a producer's bp.json, in document order."""
    found: list[str] = []
    nodes = doc.get("nodes")
    if not isinstance(nodes, list):
        return found
    for node in nodes:
        if not isinstance(node, dict):
            continue
        for key in ("api_endpoint", "ssl_endpoint"):
            url = node.get(key)
            if isinstance(url, str) and url.strip():
                url = normalize_endpoint(url)
                if url not in found:
                    found.append(url)
    return found


class BootstrapResolver:
    def __init__(
        self,
        client_factory: ClientFactory,
        *,
        chain_id: str | None,
        mode: C.EndpointMode = C.EndpointMode.DIRECT,
        pool_max: int = C.DEFAULT_POOL_MAX,
        tapos_window: int = C.DEFAULT_TAPOS_EXPIRY_S,
        trust_seeds: bool = True,
        producer_limit: int = C.DEFAULT_PRODUCER_LIMIT,
        active_only: bool = False,
    ):
        self.client_factory = client_factory
        self.chain_id = chain_id
        self.mode = C.EndpointMode(mode)
        self.pool_max = pool_max
        self.tapos_window = tapos_window
        self.trust_seeds = trust_seeds
        self.producer_limit = producer_limit
        self.active_only = active_only

        self._pool: list[str] = []
        self._tapos: TaposSnapshot | None = None

    @property
    def full(self) -> bool:
        return len(self._pool) >= self.pool_max

    def _admit(self, endpoint: str) -> None:
        if endpoint in self._pool or self.full:
            return
        self._pool.append(endpoint)
        log.info("pool[%s] = %s", len(self._pool) - 1, endpoint)

    async def _try_tapos(self, client: ChainClient) -> bool:
        try:
            self._tapos = await fetch_tapos(client, window_sec=self.tapos_window, expected_chain_id=self.chain_id)
        except ChainError as e:
            log.warning("TAPoS unavailable from %s: %s", client.endpoint, e)
            return False
        if self.chain_id is None:
            self.chain_id = self._tapos.chain_id
        return True

    async def _identity_matches(self, endpoint: str) -> bool:
        try:
            client = self.client_factory(endpoint)
            actual = await client.get_chain_id()
        except ChainError as e:
            log.warning("skip %s: %s", endpoint, e)
            return False
        if self.chain_id is not None and actual != self.chain_id:
            log.warning("skip %s: chain_id %s does not match %s", endpoint, actual, self.chain_id)
            return False
        return True

    async def _discover(self, seed: ChainClient) -> None:
        try:
            producers = await seed.get_producers(limit=self.producer_limit)
        except ChainError as e:
            log.warning("no producer directory from %s: %s", seed.endpoint, e)
            return
        log.info("%s listed %s producers", seed.endpoint, len(producers))

        for bp in producers:
            if self.full:
                return
            owner = bp.get("owner", "?")
            url = bp.get("url")
            if not isinstance(url, str) or not url.strip():
                log.debug("producer %s has no url", owner)
                continue
            if self.active_only and not bp.get("is_active"):
                log.debug("producer %s inactive", owner)
                continue
            try:
                doc = await seed.fetch_descriptor(url)
            except ChainError as e:
                log.warning("skip producer %s: %s", owner, e)
                continue

            candidates = descriptor_endpoints(doc)
            if not candidates:
                log.debug("producer %s advertises no api endpoints", owner)
            for candidate in candidates:
                if self.full:
                    return
                if candidate in self._pool:
                    continue
                if await self._identity_matches(candidate):
                    self._admit(candidate)

    async def resolve(self, seeds: Sequence[str]) -> BootstrapResult:
        for raw in seeds:
            if self.full:
                break
            endpoint = normalize_endpoint(raw)
            try:
                seed = self.client_factory(endpoint)
            except ChainError as e:
                log.warning("skip seed %s: %s", endpoint, e)
                continue

            queried = self._tapos is None
            got_tapos_here = queried and await self._try_tapos(seed)

            if self.mode is C.EndpointMode.DIRECT:
                # A seed that just failed its TAPoS queries is down; trust only skips the chain id check
                if queried and not got_tapos_here:
                    log.warning("skip seed %s: its TAPoS queries failed", endpoint)
                elif got_tapos_here or self.trust_seeds or await self._identity_matches(endpoint):
                    self._admit(endpoint)
            else:
                await self._discover(seed)

        pool = EndpointPool(chain_id=self.chain_id or "", endpoints=tuple(self._pool))
        log.info("endpoint pool: %s of max %s (%s mode)", len(pool), self.pool_max, self.mode)
        if self._tapos is None:
            log.error("no seed produced TAPoS reference data")
        return BootstrapResult(pool=pool, tapos=self._tapos)


async def resolve_endpoints(seeds: Sequence[str], client_factory: ClientFactory, **kwargs) -> BootstrapResult:
    return await BootstrapResolver(client_factory, **kwargs).resolve(seeds)
