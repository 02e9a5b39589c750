import logging
import math
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

import iotfleet.constants as C
from iotfleet.errors import CredentialError, FleetStartupError
from iotfleet.models import Credential, EndpointPool, NodeRecord, TaposSnapshot
from iotfleet.signing import BoundSigner, Signer

log = logging.getLogger("iotfleet.factory")


@dataclass(slots=True)
class BuiltNode:
    record: NodeRecord
    signer: BoundSigner


class NodeFactory:
    """Materialize virtual nodes bound to random endpoints and credentials.

    Endpoint and credential are drawn independently and with replacement, so
    one endpoint or one on-chain account may back many nodes. ``rng`` is any
    ``random.Random``; pass a seeded one for reproducible fleets.
    """

    def __init__(
        self,
        pool: EndpointPool,
        credentials: Sequence[Credential],
        tapos: TaposSnapshot,
        signer: Signer,
        *,
        period: float = C.DEFAULT_PERIOD_SEC,
        rng: random.Random | None = None,
    ):
        if not pool:
            raise FleetStartupError("endpoint pool is empty, no nodes can be instantiated")
        if not credentials:
            raise FleetStartupError("no credentials configured")
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.pool = pool
        self.credentials = tuple(credentials)
        self.tapos = tapos
        self.signer = signer
        self.period = period
        self.rng = rng or random.Random()
        self._next_id = 0

    def _unique_id(self) -> str:
        return self.rng.getrandbits(128).to_bytes(16, "big").hex()

    def _start_delay(self) -> float:
        delay = self.rng.random() * self.period
        # random() < 1 but the product can round up to period
        return min(delay, math.nextafter(self.period, 0.0))

    def instantiate(self) -> BuiltNode | None:
        node_id = self._next_id
        self._next_id += 1

        endpoint = self.rng.choice(self.pool.endpoints)
        credential = self.rng.choice(self.credentials)
        unique_id = self._unique_id()
        delay = self._start_delay()
        try:
            bound = self.signer.bind(credential)
        except CredentialError as e:
            log.error("node %s not instantiated: credential %s rejected: %s", node_id, credential, e)
            return None

        record = NodeRecord(
            id=node_id,
            unique_id=unique_id,
            endpoint=endpoint,
            credential=credential,
            tapos=self.tapos,
            start_delay=delay,
        )
        log.debug("instantiate node %s, starting in: %.3f seconds. %s", node_id, delay, record.summary())
        return BuiltNode(record=record, signer=bound)

    def build(self, n: int, register: Callable[[BuiltNode], object] | None = None) -> list[BuiltNode]:
        """Instantiate n nodes, handing each one to ``register`` (normally the scheduler)."""
        nodes = [b for b in (self.instantiate() for _ in range(n)) if b is not None]
        if register is not None:
            for b in nodes:
                register(b)
        if len(nodes) < n:
            log.warning("instantiated %s of %s requested nodes", len(nodes), n)
        else:
            log.info("instantiated %s nodes", len(nodes))
        return nodes
