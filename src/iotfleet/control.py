"""Out-of-band administrative actions against the stress-test contract.

These are not part of a node's life: an operator resets the contract's
simulation state before a run and reads the aggregated results after.
"""
import logging
import time
from collections import Counter
from collections.abc import Callable

from iotfleet.chain import ChainClient
from iotfleet.config import ControlConfig
from iotfleet.errors import ConfigError
from iotfleet.models import ContractAction, Credential, expiration_after
from iotfleet.signing import BoundSigner, Signer
from iotfleet.tapos import fetch_tapos

log = logging.getLogger("iotfleet.control")

ADMIN_EXPIRY_S = 60


class ControlClient:
    def __init__(
        self,
        client: ChainClient,
        signer: BoundSigner,
        contract: ContractAction,
        *,
        reset_action: str = "reset",
        results_table: str = "nodes",
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.signer = signer
        self.contract = contract
        self.reset_action = reset_action
        self.results_table = results_table
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        control: ControlConfig,
        contract: ContractAction,
        credentials: tuple[Credential, ...],
        signer: Signer,
        client_factory: Callable[[str], ChainClient],
        default_endpoint: str | None = None,
    ) -> "ControlClient":
        endpoint = control.endpoint or default_endpoint
        if not endpoint:
            raise ConfigError("control.endpoint is not set and there is no pool endpoint to fall back on")
        name = control.credential
        cred = next((c for c in credentials if c.name == name), None) if name else None
        if cred is None:
            if name or not credentials:
                raise ConfigError(f"control credential {name!r} is not in [[credentials]]")
            cred = credentials[0]
        return cls(
            client_factory(endpoint),
            signer.bind(cred),
            contract,
            reset_action=control.reset_action,
            results_table=control.results_table,
        )

    async def reset(self) -> dict:
        """Push the contract's reset action, signed by the control credential.

        Admin actions are rare, so unlike nodes this fetches fresh TAPoS each time.
        """
        tapos = await fetch_tapos(self.client, window_sec=ADMIN_EXPIRY_S)
        expiration, _ = expiration_after(int(self._clock()), ADMIN_EXPIRY_S)
        actor = self.signer.credential
        body = {
            "expiration": expiration,
            "ref_block_num": tapos.ref_block_num,
            "ref_block_prefix": tapos.ref_block_prefix,
            "max_net_usage_words": 0,
            "max_cpu_usage_ms": 0,
            "delay_sec": 0,
            "context_free_actions": [],
            "actions": [
                {
                    "account": self.contract.account,
                    "name": self.reset_action,
                    "authorization": [{"actor": actor.name, "permission": actor.permission}],
                    "data": {"user": actor.name},
                }
            ],
            "transaction_extensions": [],
        }
        signed = self.signer.sign_body(body, tapos.chain_id)
        log.info("reset %s via %s as %s", self.contract.account, self.client.endpoint, actor)
        return await self.client.push_transaction(signed)

    async def results(self, limit: int = 1000) -> dict:
        """Read the contract's results table and total submissions per user."""
        rows = await self.client.get_table_rows(
            self.contract.account, self.contract.account, self.results_table, limit=limit
        )
        by_user: Counter[str] = Counter()
        unique_ids = set()
        for row in rows:
            user = row.get("user", "?")
            by_user[user] += int(row.get("count", 1))
            if "unique_id" in row:
                unique_ids.add(row["unique_id"])
        summary = {
            "rows": len(rows),
            "unique_nodes": len(unique_ids),
            "total": sum(by_user.values()),
            "by_user": dict(by_user),
        }
        log.info("results %s: %s", self.results_table, summary)
        return summary
