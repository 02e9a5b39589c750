"""Domain data structures shared by the bootstrap, factory, scheduler and submitter."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import iotfleet.constants as C

CHAIN_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def parse_chain_time(value: str) -> datetime:
    """Parse a chain timestamp ("2018-10-07T12:00:00.500", implicitly UTC)."""
    dt = datetime.fromisoformat(value.rstrip("Z"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_chain_time(dt: datetime) -> str:
    # Chain wants whole seconds, no zone suffix
    return dt.astimezone(timezone.utc).strftime(CHAIN_TIME_FORMAT)


def expiration_after(epoch_sec: int, window_sec: int) -> tuple[str, int]:
    exp = datetime.fromtimestamp(epoch_sec, tz=timezone.utc) + timedelta(seconds=window_sec)
    return format_chain_time(exp), int(exp.timestamp())


@dataclass(frozen=True, slots=True)
class EndpointPool:
    """Validated endpoint URLs for one network, in admission order."""

    chain_id: str
    endpoints: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.endpoints)

    def __iter__(self):
        return iter(self.endpoints)

    def __bool__(self) -> bool:
        return bool(self.endpoints)


@dataclass(frozen=True, slots=True)
class TaposSnapshot:
    chain_id: str
    expiration: str
    expiration_epoch: int
    ref_block_num: int
    ref_block_prefix: int

    @classmethod
    def from_chain_state(cls, info: dict, block: dict, window_sec: int) -> "TaposSnapshot":
        """Build the snapshot from a get_info result and the get_block result for its LIB."""
        head = parse_chain_time(info["head_block_time"])
        head = head.replace(microsecond=0)
        expiration = head + timedelta(seconds=window_sec)
        return cls(
            chain_id=info["chain_id"],
            expiration=format_chain_time(expiration),
            expiration_epoch=int(expiration.timestamp()),
            ref_block_num=int(info["last_irreversible_block_num"]) & C.REF_BLOCK_MASK,
            ref_block_prefix=int(block["ref_block_prefix"]),
        )

    def remaining(self, now_epoch: int) -> int:
        """Seconds of validity left at now_epoch. Negative once expired."""
        return self.expiration_epoch - now_epoch

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "expiration": self.expiration,
            "expiration_epoch": self.expiration_epoch,
            "ref_block_num": self.ref_block_num,
            "ref_block_prefix": self.ref_block_prefix,
        }


@dataclass(frozen=True, slots=True)
class Credential:
    name: str
    private_key: str = field(repr=False)
    permission: str = "active"

    @classmethod
    def from_dict(cls, d: dict) -> "Credential":
        return cls(
            name=d["name"],
            private_key=d["private_key"],
            permission=d.get("permission", "active"),
        )

    def __str__(self):
        return f"{self.name}@{self.permission}"


@dataclass(slots=True)
class NodeRecord:
    id: int
    unique_id: str
    endpoint: str
    credential: Credential
    tapos: TaposSnapshot
    start_delay: float
    tx_count: int = 0
    state: C.NodeState = C.NodeState.PENDING

    def transition(self) -> bool:
        """Move PENDING -> STEADY. Returns True only on the transition itself."""
        if self.state is C.NodeState.STEADY:
            return False
        self.state = C.NodeState.STEADY
        return True

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "unique_id": self.unique_id,
            "endpoint": self.endpoint,
            "credential": str(self.credential),
            "start_delay": round(self.start_delay, 3),
            "tx_count": self.tx_count,
            "state": self.state.value,
        }

    def __str__(self):
        return f"node {self.id} ({self.credential.name} via {self.endpoint}) {self.state}"


@dataclass(frozen=True, slots=True)
class ContractAction:
    account: str = C.DEFAULT_CONTRACT
    name: str = C.DEFAULT_ACTION
    memo: str = C.DEFAULT_MEMO


@dataclass(frozen=True, slots=True)
class OutgoingTransaction:
    """One node's submission, built fresh on every fire and never kept."""

    tapos: TaposSnapshot
    action: ContractAction
    actor: str
    permission: str
    unique_id: str
    node_time: int
    expiration: str

    @classmethod
    def build(
        cls,
        node: NodeRecord,
        node_time: int,
        action: ContractAction,
        *,
        rolling_window: int | None = None,
    ) -> "OutgoingTransaction":
        if rolling_window is None:
            expiration = node.tapos.expiration
        else:
            expiration, _ = expiration_after(node_time, rolling_window)
        return cls(
            tapos=node.tapos,
            action=action,
            actor=node.credential.name,
            permission=node.credential.permission,
            unique_id=node.unique_id,
            node_time=node_time,
            expiration=expiration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "expiration": self.expiration,
            "ref_block_num": self.tapos.ref_block_num,
            "ref_block_prefix": self.tapos.ref_block_prefix,
            "max_net_usage_words": 0,
            "max_cpu_usage_ms": 0,
            "delay_sec": 0,
            "context_free_actions": [],
            "actions": [
                {
                    "account": self.action.account,
                    "name": self.action.name,
                    "authorization": [{"actor": self.actor, "permission": self.permission}],
                    "data": {
                        "user": self.actor,
                        "unique_id": self.unique_id,
                        "node_time": self.node_time,
                        "memo": self.action.memo,
                    },
                }
            ],
            "transaction_extensions": [],
        }


@dataclass(frozen=True, slots=True)
class SignedTransaction:
    transaction: dict
    signatures: tuple[str, ...]

    def to_push_payload(self) -> dict[str, Any]:
        return {
            "signatures": list(self.signatures),
            "compression": "none",
            "packed_context_free_data": "",
            "transaction": self.transaction,
        }
