from typing import Final
from enum import StrEnum

# ref_block_num is a uint16 on the wire
REF_BLOCK_MASK: Final = 0xFFFF

DEFAULT_PERIOD_SEC: Final = 10
DEFAULT_NUM_NODES: Final = 100
DEFAULT_POOL_MAX: Final = 10
DEFAULT_TAPOS_EXPIRY_S: Final = 3600
DEFAULT_PRODUCER_LIMIT: Final = 21  # active producer schedule size

DESCRIPTOR_PATH: Final = "/bp.json"
RPC_TIMEOUT: Final = 5.0
SUBMIT_TIMEOUT: Final = 20.0
SUBMIT_WORKERS: Final = 32
SUBMIT_QUEUE_SIZE: Final = 10_000

DEFAULT_CONTRACT: Final = "eosiotstress"
DEFAULT_ACTION: Final = "submit"
DEFAULT_MEMO: Final = "eosiot.io network stress test"


class NodeState(StrEnum):
    PENDING = "PENDING"  # waiting on the one-shot start delay
    STEADY  = "STEADY"   # recurring period armed


class EndpointMode(StrEnum):
    DIRECT    = "direct"
    DISCOVERY = "discovery"


class SubmitOutcome(StrEnum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    FAILED_NET = "FAILED_NET"
    TIMEOUT = "TIMEOUT"
    DROPPED = "DROPPED"


__all__ = [
    "DEFAULT_ACTION",
    "DEFAULT_CONTRACT",
    "DEFAULT_MEMO",
    "DEFAULT_NUM_NODES",
    "DEFAULT_PERIOD_SEC",
    "DEFAULT_POOL_MAX",
    "DEFAULT_PRODUCER_LIMIT",
    "DEFAULT_TAPOS_EXPIRY_S",
    "DESCRIPTOR_PATH",
    "REF_BLOCK_MASK",
    "RPC_TIMEOUT",
    "SUBMIT_QUEUE_SIZE",
    "SUBMIT_TIMEOUT",
    "SUBMIT_WORKERS",

    ######
    "EndpointMode",
    "NodeState",
    "SubmitOutcome",
]
