import pytest

from fakes import CHAIN_ID, GENESIS_SEED, FakeChain, FakeSigner
from iotfleet.config import FleetConfig
from iotfleet.models import Credential, EndpointPool, TaposSnapshot


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def tapos() -> TaposSnapshot:
    return TaposSnapshot(
        chain_id=CHAIN_ID,
        expiration="2018-10-07T13:00:00",
        expiration_epoch=1_538_917_200,
        ref_block_num=57920,
        ref_block_prefix=987654321,
    )


@pytest.fixture
def credentials() -> tuple[Credential, ...]:
    return (
        Credential(name="alice", private_key=GENESIS_SEED),
        Credential(name="bob", private_key=GENESIS_SEED, permission="submit"),
    )


@pytest.fixture
def pool() -> EndpointPool:
    return EndpointPool(chain_id=CHAIN_ID, endpoints=("http://a:8888", "http://b:8888", "http://c:8888"))


@pytest.fixture
def signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def config_dict() -> dict:
    return {
        "simulation": {"nodes": 5, "period_sec": 3600, "network": "test", "seed": 7},
        "endpoints": {"mode": "direct", "pool_max": 3},
        "tapos": {"expiry_sec": 3600},
        "submitter": {"workers": 2, "queue_size": 100, "timeout": 1.0},
        "networks": {
            "test": {"chain_id": CHAIN_ID, "seeds": ["http://a:8888", "http://b:8888"]},
        },
        "credentials": [
            {"name": "alice", "private_key": GENESIS_SEED},
            {"name": "bob", "private_key": GENESIS_SEED},
        ],
        "control": {"credential": "alice"},
    }


@pytest.fixture
def config(config_dict) -> FleetConfig:
    return FleetConfig.from_dict(config_dict)
