import asyncio

import pytest

from fakes import FakeBinding, FakeClock, FakeSigner
from iotfleet.config import ControlConfig
from iotfleet.control import ControlClient
from iotfleet.errors import ChainError, ConfigError
from iotfleet.models import ContractAction, Credential

ALICE = Credential(name="alice", private_key="k")


@pytest.fixture
def control(chain):
    url = chain.add("http://ctl:8888")
    return ControlClient(chain(url), FakeBinding(ALICE), ContractAction(account="stress"), clock=FakeClock().time)


def test_reset_pushes_signed_reset_action(chain, control):
    res = asyncio.run(control.reset())
    assert res["transaction_id"]
    assert chain.calls["get_block"] == 1
    (endpoint, signed), = chain.pushed
    assert endpoint == "http://ctl:8888"
    assert signed.signatures == ("SIG_alice",)
    body = signed.transaction
    assert body["expiration"] == "2018-10-07T12:01:00"
    assert body["ref_block_num"] == 123456 & 0xFFFF
    assert body["actions"] == [
        {
            "account": "stress",
            "name": "reset",
            "authorization": [{"actor": "alice", "permission": "active"}],
            "data": {"user": "alice"},
        }
    ]


def test_reset_failure_propagates(chain):
    url = chain.add("http://ctl:8888", reject_push=True)
    ctl = ControlClient(chain(url), FakeBinding(ALICE), ContractAction())
    with pytest.raises(ChainError):
        asyncio.run(ctl.reset())


def test_results_aggregate_by_user(chain, control):
    chain.table_rows = [
        {"user": "alice", "unique_id": "n1", "count": 3},
        {"user": "alice", "unique_id": "n2", "count": 2},
        {"user": "bob", "unique_id": "n3"},
    ]
    summary = asyncio.run(control.results())
    assert summary == {"rows": 3, "unique_nodes": 3, "total": 6, "by_user": {"alice": 5, "bob": 1}}


def test_results_empty_table(control):
    assert asyncio.run(control.results()) == {"rows": 0, "unique_nodes": 0, "total": 0, "by_user": {}}


def test_from_config_uses_named_credential(chain, credentials):
    signer = FakeSigner()
    ctl = ControlClient.from_config(
        ControlConfig(credential="bob"), ContractAction(), credentials, signer, chain, default_endpoint="http://a:8888"
    )
    assert ctl.signer.credential.name == "bob"
    assert ctl.client.endpoint == "http://a:8888"
    assert signer.bound == ["bob"]


def test_from_config_prefers_configured_endpoint(chain, credentials):
    ctl = ControlClient.from_config(
        ControlConfig(endpoint="http://ctl:8888"), ContractAction(), credentials, FakeSigner(), chain,
        default_endpoint="http://a:8888",
    )
    assert ctl.client.endpoint == "http://ctl:8888"
    assert ctl.signer.credential.name == "alice"


@pytest.mark.parametrize(
    "ctl_conf,creds,default",
    [
        (ControlConfig(), (ALICE,), None),
        (ControlConfig(credential="carol"), (ALICE,), "http://a:8888"),
        (ControlConfig(), (), "http://a:8888"),
    ],
)
def test_from_config_errors(chain, ctl_conf, creds, default):
    with pytest.raises(ConfigError):
        ControlClient.from_config(ctl_conf, ContractAction(), creds, FakeSigner(), chain, default_endpoint=default)
