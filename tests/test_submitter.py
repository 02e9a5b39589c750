import asyncio

import pytest

from fakes import FakeBinding, FakeClock, StopRun
from iotfleet.constants import SubmitOutcome
from iotfleet.models import ContractAction, Credential, NodeRecord
from iotfleet.scheduler import NodeRunner
from iotfleet.submitter import TransactionSubmitter

PERIOD = 10


def make_node(chain, tapos, node_id, endpoint, name="alice"):
    return NodeRecord(
        id=node_id,
        unique_id=f"{node_id:032x}",
        endpoint=endpoint,
        credential=Credential(name=name, private_key="x"),
        tapos=tapos,
        start_delay=1.0,
    )


def test_dispatch_returns_immediately_and_worker_pushes(chain, tapos):
    url = chain.add("http://a:8888")
    node = make_node(chain, tapos, 1, url)

    async def go():
        sub = TransactionSubmitter(chain, ContractAction(), workers=2)
        assert sub.dispatch(node, FakeBinding(node.credential), 1_538_913_700)
        assert chain.pushed == []  # nothing sent until a worker runs
        sub.start()
        await sub.drain()
        await sub.stop()
        return sub

    sub = asyncio.run(go())
    assert len(chain.pushed) == 1
    endpoint, signed = chain.pushed[0]
    assert endpoint == url
    body = signed.transaction
    assert body["ref_block_num"] == tapos.ref_block_num
    assert body["ref_block_prefix"] == tapos.ref_block_prefix
    assert body["expiration"] == tapos.expiration
    action = body["actions"][0]
    assert action["account"] == "eosiotstress"
    assert action["name"] == "submit"
    assert action["authorization"] == [{"actor": "alice", "permission": "active"}]
    assert action["data"]["unique_id"] == node.unique_id
    assert action["data"]["node_time"] == 1_538_913_700
    assert sub.stats.count_by_outcome == {"ACCEPTED": 1}


def test_rolling_expiration_uses_fire_time(chain, tapos):
    url = chain.add("http://a:8888")
    node = make_node(chain, tapos, 1, url)

    async def go():
        sub = TransactionSubmitter(chain, rolling_window=60)
        sub.dispatch(node, FakeBinding(node.credential), 1_538_913_600)
        sub.start()
        await sub.drain()
        await sub.stop()

    asyncio.run(go())
    body = chain.pushed[0][1].transaction
    assert body["expiration"] == "2018-10-07T12:01:00"
    assert body["ref_block_num"] == tapos.ref_block_num


def test_rejection_is_recorded_not_raised(chain, tapos):
    url = chain.add("http://a:8888", reject_push=True)
    node = make_node(chain, tapos, 1, url)

    async def go():
        sub = TransactionSubmitter(chain)
        sub.dispatch(node, FakeBinding(node.credential), 1)
        sub.start()
        await sub.drain()
        assert sub.running  # workers survive the failure
        await sub.stop()
        return sub

    sub = asyncio.run(go())
    assert sub.stats.count_by_outcome == {"REJECTED": 1}
    rec = sub.stats.recent[0]
    assert rec.outcome is SubmitOutcome.REJECTED
    assert "500" in rec.detail


def test_network_failure_and_timeout(chain, tapos):
    down = chain.add("http://down:8888", down=True)
    slow = chain.add("http://slow:8888")
    n1 = make_node(chain, tapos, 1, down)
    n2 = make_node(chain, tapos, 2, slow)

    client = chain(slow)

    async def hang(signed):
        await asyncio.sleep(10)

    def factory(endpoint):
        return client if endpoint == slow else chain(endpoint)

    client.push_transaction = hang

    async def go():
        sub = TransactionSubmitter(factory, timeout=0.05)
        sub.dispatch(n1, FakeBinding(n1.credential), 1)
        sub.dispatch(n2, FakeBinding(n2.credential), 1)
        sub.start()
        await sub.drain()
        await sub.stop()
        return sub

    sub = asyncio.run(go())
    assert sub.stats.count_by_outcome == {"FAILED_NET": 1, "TIMEOUT": 1}
    assert set(sub.stats.failed_by_node) == {1, 2}


def test_signer_error_is_contained(chain, tapos):
    url = chain.add("http://a:8888")
    node = make_node(chain, tapos, 1, url)

    class Broken(FakeBinding):
        def sign(self, tx):
            raise ValueError("bad curve point")

    async def go():
        sub = TransactionSubmitter(chain)
        sub.dispatch(node, Broken(node.credential), 1)
        sub.start()
        await sub.drain()
        await sub.stop()
        return sub

    sub = asyncio.run(go())
    assert sub.stats.count_by_outcome == {"FAILED_NET": 1}
    assert chain.pushed == []


def test_full_queue_drops_without_blocking(chain, tapos):
    url = chain.add("http://a:8888")
    node = make_node(chain, tapos, 1, url)

    async def go():
        sub = TransactionSubmitter(chain, queue_size=2)
        results = [sub.dispatch(node, FakeBinding(node.credential), t) for t in range(4)]
        return sub, results

    sub, results = asyncio.run(go())
    assert results == [True, True, False, False]
    assert sub.stats.count_by_outcome == {"DROPPED": 2}


def test_failing_node_does_not_affect_other_node(chain, tapos):
    bad = chain.add("http://bad:8888", reject_push=True)
    good = chain.add("http://good:8888")
    node_a = make_node(chain, tapos, 1, bad, name="alice")
    node_b = make_node(chain, tapos, 2, good, name="bob")
    clock_a = FakeClock(max_sleeps=5)
    clock_b = FakeClock(max_sleeps=5)

    async def go():
        sub = TransactionSubmitter(chain, workers=1)
        sub.start()
        runners = [
            NodeRunner(n, FakeBinding(n.credential), sub, period=PERIOD,
                       clock=c.time, monotonic=c.monotonic, sleep=c.sleep)
            for n, c in ((node_a, clock_a), (node_b, clock_b))
        ]
        results = await asyncio.gather(*(r.run() for r in runners), return_exceptions=True)
        assert all(isinstance(r, StopRun) for r in results)
        await sub.drain()
        await sub.stop()
        return sub

    sub = asyncio.run(go())
    assert node_a.tx_count == node_b.tx_count == 5
    assert clock_a.sleeps == clock_b.sleeps
    assert clock_b.sleeps[1:] == pytest.approx([PERIOD] * 4)
    assert [e for e, _ in chain.pushed] == [good] * 5
    assert sub.stats.count_by_outcome == {"REJECTED": 5, "ACCEPTED": 5}
    assert dict(sub.stats.failed_by_node) == {1: 5}
