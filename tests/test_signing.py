import pytest

from fakes import CHAIN_ID, GENESIS_SEED
from iotfleet.errors import CredentialError
from iotfleet.models import ContractAction, Credential, NodeRecord, OutgoingTransaction
from iotfleet.signing import KeypairSigner, signing_digest

SECP_KEY = "1ACAAEDECE405B2A958212629E16F2EB46B153EEE94CDD350FDEFF52795525B7"


def test_seed_credential_binds_and_signs(tapos):
    cred = Credential(name="alice", private_key=GENESIS_SEED)
    bound = KeypairSigner().bind(cred)
    assert bound.credential is cred
    assert bound.public_key

    node = NodeRecord(id=0, unique_id="ab" * 16, endpoint="http://a:8888", credential=cred, tapos=tapos, start_delay=0)
    tx = OutgoingTransaction.build(node, 1_538_913_601, ContractAction())
    signed = bound.sign(tx)
    assert signed.transaction == tx.to_dict()
    assert len(signed.signatures) == 1
    int(signed.signatures[0], 16)


@pytest.mark.parametrize("key", [SECP_KEY, "00" + SECP_KEY, SECP_KEY.lower(), "ED" + SECP_KEY])
def test_hex_private_keys_bind(key):
    bound = KeypairSigner().bind(Credential(name="alice", private_key=key))
    signed = bound.sign_body({"x": 1}, CHAIN_ID)
    assert signed.signatures[0]


@pytest.mark.parametrize(
    "key",
    [
        "",
        "not-a-key",
        "ZZ" * 32,
        "0" * 64,
        "F" * 64,
        SECP_KEY[:-2],
    ],
)
def test_malformed_keys_are_rejected(key):
    with pytest.raises(CredentialError):
        KeypairSigner().bind(Credential(name="alice", private_key=key))


def test_credential_without_name_is_rejected():
    with pytest.raises(CredentialError):
        KeypairSigner().bind(Credential(name="", private_key=GENESIS_SEED))


def test_private_key_not_in_repr():
    cred = Credential(name="alice", private_key=GENESIS_SEED)
    bound = KeypairSigner().bind(cred)
    assert GENESIS_SEED not in repr(cred)
    assert bound.private_key not in repr(bound)


def test_digest_depends_on_chain_and_body():
    body = {"b": 2, "a": 1}
    d = signing_digest(CHAIN_ID, body)
    assert len(d) == 32
    assert d == signing_digest(CHAIN_ID, {"a": 1, "b": 2})
    assert d != signing_digest(CHAIN_ID, {"a": 1, "b": 3})
    assert d != signing_digest("00" * 32, body)
