"""Signature provider collaborator.

Nodes never touch key material directly. Each node binds its credential once
at construction time (``Signer.bind``) and the submitter signs every outgoing
transaction through the bound key. ``KeypairSigner`` uses xrpl-py's keypair
primitives (secp256k1 or ed25519).
"""
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Protocol

from xrpl.core.keypairs import derive_keypair, sign

from iotfleet.errors import CredentialError
from iotfleet.models import Credential, OutgoingTransaction, SignedTransaction

log = logging.getLogger("iotfleet.signing")

ED_PREFIX = "ED"
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class BoundSigner(Protocol):
    credential: Credential

    def sign(self, tx: OutgoingTransaction) -> SignedTransaction: ...
    def sign_body(self, body: dict, chain_id: str) -> SignedTransaction: ...


class Signer(Protocol):
    def bind(self, credential: Credential) -> BoundSigner: ...


def signing_digest(chain_id: str, tx: dict) -> bytes:
    """sha256(chain_id || canonical tx json || 32 zero bytes)."""
    try:
        chain = bytes.fromhex(chain_id)
    except ValueError:
        chain = chain_id.encode()
    body = json.dumps(tx, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(chain + body + bytes(32)).digest()


def _normalize_private_key(key: str) -> tuple[str, str | None]:
    """Return (private_key, public_key) in xrpl-py's hex form.

    Accepts a family seed ("s...") or a hex private key: 64 hex chars for
    secp256k1 (optionally "00"-prefixed) or "ED" + 64 hex chars for ed25519.
    """
    key = key.strip()
    if key.startswith("s"):
        try:
            public, private = derive_keypair(key)
        except Exception as e:
            raise CredentialError(f"invalid seed: {e}") from e
        return private, public

    upper = key.upper()
    if upper.startswith(ED_PREFIX) and len(upper) == 66:
        body = upper[2:]
    elif len(upper) == 66 and upper.startswith("00"):
        body = upper[2:]
    elif len(upper) == 64:
        body = upper
    else:
        raise CredentialError(f"private key has unexpected length {len(key)}")
    try:
        scalar = int(body, 16)
    except ValueError as e:
        raise CredentialError("private key is not hex") from e

    if upper.startswith(ED_PREFIX) and len(upper) == 66:
        return ED_PREFIX + body, None
    if not 0 < scalar < SECP256K1_ORDER:
        raise CredentialError("private key out of range for secp256k1")
    return "00" + body, None


@dataclass(slots=True)
class KeypairBinding:
    credential: Credential
    private_key: str = field(repr=False)
    public_key: str | None = None

    def sign(self, tx: OutgoingTransaction) -> SignedTransaction:
        return self.sign_body(tx.to_dict(), tx.tapos.chain_id)

    def sign_body(self, body: dict, chain_id: str) -> SignedTransaction:
        digest = signing_digest(chain_id, body)
        signature = sign(digest, self.private_key)
        return SignedTransaction(transaction=body, signatures=(signature,))


class KeypairSigner:
    def bind(self, credential: Credential) -> KeypairBinding:
        if not credential.name:
            raise CredentialError("credential has no account name")
        private, public = _normalize_private_key(credential.private_key)
        log.debug("bound key for %s", credential)
        return KeypairBinding(credential=credential, private_key=private, public_key=public)
