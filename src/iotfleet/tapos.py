import logging

import iotfleet.constants as C
from iotfleet.chain import ChainClient
from iotfleet.errors import ChainError, ChainIdMismatch
from iotfleet.models import TaposSnapshot

log = logging.getLogger("iotfleet.tapos")


async def fetch_tapos(
    client: ChainClient,
    *,
    window_sec: int = C.DEFAULT_TAPOS_EXPIRY_S,
    expected_chain_id: str | None = None,
) -> TaposSnapshot:
    """Compute the one TAPoS snapshot for this run from ``client``'s chain state.

    Makes exactly two calls: get_info, then get_block for the last irreversible
    block. Nothing is retried; callers treat a failure as "try the next seed".
    """
    info = await client.get_info()
    chain_id = info.get("chain_id")
    if expected_chain_id is not None and chain_id != expected_chain_id:
        raise ChainIdMismatch(client.endpoint, expected_chain_id, chain_id)

    missing = [k for k in ("head_block_time", "last_irreversible_block_num") if k not in info]
    if missing:
        raise ChainError(f"get_info missing {', '.join(missing)}", endpoint=client.endpoint)
    try:
        lib = int(info["last_irreversible_block_num"])
    except (TypeError, ValueError) as e:
        raise ChainError(f"get_info has a bad last_irreversible_block_num: {e}", endpoint=client.endpoint) from e

    block = await client.get_block(lib)
    try:
        snapshot = TaposSnapshot.from_chain_state(info, block, window_sec)
    except (KeyError, TypeError, ValueError) as e:
        raise ChainError(f"cannot build TAPoS from block {lib}: {e}", endpoint=client.endpoint) from e

    log.info("TAPoS from %s: lib=%s", client.endpoint, lib)
    log.info("  expiration = %s (%s)", snapshot.expiration, snapshot.expiration_epoch)
    log.info("  ref_block_num = %s", snapshot.ref_block_num)
    log.info("  ref_block_prefix = %s", snapshot.ref_block_prefix)
    return snapshot
