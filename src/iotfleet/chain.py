"""Chain RPC collaborator.

Everything the simulator needs from the ledger goes through the ``ChainClient``
protocol: the two TAPoS queries, the producer directory and descriptor lookups
used by endpoint discovery, transaction push, and table reads for the control
surface. ``HttpChainClient`` speaks the ``/v1/chain/*`` HTTP API with httpx.
"""
import json
import logging
from typing import Any, Protocol

import httpx

import iotfleet.constants as C
from iotfleet.errors import ChainError, DescriptorError
from iotfleet.models import SignedTransaction

log = logging.getLogger("iotfleet.chain")


class ChainClient(Protocol):
    endpoint: str

    async def get_info(self) -> dict: ...
    async def get_block(self, block_num: int) -> dict: ...
    async def get_producers(self, limit: int = C.DEFAULT_PRODUCER_LIMIT) -> list[dict]: ...
    async def fetch_descriptor(self, url: str) -> dict: ...
    async def get_chain_id(self) -> str: ...
    async def push_transaction(self, signed: SignedTransaction) -> dict: ...
    async def get_table_rows(self, code: str, scope: str, table: str, limit: int = 100) -> list[dict]: ...
    async def aclose(self) -> None: ...


def normalize_endpoint(url: str) -> str:
    url = url.strip().rstrip("/")
    if url and "://" not in url:
        url = f"http://{url}"
    return url


class HttpChainClient:
    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = C.RPC_TIMEOUT,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = normalize_endpoint(endpoint)
        self._owns_http = http is None
        if http is None:
            try:
                http = httpx.AsyncClient(base_url=self.endpoint, timeout=timeout, transport=transport)
            except (httpx.InvalidURL, ValueError) as e:
                raise ChainError(f"bad endpoint url: {e}", endpoint=self.endpoint) from e
        self._http = http

    def __repr__(self):
        return f"HttpChainClient({self.endpoint!r})"

    async def _request(self, method: str, url: str, payload: dict | None = None) -> Any:
        try:
            if method == "POST":
                r = await self._http.post(url, json=payload if payload is not None else {})
            else:
                r = await self._http.get(url)
        except httpx.TimeoutException as e:
            raise ChainError(f"{url} timed out: {e.__class__.__name__}", endpoint=self.endpoint) from e
        except httpx.HTTPError as e:
            raise ChainError(f"{url} failed: {e.__class__.__name__}: {e}", endpoint=self.endpoint) from e
        except (httpx.InvalidURL, ValueError) as e:
            raise ChainError(f"{url} is not a usable url: {e}", endpoint=self.endpoint) from e

        if r.status_code >= 400:
            raise ChainError(
                f"{url} returned HTTP {r.status_code}",
                endpoint=self.endpoint,
                status=r.status_code,
                body=r.text[:500],
            )
        try:
            return r.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise ChainError(f"{url} returned non-JSON body", endpoint=self.endpoint, status=r.status_code,
                             body=r.text[:200]) from e

    async def _rpc(self, api: str, payload: dict | None = None) -> dict:
        res = await self._request("POST", f"/v1/chain/{api}", payload)
        if not isinstance(res, dict):
            raise ChainError(f"{api} returned {type(res).__name__}, expected object", endpoint=self.endpoint)
        return res

    async def get_info(self) -> dict:
        return await self._rpc("get_info")

    async def get_block(self, block_num: int) -> dict:
        return await self._rpc("get_block", {"block_num_or_id": block_num})

    async def get_chain_id(self) -> str:
        info = await self.get_info()
        chain_id = info.get("chain_id")
        if not isinstance(chain_id, str):
            raise ChainError("get_info has no chain_id", endpoint=self.endpoint)
        return chain_id

    async def get_producers(self, limit: int = C.DEFAULT_PRODUCER_LIMIT) -> list[dict]:
        res = await self._rpc("get_producers", {"limit": limit, "json": True})
        rows = res.get("rows")
        if not isinstance(rows, list):
            raise ChainError("get_producers has no rows", endpoint=self.endpoint)
        return rows

    async def fetch_descriptor(self, url: str) -> dict:
        """GET a producer's bp.json. ``url`` is the producer's advertised website."""
        target = normalize_endpoint(url) + C.DESCRIPTOR_PATH
        try:
            doc = await self._request("GET", target)
        except ChainError as e:
            raise DescriptorError(str(e), endpoint=target, status=e.status, body=e.body) from e
        if not isinstance(doc, dict):
            raise DescriptorError(f"{target} is not a JSON object", endpoint=target)
        return doc

    async def push_transaction(self, signed: SignedTransaction) -> dict:
        return await self._rpc("push_transaction", signed.to_push_payload())

    async def get_table_rows(self, code: str, scope: str, table: str, limit: int = 100) -> list[dict]:
        res = await self._rpc(
            "get_table_rows",
            {"code": code, "scope": scope, "table": table, "limit": limit, "json": True},
        )
        return res.get("rows", [])

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


class ChainClientPool:
    """One client per endpoint, shared by every node bound to it."""

    def __init__(self, *, timeout: float = C.RPC_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport
        self._clients: dict[str, HttpChainClient] = {}

    def __call__(self, endpoint: str) -> HttpChainClient:
        key = normalize_endpoint(endpoint)
        client = self._clients.get(key)
        if client is None:
            log.debug("new chain client for %s", key)
            client = HttpChainClient(key, timeout=self.timeout, transport=self.transport)
            self._clients[key] = client
        return client

    def __len__(self) -> int:
        return len(self._clients)

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
