"""
agent_sentry.chain — Minimal JSON-RPC chain reader over httpx.

Only the three primitives the scanner needs: ``eth_blockNumber``,
``eth_getLogs`` and ``eth_call``. Endpoints are tried in order; the first
one that answers wins. When every endpoint fails the call raises
``RpcError`` so callers can decide whether the failure is per-item.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx
from eth_abi import decode as abi_decode

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 15.0

# 4-byte selectors for the ERC-721 reads used by the scanner
SELECTORS = {
    "tokenURI(uint256)": "c87b56dd",
    "ownerOf(uint256)": "6352211e",
}


class RpcError(Exception):
    """Raised when no RPC endpoint could answer a request."""


class ChainReader(Protocol):
    async def get_block_number(self) -> int: ...

    async def get_logs(
        self, address: str, topics: list[Optional[str]], from_block: int, to_block: int,
    ) -> list[dict]: ...

    async def call(self, address: str, data: str) -> str: ...


def encode_uint256(value: int) -> str:
    return f"{value:064x}"


def encode_address_topic(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte log topic."""
    return "0x" + address.lower().replace("0x", "").rjust(64, "0")


def decode_address_topic(topic: str) -> str:
    return "0x" + topic[-40:]


def decode_string(hex_data: str) -> str:
    raw = bytes.fromhex(hex_data.removeprefix("0x"))
    return abi_decode(["string"], raw)[0]


def decode_address(hex_data: str) -> str:
    raw = bytes.fromhex(hex_data.removeprefix("0x"))
    return abi_decode(["address"], raw)[0]


class JsonRpcChainReader:
    """JSON-RPC client with ordered multi-endpoint fallback."""

    def __init__(
        self,
        rpc_urls: list[str],
        *,
        timeout: float = RPC_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        self.rpc_urls = list(rpc_urls)
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._next_id = 0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request, falling back across endpoints."""
        client = await self._get_client()
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._next_id}

        last_error: Optional[str] = None
        for i, url in enumerate(self.rpc_urls):
            try:
                resp = await client.post(url, json=payload, timeout=self.timeout)
                resp.raise_for_status()
                body = resp.json()
            except httpx.TimeoutException:
                last_error = f"timeout from {url}"
                logger.warning("RPC timeout from provider %d/%d: %s", i + 1, len(self.rpc_urls), url)
                continue
            except (httpx.HTTPError, ValueError) as e:
                last_error = f"{url}: {e}"
                logger.warning("RPC failure from provider %d/%d: %s", i + 1, len(self.rpc_urls), e)
                continue

            if "error" in body:
                last_error = f"{url}: {body['error']}"
                logger.warning("RPC error from %s on %s: %s", url, method, body["error"])
                continue
            return body.get("result")

        raise RpcError(f"All {len(self.rpc_urls)} RPC providers failed for {method}: {last_error}")

    async def get_block_number(self) -> int:
        return int(await self.request("eth_blockNumber", []), 16)

    async def get_logs(
        self, address: str, topics: list[Optional[str]], from_block: int, to_block: int,
    ) -> list[dict]:
        result = await self.request("eth_getLogs", [{
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }])
        return result or []

    async def call(self, address: str, data: str) -> str:
        result = await self.request("eth_call", [{"to": address, "data": data}, "latest"])
        if not result or result == "0x":
            raise RpcError(f"Empty eth_call result from {address}")
        return result
