"""
agent_sentry.registry — Scan the agent registry for mints and resolve metadata.

A mint is an ERC-721 ``Transfer`` whose ``from`` is the zero address. Scans
are split into fixed-size block windows because public log endpoints reject
large ranges; a failing window is logged and reported back so the caller
can hold its checkpoint below it.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional
from urllib.parse import unquote_to_bytes

import httpx

from agent_sentry.chain import (
    SELECTORS,
    ChainReader,
    decode_address,
    decode_address_topic,
    decode_string,
    encode_address_topic,
    encode_uint256,
)
from agent_sentry.config import CHUNK_SIZE, TRANSFER_TOPIC, ZERO_ADDRESS
from agent_sentry.models import AgentRegistration, RegistryEvent

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = 10.0
DEFAULT_GATEWAY = "https://ipfs.io/ipfs/"


def iter_block_windows(from_block: int, to_block: int, size: int) -> Iterator[tuple[int, int]]:
    """Yield contiguous inclusive ``(start, end)`` windows covering the range."""
    if size < 1:
        raise ValueError("window size must be >= 1")
    start = from_block
    while start <= to_block:
        end = min(start + size - 1, to_block)
        yield start, end
        start = end + 1


def parse_mint_log(log: dict) -> Optional[RegistryEvent]:
    """Turn a raw Transfer log into a RegistryEvent, or None if not a mint."""
    topics = log.get("topics") or []
    if len(topics) < 4 or topics[0].lower() != TRANSFER_TOPIC:
        return None
    if int(topics[1], 16) != 0:
        return None
    return RegistryEvent(
        agent_id=str(int(topics[3], 16)),
        owner=decode_address_topic(topics[2]),
        block=int(log["blockNumber"], 16),
        tx_hash=log.get("transactionHash", ""),
    )


def _decode_data_uri(uri: str) -> Optional[dict]:
    header, sep, payload = uri.partition(",")
    if not sep or not payload:
        return None
    if header.endswith(";base64"):
        raw = base64.b64decode(payload)
    else:
        raw = unquote_to_bytes(payload)
    return json.loads(raw)


async def fetch_registration(
    uri: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    gateway: str = DEFAULT_GATEWAY,
    timeout: float = FETCH_TIMEOUT,
) -> Optional[AgentRegistration]:
    """Resolve a token URI to a registration document.

    Supports ``data:`` (inline JSON, base64 or percent-encoded), ``ipfs://``
    and ``http(s)://``. Any failure returns None.
    """
    try:
        if uri.startswith("data:"):
            return AgentRegistration.parse(_decode_data_uri(uri))

        if uri.startswith("ipfs://"):
            url = gateway.rstrip("/") + "/" + uri[len("ipfs://"):].removeprefix("ipfs/")
        elif uri.startswith(("http://", "https://")):
            url = uri
        else:
            logger.debug("Unsupported URI scheme: %s", uri[:60])
            return None

        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own:
                resp = await own.get(url)
        else:
            resp = await client.get(url, timeout=timeout)
        if not resp.is_success:
            return None
        return AgentRegistration.parse(resp.json())
    except (httpx.HTTPError, httpx.InvalidURL, ValueError, binascii.Error) as e:
        logger.warning("Registration fetch failed for %s: %s", uri[:80], e)
        return None


@dataclass
class ScanResult:
    events: list[RegistryEvent] = field(default_factory=list)
    failed_windows: list[tuple[int, int]] = field(default_factory=list)

    @property
    def first_failed_block(self) -> Optional[int]:
        if not self.failed_windows:
            return None
        return min(start for start, _ in self.failed_windows)


@dataclass
class AgentDetails:
    agent_id: str
    owner: str
    uri: str
    registration: Optional[AgentRegistration]


class RegistryScanner:
    """Reads mint events and agent metadata from the registry contract."""

    def __init__(
        self,
        chain: ChainReader,
        registry_address: str,
        *,
        chunk_size: int = CHUNK_SIZE,
        max_concurrency: int = 1,
        gateway: str = DEFAULT_GATEWAY,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.chain = chain
        self.registry_address = registry_address
        self.chunk_size = chunk_size
        self.gateway = gateway
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._http_client = http_client

    async def _scan_window(self, start: int, end: int) -> Optional[list[RegistryEvent]]:
        async with self._semaphore:
            try:
                logs = await self.chain.get_logs(
                    self.registry_address,
                    [TRANSFER_TOPIC, encode_address_topic(ZERO_ADDRESS)],
                    start,
                    end,
                )
            except Exception as e:
                logger.warning("Skipping blocks %d-%d: %s", start, end, e)
                return None

        ordered = sorted(
            logs,
            key=lambda log: (int(log["blockNumber"], 16), int(log.get("logIndex", "0x0"), 16)),
        )
        events = []
        for log in ordered:
            event = parse_mint_log(log)
            if event is not None:
                events.append(event)
        return events

    async def scan(self, from_block: int, to_block: int) -> ScanResult:
        """Return mint events in ``[from_block, to_block]`` in ascending order,
        together with the windows that could not be read."""
        windows = list(iter_block_windows(from_block, to_block, self.chunk_size))
        logger.info("Scanning blocks %d-%d in %d window(s)", from_block, to_block, len(windows))
        results = await asyncio.gather(*(self._scan_window(s, e) for s, e in windows))
        result = ScanResult()
        for window, chunk in zip(windows, results):
            if chunk is None:
                result.failed_windows.append(window)
            else:
                result.events.extend(chunk)
        return result

    async def resolve_details(self, agent_id: str) -> AgentDetails:
        """Read owner and token URI, then fetch the registration document.

        Chain read failures propagate; a metadata fetch failure yields a
        None registration.
        """
        arg = encode_uint256(int(agent_id))
        uri_hex, owner_hex = await asyncio.gather(
            self.chain.call(self.registry_address, "0x" + SELECTORS["tokenURI(uint256)"] + arg),
            self.chain.call(self.registry_address, "0x" + SELECTORS["ownerOf(uint256)"] + arg),
        )
        uri = decode_string(uri_hex)
        owner = decode_address(owner_hex)
        registration = await fetch_registration(
            uri, client=self._http_client, gateway=self.gateway,
        )
        return AgentDetails(agent_id=agent_id, owner=owner, uri=uri, registration=registration)
