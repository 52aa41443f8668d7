"""Tests for agent_sentry.registry — block windows, mint scanning, metadata resolution."""

import base64
import json
from urllib.parse import quote

import httpx
import pytest
import respx

from agent_sentry.chain import RpcError
from agent_sentry.registry import (
    RegistryScanner, fetch_registration, iter_block_windows, parse_mint_log,
)
from tests.conftest import REGISTRY, STRONG_DOC, FakeChain, mint_log


class TestBlockWindows:
    def test_exact_cover(self):
        assert list(iter_block_windows(0, 9, 5)) == [(0, 4), (5, 9)]

    def test_ragged_tail(self):
        assert list(iter_block_windows(10, 22, 5)) == [(10, 14), (15, 19), (20, 22)]

    def test_single_block(self):
        assert list(iter_block_windows(7, 7, 100)) == [(7, 7)]

    def test_empty_range(self):
        assert list(iter_block_windows(8, 7, 100)) == []

    def test_windows_are_contiguous(self):
        windows = list(iter_block_windows(3, 1000, 37))
        assert windows[0][0] == 3 and windows[-1][1] == 1000
        for (_, prev_end), (start, _) in zip(windows, windows[1:]):
            assert start == prev_end + 1

    def test_bad_size(self):
        with pytest.raises(ValueError):
            list(iter_block_windows(0, 10, 0))


class TestParseMintLog:
    def test_mint(self):
        event = parse_mint_log(mint_log(42, 100, owner="0x" + "cd" * 20))
        assert event.agent_id == "42"
        assert event.block == 100
        assert event.owner == "0x" + "cd" * 20

    def test_regular_transfer_ignored(self):
        assert parse_mint_log(mint_log(42, 100, from_addr="0x" + "11" * 20)) is None

    def test_wrong_topic_ignored(self):
        log = mint_log(1, 1)
        log["topics"][0] = "0x" + "00" * 32
        assert parse_mint_log(log) is None

    def test_short_topics_ignored(self):
        assert parse_mint_log({"topics": [], "blockNumber": "0x1"}) is None


class TestScanner:
    @pytest.mark.asyncio
    async def test_chunking_does_not_change_results(self):
        chain = FakeChain()
        for agent_id, block in [(1, 5), (2, 99), (3, 100), (4, 101), (5, 450)]:
            chain.add_agent(agent_id, block, STRONG_DOC)

        one_window = (await RegistryScanner(chain, REGISTRY, chunk_size=10_000).scan(0, 500)).events
        many_windows = (await RegistryScanner(chain, REGISTRY, chunk_size=100).scan(0, 500)).events
        tiny_windows = (await RegistryScanner(chain, REGISTRY, chunk_size=7).scan(0, 500)).events

        assert [e.agent_id for e in one_window] == ["1", "2", "3", "4", "5"]
        assert many_windows == one_window
        assert tiny_windows == one_window

    @pytest.mark.asyncio
    async def test_failed_window_is_reported(self):
        chain = FakeChain()
        chain.add_agent(1, 50, STRONG_DOC)
        chain.add_agent(2, 150, STRONG_DOC)
        chain.add_agent(3, 250, STRONG_DOC)
        chain.failing_windows.add((100, 199))

        result = await RegistryScanner(chain, REGISTRY, chunk_size=100).scan(0, 299)
        assert [e.agent_id for e in result.events] == ["1", "3"]
        assert result.failed_windows == [(100, 199)]
        assert result.first_failed_block == 100
        assert chain.log_calls == [(0, 99), (100, 199), (200, 299)]

    @pytest.mark.asyncio
    async def test_clean_scan_has_no_failed_windows(self):
        chain = FakeChain()
        chain.add_agent(1, 50, STRONG_DOC)
        result = await RegistryScanner(chain, REGISTRY, chunk_size=100).scan(0, 299)
        assert result.failed_windows == []
        assert result.first_failed_block is None

    @pytest.mark.asyncio
    async def test_events_ordered_within_block(self):
        chain = FakeChain()
        chain.logs = [mint_log(9, 10, log_index=2), mint_log(8, 10, log_index=1), mint_log(7, 5)]
        events = (await RegistryScanner(chain, REGISTRY).scan(0, 20)).events
        assert [e.agent_id for e in events] == ["7", "8", "9"]

    @pytest.mark.asyncio
    async def test_resolve_details_from_data_uri(self):
        chain = FakeChain()
        chain.add_agent(12, 10, STRONG_DOC, owner="0x" + "ef" * 20)
        details = await RegistryScanner(chain, REGISTRY).resolve_details("12")
        assert details.owner.lower() == "0x" + "ef" * 20
        assert details.uri.startswith("data:")
        assert details.registration.name == "Strong Agent"

    @pytest.mark.asyncio
    async def test_resolve_details_chain_failure_propagates(self):
        chain = FakeChain()
        with pytest.raises(RpcError):
            await RegistryScanner(chain, REGISTRY).resolve_details("404")


class TestFetchRegistration:
    @pytest.mark.asyncio
    async def test_base64_data_uri(self):
        uri = "data:application/json;base64," + base64.b64encode(b'{"name": "inline"}').decode()
        reg = await fetch_registration(uri)
        assert reg.name == "inline"

    @pytest.mark.asyncio
    async def test_percent_encoded_data_uri(self):
        uri = "data:application/json," + quote(json.dumps({"name": "plain", "active": True}))
        reg = await fetch_registration(uri)
        assert reg.name == "plain" and reg.active

    @pytest.mark.asyncio
    async def test_broken_data_uri(self):
        assert await fetch_registration("data:application/json;base64,!!!") is None
        assert await fetch_registration("data:application/json;base64,") is None

    @pytest.mark.asyncio
    async def test_ipfs_uri_uses_gateway(self):
        with respx.mock:
            route = respx.get("https://gw.example/ipfs/bafyabc").mock(
                return_value=httpx.Response(200, json={"name": "from ipfs"})
            )
            reg = await fetch_registration("ipfs://bafyabc", gateway="https://gw.example/ipfs/")
        assert route.called
        assert reg.name == "from ipfs"

    @pytest.mark.asyncio
    async def test_https_uri(self):
        with respx.mock:
            respx.get("https://meta.example/agent.json").mock(
                return_value=httpx.Response(200, json={"name": "web doc", "services": []})
            )
            reg = await fetch_registration("https://meta.example/agent.json")
        assert reg.name == "web doc"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        with respx.mock:
            respx.get("https://meta.example/missing.json").mock(return_value=httpx.Response(404))
            assert await fetch_registration("https://meta.example/missing.json") is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        with respx.mock:
            respx.get("https://meta.example/bad.json").mock(return_value=httpx.Response(200, text="<html>"))
            assert await fetch_registration("https://meta.example/bad.json") is None

    @pytest.mark.asyncio
    async def test_timeout(self):
        with respx.mock:
            respx.get("https://slow.example/a.json").mock(side_effect=httpx.ReadTimeout("slow"))
            assert await fetch_registration("https://slow.example/a.json") is None

    @pytest.mark.asyncio
    async def test_malformed_url(self):
        assert await fetch_registration("https://meta.example:notaport/a.json") is None

    @pytest.mark.asyncio
    async def test_unknown_scheme(self):
        assert await fetch_registration("ar://something") is None
