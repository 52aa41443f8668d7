"""Tests for agent_sentry.ipfs — provider fallback for evidence uploads."""

import httpx
import pytest
import respx

from agent_sentry.config import Settings
from agent_sentry.ipfs import (
    PINATA_PIN_URL, FallbackUploader, KuboUploader, PinataUploader, UploadError,
    build_uploader, ipfs_gateway_urls,
)


class StaticUploader:
    def __init__(self, name, cid=None, error=None):
        self.name = name
        self.cid = cid
        self.error = error
        self.calls = 0

    async def upload(self, data, label=""):
        self.calls += 1
        if self.error:
            raise self.error
        return self.cid


class TestFallbackUploader:
    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        first = StaticUploader("a", cid="bafyA")
        second = StaticUploader("b", cid="bafyB")
        assert await FallbackUploader([first, second]).upload({"x": 1}) == "bafyA"
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_falls_through_failures(self):
        first = StaticUploader("a", error=UploadError("quota"))
        second = StaticUploader("b", error=httpx.ConnectError("down"))
        third = StaticUploader("c", cid="bafyC")
        assert await FallbackUploader([first, second, third]).upload({"x": 1}) == "bafyC"
        assert first.calls == second.calls == 1

    @pytest.mark.asyncio
    async def test_all_fail(self):
        uploader = FallbackUploader([StaticUploader("a", error=UploadError("nope"))])
        with pytest.raises(UploadError, match="a: nope"):
            await uploader.upload({"x": 1})

    @pytest.mark.asyncio
    async def test_no_providers(self):
        with pytest.raises(UploadError):
            await FallbackUploader([]).upload({})


class TestPinataUploader:
    def test_needs_credentials(self):
        with pytest.raises(ValueError):
            PinataUploader()

    @pytest.mark.asyncio
    async def test_jwt_upload(self):
        with respx.mock:
            route = respx.post(PINATA_PIN_URL).mock(
                return_value=httpx.Response(200, json={"IpfsHash": "bafyPinned"})
            )
            cid = await PinataUploader(jwt="token").upload({"agentId": "1"}, label="probe-1")
        assert cid == "bafyPinned"
        assert route.calls.last.request.headers["Authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_key_pair_headers(self):
        with respx.mock:
            route = respx.post(PINATA_PIN_URL).mock(
                return_value=httpx.Response(200, json={"IpfsHash": "bafyK"})
            )
            await PinataUploader(api_key="k", secret_key="s").upload({})
        headers = route.calls.last.request.headers
        assert headers["pinata_api_key"] == "k"
        assert headers["pinata_secret_api_key"] == "s"

    @pytest.mark.asyncio
    async def test_error_status(self):
        with respx.mock:
            respx.post(PINATA_PIN_URL).mock(return_value=httpx.Response(401, text="unauthorized"))
            with pytest.raises(UploadError):
                await PinataUploader(jwt="bad").upload({})


class TestKuboUploader:
    @pytest.mark.asyncio
    async def test_add(self):
        with respx.mock:
            respx.post("http://ipfs.local:5001/api/v0/add").mock(
                return_value=httpx.Response(200, json={"Hash": "bafyKubo", "Name": "probe.json"})
            )
            assert await KuboUploader("http://ipfs.local:5001/").upload({"a": 1}) == "bafyKubo"

    @pytest.mark.asyncio
    async def test_missing_hash(self):
        with respx.mock:
            respx.post("http://ipfs.local:5001/api/v0/add").mock(return_value=httpx.Response(200, json={}))
            with pytest.raises(UploadError):
                await KuboUploader("http://ipfs.local:5001").upload({"a": 1})


def test_build_uploader_order(tmp_path):
    settings = Settings(data_dir=tmp_path, pinata_jwt="jwt", ipfs_api_url="http://ipfs.local:5001")
    names = [p.name for p in build_uploader(settings).providers]
    assert names == ["pinata", "kubo"]


def test_build_uploader_without_credentials(tmp_path):
    assert build_uploader(Settings(data_dir=tmp_path)).providers == []


def test_gateway_urls():
    urls = ipfs_gateway_urls("bafyX")
    assert all(u.endswith("/ipfs/bafyX") for u in urls)
    assert len(urls) == 4
