"""
agent_sentry.ipfs — Best-effort evidence upload to content-addressed storage.

Providers are tried in a fixed order (Pinata, then an IPFS HTTP API node).
``FallbackUploader.upload`` raises ``UploadError`` only when every provider
failed; callers treat that as "attest without evidence".
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 60.0
PINATA_PIN_URL = "https://api.pinata.cloud/pinning/pinJSONToIPFS"


class UploadError(Exception):
    """No provider accepted the upload."""


class ContentUploader(Protocol):
    name: str

    async def upload(self, data: dict, label: str = "") -> str: ...


class PinataUploader:
    name = "pinata"

    def __init__(
        self,
        *,
        jwt: str = "",
        api_key: str = "",
        secret_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPLOAD_TIMEOUT,
    ):
        if not jwt and not (api_key and secret_key):
            raise ValueError("Pinata needs a JWT or an API key/secret pair")
        self.jwt = jwt
        self.api_key = api_key
        self.secret_key = secret_key
        self._client = client
        self.timeout = timeout

    def _headers(self) -> dict:
        if self.jwt:
            return {"Authorization": f"Bearer {self.jwt}"}
        return {"pinata_api_key": self.api_key, "pinata_secret_api_key": self.secret_key}

    async def upload(self, data: dict, label: str = "") -> str:
        body = {"pinataContent": data, "pinataMetadata": {"name": label or "sentry-probe"}}
        if self._client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(PINATA_PIN_URL, json=body, headers=self._headers())
        else:
            resp = await self._client.post(
                PINATA_PIN_URL, json=body, headers=self._headers(), timeout=self.timeout,
            )
        if not resp.is_success:
            raise UploadError(f"Pinata error: {resp.status_code} {resp.text[:200]}")
        cid = resp.json().get("IpfsHash")
        if not cid:
            raise UploadError("Pinata response missing IpfsHash")
        return cid


class KuboUploader:
    """Upload through an IPFS node's HTTP API (``/api/v0/add``)."""
    name = "kubo"

    def __init__(
        self,
        api_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = UPLOAD_TIMEOUT,
    ):
        self.api_url = api_url.rstrip("/")
        self._client = client
        self.timeout = timeout

    async def upload(self, data: dict, label: str = "") -> str:
        url = f"{self.api_url}/api/v0/add"
        params = {"pin": "true", "cid-version": "1"}
        files = {"file": (f"{label or 'probe'}.json", json.dumps(data, indent=2), "application/json")}
        if self._client is None:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, params=params, files=files)
        else:
            resp = await self._client.post(url, params=params, files=files, timeout=self.timeout)
        if not resp.is_success:
            raise UploadError(f"IPFS node error: {resp.status_code} {resp.text[:200]}")
        cid = resp.json().get("Hash")
        if not cid:
            raise UploadError("IPFS node response missing Hash")
        return cid


class FallbackUploader:
    """Try each provider in priority order."""

    def __init__(self, providers: list[ContentUploader]):
        self.providers = list(providers)

    async def upload(self, data: dict, label: str = "") -> str:
        errors = []
        for provider in self.providers:
            try:
                cid = await provider.upload(data, label)
                logger.info("Uploaded evidence via %s: %s", provider.name, cid)
                return cid
            except (UploadError, httpx.HTTPError, ValueError) as e:
                logger.warning("%s upload failed, trying next provider: %s", provider.name, e)
                errors.append(f"{provider.name}: {e}")
        raise UploadError("IPFS upload failed: " + ("; ".join(errors) or "no provider available"))


def build_uploader(settings) -> FallbackUploader:
    """Assemble the provider chain from configured credentials."""
    providers: list[ContentUploader] = []
    if settings.pinata_jwt or (settings.pinata_api_key and settings.pinata_secret_key):
        providers.append(PinataUploader(
            jwt=settings.pinata_jwt,
            api_key=settings.pinata_api_key,
            secret_key=settings.pinata_secret_key,
        ))
    if settings.ipfs_api_url:
        providers.append(KuboUploader(settings.ipfs_api_url))
    return FallbackUploader(providers)


def ipfs_gateway_urls(cid: str) -> list[str]:
    return [
        f"https://w3s.link/ipfs/{cid}",
        f"https://gateway.pinata.cloud/ipfs/{cid}",
        f"https://ipfs.io/ipfs/{cid}",
        f"https://dweb.link/ipfs/{cid}",
    ]
