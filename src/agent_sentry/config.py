"""
agent_sentry.config — Chain constants and runtime settings.

Settings are read from the environment (``SENTRY_*`` variables) so the
sentry can run unattended from cron without a config file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


# ─── Chain constants ───────────────────────────────────────────────

# ERC-8004 identity registry on Ethereum mainnet
REGISTRY_ADDRESS = "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432"

# EAS predeploy on Base mainnet
EAS_ADDRESS = "0x4200000000000000000000000000000000000021"

SCHEMA_UID = "0x8a333ad4136176b36dd826d3f8fa5ef796b1edc923f878676cabbac8d7c84f8d"
SCHEMA = "uint256 agentId,address registry,uint64 verifiedAt,uint8 score,bytes32 signals"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

DEFAULT_ETH_RPC = [
    "https://eth-mainnet.public.blastapi.io",
    "https://ethereum.publicnode.com",
    "https://1rpc.io/eth",
]
DEFAULT_BASE_RPC = [
    "https://mainnet.base.org",
    "https://base.publicnode.com",
]

EXPLORERS = {
    "basescan": "https://basescan.org",
    "easscan": "https://base.easscan.org",
    "etherscan": "https://etherscan.io",
}

VERSION = "0.1.0"


# ─── Pipeline defaults ─────────────────────────────────────────────

ATTESTATION_THRESHOLD = 50
PROBE_LIMIT = 50
BACKFILL_PROBE_LIMIT = 20
CHUNK_SIZE = 50_000
INITIAL_LOOKBACK = 50_000
ATTEST_INTERVAL = 2.0

# 0.01 USDC (6 decimals)
PRICE_FULL_REPORT = "10000"


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name, "")
    if not raw:
        return list(default)
    return [u.strip() for u in raw.split(",") if u.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    return float(raw) if raw else default


@dataclass
class Settings:
    """Runtime configuration for a sentry process."""
    data_dir: Path = Path("data")
    eth_rpc_urls: list[str] = field(default_factory=lambda: list(DEFAULT_ETH_RPC))
    base_rpc_urls: list[str] = field(default_factory=lambda: list(DEFAULT_BASE_RPC))
    private_key: str = ""
    registry_address: str = REGISTRY_ADDRESS
    eas_address: str = EAS_ADDRESS
    schema_uid: str = SCHEMA_UID
    threshold: int = ATTESTATION_THRESHOLD
    probe_limit: int = PROBE_LIMIT
    backfill_probe_limit: int = BACKFILL_PROBE_LIMIT
    chunk_size: int = CHUNK_SIZE
    initial_lookback: int = INITIAL_LOOKBACK
    attest_interval: float = ATTEST_INTERVAL
    ipfs_gateway: str = "https://ipfs.io/ipfs/"
    pinata_jwt: str = ""
    pinata_api_key: str = ""
    pinata_secret_key: str = ""
    ipfs_api_url: str = ""
    price_full_report: str = PRICE_FULL_REPORT
    pay_to: str = "0xeC6cd01f6fdeaEc192b88Eb7B62f5E72D65719Af"
    payment_network: str = "base"
    payment_asset: str = USDC_BASE
    log_level: str = "INFO"

    @property
    def state_path(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def agents_path(self) -> Path:
        return self.data_dir / "agents.json"

    @property
    def cid_registry_path(self) -> Path:
        return self.data_dir / "ipfs-registry.json"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``SENTRY_*`` environment variables."""
        return cls(
            data_dir=Path(os.environ.get("SENTRY_DATA_DIR", "data")),
            eth_rpc_urls=_env_list("SENTRY_ETH_RPC_URL", DEFAULT_ETH_RPC),
            base_rpc_urls=_env_list("SENTRY_BASE_RPC_URL", DEFAULT_BASE_RPC),
            private_key=os.environ.get("SENTRY_PRIVATE_KEY", ""),
            registry_address=os.environ.get("SENTRY_REGISTRY_ADDRESS", REGISTRY_ADDRESS),
            eas_address=os.environ.get("SENTRY_EAS_ADDRESS", EAS_ADDRESS),
            schema_uid=os.environ.get("SENTRY_SCHEMA_UID", SCHEMA_UID),
            threshold=_env_int("SENTRY_THRESHOLD", ATTESTATION_THRESHOLD),
            probe_limit=_env_int("SENTRY_PROBE_LIMIT", PROBE_LIMIT),
            backfill_probe_limit=_env_int("SENTRY_BACKFILL_PROBE_LIMIT", BACKFILL_PROBE_LIMIT),
            chunk_size=_env_int("SENTRY_CHUNK_SIZE", CHUNK_SIZE),
            initial_lookback=_env_int("SENTRY_INITIAL_LOOKBACK", INITIAL_LOOKBACK),
            attest_interval=_env_float("SENTRY_ATTEST_INTERVAL", ATTEST_INTERVAL),
            ipfs_gateway=os.environ.get("SENTRY_IPFS_GATEWAY", "https://ipfs.io/ipfs/"),
            pinata_jwt=os.environ.get("PINATA_JWT", ""),
            pinata_api_key=os.environ.get("PINATA_API_KEY", ""),
            pinata_secret_key=os.environ.get("PINATA_SECRET_KEY", ""),
            ipfs_api_url=os.environ.get("IPFS_API_URL", ""),
            price_full_report=os.environ.get("SENTRY_PRICE_FULL_REPORT", PRICE_FULL_REPORT),
            pay_to=os.environ.get("SENTRY_PAY_TO", "0xeC6cd01f6fdeaEc192b88Eb7B62f5E72D65719Af"),
            payment_network=os.environ.get("SENTRY_PAYMENT_NETWORK", "base"),
            payment_asset=os.environ.get("SENTRY_PAYMENT_ASSET", USDC_BASE),
            log_level=os.environ.get("SENTRY_LOG_LEVEL", "INFO"),
        )


def format_tx_link(tx_hash: str) -> str:
    return f"{EXPLORERS['basescan']}/tx/{tx_hash}"


def format_attestation_link(uid: str) -> str:
    return f"{EXPLORERS['easscan']}/attestation/view/{uid}"
