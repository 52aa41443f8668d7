"""Global test configuration — runs before any test module imports."""
import base64
import json
import os

import pytest
from eth_abi import encode as abi_encode

# Must be set before any agent_sentry imports; slowapi reads this at init
os.environ["RATELIMIT_ENABLED"] = "False"

from agent_sentry.chain import RpcError  # noqa: E402
from agent_sentry.config import Settings, TRANSFER_TOPIC  # noqa: E402
from agent_sentry.ledger import LedgerError, LedgerReceipt  # noqa: E402

REGISTRY = "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432"


def pytest_configure(config):
    """Disable rate limiter after all imports."""
    from agent_sentry.security import limiter
    limiter.enabled = False


def data_uri(doc: dict) -> str:
    return "data:application/json;base64," + base64.b64encode(json.dumps(doc).encode()).decode()


def mint_log(agent_id: int, block: int, owner: str = "0x" + "ab" * 20, log_index: int = 0,
             from_addr: str = "0x" + "00" * 20) -> dict:
    return {
        "topics": [
            TRANSFER_TOPIC,
            "0x" + from_addr[2:].rjust(64, "0"),
            "0x" + owner[2:].rjust(64, "0"),
            "0x" + f"{agent_id:064x}",
        ],
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "transactionHash": "0x" + f"{agent_id:064x}",
    }


class FakeChain:
    """In-memory ChainReader: logs by block, token URIs by agent id."""

    def __init__(self, latest: int = 1000):
        self.latest = latest
        self.logs: list[dict] = []
        self.uris: dict[int, str] = {}
        self.owners: dict[int, str] = {}
        self.failing_windows: set[tuple[int, int]] = set()
        self.failing_agents: set[int] = set()
        self.log_calls: list[tuple[int, int]] = []

    def add_agent(self, agent_id: int, block: int, doc, owner: str = "0x" + "ab" * 20):
        self.logs.append(mint_log(agent_id, block, owner))
        self.uris[agent_id] = data_uri(doc) if isinstance(doc, dict) else doc
        self.owners[agent_id] = owner

    async def get_block_number(self) -> int:
        return self.latest

    async def get_logs(self, address, topics, from_block, to_block):
        self.log_calls.append((from_block, to_block))
        if (from_block, to_block) in self.failing_windows:
            raise RpcError("range too large")
        return [
            log for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block
        ]

    async def call(self, address, data):
        selector, agent_id = data[2:10], int(data[10:], 16)
        if agent_id in self.failing_agents or agent_id not in self.uris:
            raise RpcError(f"execution reverted for {agent_id}")
        if selector == "c87b56dd":
            return "0x" + abi_encode(["string"], [self.uris[agent_id]]).hex()
        return "0x" + abi_encode(["address"], [self.owners[agent_id]]).hex()


class FakeLedger:
    """Records submissions and hands out sequential receipts."""

    def __init__(self):
        self.submissions = []
        self.revocations = []
        self.fail_with = None
        self.bad_uid = False

    async def submit(self, payload):
        if self.fail_with:
            raise LedgerError(self.fail_with)
        self.submissions.append(payload)
        n = len(self.submissions)
        uid = "0xnot-a-uid" if self.bad_uid else "0x" + f"{n:064x}"
        return LedgerReceipt(tx_hash="0x" + f"{n + 1000:064x}", attestation_uid=uid)

    async def revoke(self, attestation_uid):
        self.revocations.append(attestation_uid)
        return "0x" + "cd" * 32


STRONG_DOC = {
    "name": "Strong Agent",
    "active": True,
    "services": [{"name": "A2A", "endpoint": "https://a2a.example"}, {"name": "MCP", "endpoint": "https://mcp.example"}],
}
WEAK_DOC = {"name": "Weak Agent"}


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        threshold=50,
        probe_limit=50,
        chunk_size=100,
        initial_lookback=1000,
        attest_interval=0,
        private_key="",
    )
