"""
agent_sentry.ledger — EAS attestation submission and the canonical data codec.

Attestation data layout (schema ``SCHEMA``):
    uint256 agentId, address registry, uint64 verifiedAt, uint8 score, bytes32 signals

``encode_attestation_data`` / ``decode_attestation_data`` are the only way
the sentry reads or writes this layout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from agent_sentry.config import ZERO_ADDRESS

logger = logging.getLogger(__name__)

DATA_TYPES = ["uint256", "address", "uint64", "uint8", "bytes32"]
RECEIPT_TIMEOUT = 120.0
RPC_TIMEOUT = 30.0

ATTESTED_TOPIC = "0x" + Web3.keccak(text="Attested(address,address,bytes32,bytes32)").hex().removeprefix("0x")

EAS_ABI = [
    {
        "name": "attest",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{
            "name": "request",
            "type": "tuple",
            "components": [
                {"name": "schema", "type": "bytes32"},
                {
                    "name": "data",
                    "type": "tuple",
                    "components": [
                        {"name": "recipient", "type": "address"},
                        {"name": "expirationTime", "type": "uint64"},
                        {"name": "revocable", "type": "bool"},
                        {"name": "refUID", "type": "bytes32"},
                        {"name": "data", "type": "bytes"},
                        {"name": "value", "type": "uint256"},
                    ],
                },
            ],
        }],
        "outputs": [{"name": "", "type": "bytes32"}],
    },
    {
        "name": "revoke",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{
            "name": "request",
            "type": "tuple",
            "components": [
                {"name": "schema", "type": "bytes32"},
                {
                    "name": "data",
                    "type": "tuple",
                    "components": [
                        {"name": "uid", "type": "bytes32"},
                        {"name": "value", "type": "uint256"},
                    ],
                },
            ],
        }],
        "outputs": [],
    },
]


class LedgerError(Exception):
    """Signing, submission or receipt handling failed."""


@dataclass(frozen=True)
class AttestationPayload:
    """The five on-chain fields, in schema order."""
    agent_id: int
    registry_address: str
    verified_at: int
    score: int
    signals: int

    def __post_init__(self):
        if not 0 <= self.score <= 100:
            raise ValueError(f"score out of range: {self.score}")
        if not 0 <= self.signals < 1 << 256:
            raise ValueError("signals out of 256-bit range")


@dataclass(frozen=True)
class LedgerReceipt:
    tx_hash: str
    attestation_uid: str


class LedgerSubmitter(Protocol):
    async def submit(self, payload: AttestationPayload) -> LedgerReceipt: ...

    async def revoke(self, attestation_uid: str) -> str: ...


def encode_attestation_data(payload: AttestationPayload) -> bytes:
    return abi_encode(DATA_TYPES, [
        payload.agent_id,
        Web3.to_checksum_address(payload.registry_address.lower()),
        payload.verified_at,
        payload.score,
        payload.signals.to_bytes(32, "big"),
    ])


def decode_attestation_data(data: bytes) -> AttestationPayload:
    """Decode raw attestation bytes (as stored by EAS) into a payload."""
    agent_id, registry, verified_at, score, signals = abi_decode(DATA_TYPES, data)
    return AttestationPayload(
        agent_id=agent_id,
        registry_address=registry,
        verified_at=verified_at,
        score=score,
        signals=int.from_bytes(signals, "big"),
    )


def _hex(value) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else "0x" + text


def parse_attestation_receipt(receipt: dict, eas_address: str) -> LedgerReceipt:
    """Extract tx hash and attestation UID from a transaction receipt.

    Raises LedgerError when the transaction reverted or no ``Attested`` log
    from the EAS contract is present.
    """
    if receipt.get("status") != 1:
        raise LedgerError(f"Transaction reverted: {_hex(receipt.get('transactionHash', b''))}")
    tx_hash = _hex(receipt["transactionHash"])
    for log in receipt.get("logs", []):
        if str(log.get("address", "")).lower() != eas_address.lower():
            continue
        topics = [_hex(t).lower() for t in log.get("topics", [])]
        if not topics or topics[0] != ATTESTED_TOPIC:
            continue
        data = log.get("data", b"")
        raw = bytes(data) if isinstance(data, (bytes, bytearray)) else bytes.fromhex(str(data).removeprefix("0x"))
        if len(raw) < 32:
            break
        return LedgerReceipt(tx_hash=tx_hash, attestation_uid="0x" + raw[:32].hex())
    raise LedgerError(f"No Attested event in receipt for {tx_hash}")


class EasLedger:
    """Signs and submits EAS transactions from a local private key."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        eas_address: str,
        schema_uid: str,
        *,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        w3: Optional[AsyncWeb3] = None,
    ):
        if not private_key:
            raise ValueError("A signing key is required to submit attestations")
        self.account = Account.from_key(private_key)
        self.eas_address = Web3.to_checksum_address(eas_address.lower())
        self.schema = bytes.fromhex(schema_uid.removeprefix("0x"))
        self.receipt_timeout = receipt_timeout
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": RPC_TIMEOUT}))
        self.contract = self.w3.eth.contract(address=self.eas_address, abi=EAS_ABI)

    @property
    def address(self) -> str:
        return self.account.address

    async def _send(self, fn) -> dict:
        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx = await fn.build_transaction({"from": self.account.address, "nonce": nonce})
        signed = self.account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return dict(await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout))

    async def submit(self, payload: AttestationPayload) -> LedgerReceipt:
        request = (
            self.schema,
            (ZERO_ADDRESS, 0, True, b"\x00" * 32, encode_attestation_data(payload), 0),
        )
        try:
            receipt = await self._send(self.contract.functions.attest(request))
        except Exception as e:
            raise LedgerError(f"Attestation submission failed: {e}") from e
        return parse_attestation_receipt(receipt, self.eas_address)

    async def revoke(self, attestation_uid: str) -> str:
        uid = bytes.fromhex(attestation_uid.removeprefix("0x"))
        if len(uid) != 32:
            raise LedgerError(f"Invalid attestation UID: {attestation_uid}")
        try:
            receipt = await self._send(self.contract.functions.revoke((self.schema, (uid, 0))))
        except Exception as e:
            raise LedgerError(f"Revocation failed: {e}") from e
        if receipt.get("status") != 1:
            raise LedgerError(f"Revocation reverted for {attestation_uid}")
        return _hex(receipt["transactionHash"])
