"""
agent_sentry.attester — Turn a probe into exactly one on-chain attestation.

Order of operations for one agent:
    1. refuse if the agent is already in the attested-set
    2. best-effort evidence upload (failure is tolerated)
    3. wait out the minimum spacing since the previous ledger write
    4. submit the five-field payload
    5. validate tx hash and UID from the receipt
    6. register UID -> CID, then add the agent to the attested-set
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Optional

from agent_sentry.ipfs import FallbackUploader, UploadError
from agent_sentry.ledger import AttestationPayload, LedgerError, LedgerSubmitter
from agent_sentry.models import AgentProbe, AttestationResult
from agent_sentry.prober import calculate_score, pack_signals
from agent_sentry.state import CidRegistry, SentryState

logger = logging.getLogger(__name__)

_HASH32 = re.compile(r"^0x[0-9a-fA-F]{64}$")


class AttestationError(Exception):
    """The attestation was not issued; the agent stays un-attested."""

    def __init__(self, agent_id: str, message: str):
        self.agent_id = agent_id
        super().__init__(f"Agent #{agent_id}: {message}")


class AlreadyAttestedError(AttestationError):
    """The agent is in the attested-set and will not be attested again."""

    def __init__(self, agent_id: str):
        super().__init__(agent_id, "already attested")


class RateGate:
    """Enforces a minimum interval between consecutive ledger writes."""

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    async def wait(self) -> None:
        if self._last is not None:
            elapsed = self._clock() - self._last
            if elapsed < self.min_interval:
                await self._sleep(self.min_interval - elapsed)

    def mark(self) -> None:
        self._last = self._clock()


class AttestationEngine:
    """Issues attestations through a ``LedgerSubmitter``."""

    def __init__(
        self,
        ledger: LedgerSubmitter,
        *,
        registry_address: str,
        schema_uid: str,
        uploader: Optional[FallbackUploader] = None,
        cid_registry: Optional[CidRegistry] = None,
        gate: Optional[RateGate] = None,
        min_interval: float = 2.0,
    ):
        self.ledger = ledger
        self.registry_address = registry_address
        self.schema_uid = schema_uid
        self.uploader = uploader
        self.cid_registry = cid_registry
        self.gate = gate or RateGate(min_interval)

    def build_evidence(self, probe: AgentProbe, score: int) -> dict:
        return {
            "agentId": probe.agent_id,
            "owner": probe.owner,
            "uri": probe.uri,
            "score": score,
            "signals": probe.signals.to_dict(),
            "registration": probe.registration.to_dict() if probe.registration else None,
            "probedAt": probe.probed_at,
            "schemaUid": self.schema_uid,
        }

    async def _upload_evidence(self, probe: AgentProbe, score: int) -> Optional[str]:
        if self.uploader is None or not self.uploader.providers:
            return None
        try:
            return await self.uploader.upload(
                self.build_evidence(probe, score), label=f"sentry-probe-{probe.agent_id}",
            )
        except UploadError as e:
            logger.warning("Evidence upload failed for agent #%s: %s", probe.agent_id, e)
            return None

    async def attest(self, probe: AgentProbe, state: SentryState) -> AttestationResult:
        """Attest one agent and record it in ``state``.

        Raises AlreadyAttestedError if the agent is already attested and
        AttestationError if the ledger write or receipt is unusable.
        """
        if state.is_attested(probe.agent_id):
            raise AlreadyAttestedError(probe.agent_id)

        score = calculate_score(probe.signals)
        try:
            payload = AttestationPayload(
                agent_id=int(probe.agent_id),
                registry_address=self.registry_address,
                verified_at=int(time.time()),
                score=score,
                signals=pack_signals(probe.signals),
            )
        except ValueError as e:
            raise AttestationError(probe.agent_id, f"invalid payload: {e}") from e

        logger.info("Attesting agent #%s (score: %d)", probe.agent_id, score)
        cid = await self._upload_evidence(probe, score)

        await self.gate.wait()
        try:
            receipt = await self.ledger.submit(payload)
        except LedgerError as e:
            raise AttestationError(probe.agent_id, str(e)) from e
        finally:
            self.gate.mark()

        if not _HASH32.match(receipt.tx_hash or ""):
            raise AttestationError(probe.agent_id, f"unparseable tx hash: {receipt.tx_hash!r}")
        if not _HASH32.match(receipt.attestation_uid or ""):
            raise AttestationError(probe.agent_id, f"unparseable attestation UID: {receipt.attestation_uid!r}")

        if cid and self.cid_registry is not None:
            self.cid_registry.register(receipt.attestation_uid, probe.agent_id, cid)
        state.mark_attested(probe.agent_id)

        return AttestationResult(
            agent_id=probe.agent_id,
            tx_hash=receipt.tx_hash,
            attestation_uid=receipt.attestation_uid,
            score=score,
            timestamp=payload.verified_at,
            ipfs_cid=cid,
        )

    async def revoke(self, attestation_uid: str) -> str:
        """Revoke one attestation, respecting the ledger spacing."""
        await self.gate.wait()
        try:
            return await self.ledger.revoke(attestation_uid)
        finally:
            self.gate.mark()
