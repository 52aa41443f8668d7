"""
agent_sentry.pipeline — One batch run: scan -> probe -> score -> attest.

Runs are sequential and bounded by a per-run probe quota. The attested-set
is saved right after each successful attestation so a crash mid-run does
not lose it. The block checkpoint only moves past events that were fully
handled; left-over and failed events, and unreadable block windows, are
picked up by the next run. Agents below the threshold are recorded as
evaluated and not probed again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx
from eth_abi.exceptions import DecodingError

from agent_sentry.attester import AlreadyAttestedError, AttestationEngine, AttestationError
from agent_sentry.chain import ChainReader, RpcError
from agent_sentry.config import Settings, format_attestation_link, format_tx_link
from agent_sentry.models import AgentStatus, AttestationResult, RegistryEvent
from agent_sentry.prober import calculate_score, probe_agent
from agent_sentry.registry import RegistryScanner
from agent_sentry.state import AgentsDatabase, SentryState, StateStore

logger = logging.getLogger(__name__)


@dataclass
class AgentOutcome:
    agent_id: str
    status: AgentStatus
    score: Optional[int] = None
    name: Optional[str] = None
    error: str = ""
    attestation: Optional[AttestationResult] = None

    def to_dict(self) -> dict:
        d = {"agentId": self.agent_id, "status": self.status.value, "score": self.score, "name": self.name}
        if self.error:
            d["error"] = self.error
        if self.attestation:
            d["attestation"] = self.attestation.to_dict()
        return d


@dataclass
class RunReport:
    from_block: int
    to_block: int
    events_found: int = 0
    new_events: int = 0
    deferred: int = 0
    failed_windows: int = 0
    checkpoint: int = 0
    outcomes: list[AgentOutcome] = field(default_factory=list)

    def count(self, status: AgentStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def attested(self) -> int:
        return self.count(AgentStatus.ATTESTED)

    @property
    def failed(self) -> int:
        return self.count(AgentStatus.FAILED)

    def to_dict(self) -> dict:
        return {
            "fromBlock": self.from_block,
            "toBlock": self.to_block,
            "eventsFound": self.events_found,
            "newEvents": self.new_events,
            "probed": sum(1 for o in self.outcomes if o.score is not None),
            "attested": self.attested,
            "belowThreshold": self.count(AgentStatus.BELOW_THRESHOLD),
            "skipped": self.count(AgentStatus.SKIPPED),
            "failed": self.failed,
            "deferred": self.deferred,
            "failedWindows": self.failed_windows,
            "checkpoint": self.checkpoint,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


class SentryRunner:
    """Drives the pipeline against persisted state."""

    def __init__(
        self,
        settings: Settings,
        *,
        chain: ChainReader,
        scanner: RegistryScanner,
        engine: AttestationEngine,
        state_store: StateStore,
        agents_db: AgentsDatabase,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.chain = chain
        self.scanner = scanner
        self.engine = engine
        self.state_store = state_store
        self.agents_db = agents_db
        self.http_client = http_client

    async def run(
        self,
        *,
        from_block: Optional[int] = None,
        to_block: Optional[int] = None,
        probe_limit: Optional[int] = None,
    ) -> RunReport:
        """Incremental run. Resumes from the checkpoint unless told otherwise."""
        state = self.state_store.load()
        logger.info("Previously attested: %d agents", len(state.attested_agents))

        latest = to_block if to_block is not None else await self.chain.get_block_number()
        if from_block is None:
            if state.last_scanned_block > 0:
                from_block = state.last_scanned_block + 1
            else:
                from_block = max(0, latest - self.settings.initial_lookback)

        report = RunReport(from_block=from_block, to_block=latest)
        if from_block > latest:
            logger.info("Nothing to scan: checkpoint %d is at head %d", state.last_scanned_block, latest)
            report.checkpoint = state.last_scanned_block
            self.state_store.save(state)
            return report

        scan = await self.scanner.scan(from_block, latest)
        events = scan.events
        report.events_found = len(events)
        report.failed_windows = len(scan.failed_windows)

        seen: set[str] = set()
        pending: list[RegistryEvent] = []
        for event in events:
            if state.is_settled(event.agent_id) or event.agent_id in seen:
                continue
            seen.add(event.agent_id)
            pending.append(event)
        pending.reverse()  # newest first
        report.new_events = len(pending)
        logger.info("Found %d registrations, %d not yet settled", len(events), len(pending))

        limit = self.settings.probe_limit if probe_limit is None else probe_limit
        batch, leftover = pending[:limit], pending[limit:]
        report.deferred = len(leftover)
        retry_blocks = [e.block for e in leftover]
        if scan.first_failed_block is not None:
            retry_blocks.append(scan.first_failed_block)

        for event in batch:
            outcome = await self.process_event(event, state)
            report.outcomes.append(outcome)
            if outcome.status == AgentStatus.FAILED:
                retry_blocks.append(event.block)

        # A range starting above the checkpoint leaves a gap that the next
        # incremental run still has to cover.
        if state.last_scanned_block == 0 or from_block <= state.last_scanned_block + 1:
            target = min(retry_blocks) - 1 if retry_blocks else latest
            state.advance_checkpoint(target)
        else:
            logger.info(
                "Checkpoint %d held: blocks %d-%d not scanned yet",
                state.last_scanned_block, state.last_scanned_block + 1, from_block - 1,
            )
        report.checkpoint = state.last_scanned_block

        self.state_store.save(state)
        self.agents_db.save()
        logger.info(
            "Run complete: attested=%d failed=%d deferred=%d checkpoint=%d",
            report.attested, report.failed, report.deferred, report.checkpoint,
        )
        return report

    async def backfill(self, blocks_back: int, *, probe_limit: Optional[int] = None) -> RunReport:
        """Scan ``blocks_back`` blocks below the chain head."""
        latest = await self.chain.get_block_number()
        return await self.run(
            from_block=max(0, latest - blocks_back),
            to_block=latest,
            probe_limit=self.settings.backfill_probe_limit if probe_limit is None else probe_limit,
        )

    async def process_event(self, event: RegistryEvent, state: SentryState) -> AgentOutcome:
        """Resolve, probe, store and (when worthy) attest one agent."""
        agent_id = event.agent_id
        try:
            details = await self.scanner.resolve_details(agent_id)
        except (RpcError, httpx.HTTPError, DecodingError, ValueError) as e:
            logger.warning("Agent #%s: could not resolve details: %s", agent_id, e)
            return AgentOutcome(agent_id, AgentStatus.FAILED, error=str(e))

        probe = await probe_agent(
            details.agent_id, details.owner, details.uri, details.registration,
            client=self.http_client,
        )
        score = calculate_score(probe.signals)
        state.stats.total_scanned += 1
        self.agents_db.upsert_probe(probe, score)
        logger.info("Agent #%s %s - score %d", agent_id, probe.signals.name or "Unknown", score)

        if score < self.settings.threshold:
            state.mark_evaluated(agent_id)
            self.agents_db.save()
            return AgentOutcome(agent_id, AgentStatus.BELOW_THRESHOLD, score=score, name=probe.signals.name)

        try:
            result = await self.engine.attest(probe, state)
        except AlreadyAttestedError:
            return AgentOutcome(agent_id, AgentStatus.SKIPPED, score=score, name=probe.signals.name)
        except AttestationError as e:
            logger.error("Attestation failed: %s", e)
            self.agents_db.save()
            return AgentOutcome(
                agent_id, AgentStatus.FAILED, score=score, name=probe.signals.name, error=str(e),
            )

        self.state_store.save(state)
        self.agents_db.set_attestation(agent_id, result.attestation_uid, result.ipfs_cid)
        self.agents_db.save()
        logger.info(
            "Attested #%s tx=%s attestation=%s",
            agent_id, format_tx_link(result.tx_hash), format_attestation_link(result.attestation_uid),
        )
        return AgentOutcome(
            agent_id, AgentStatus.ATTESTED, score=score, name=probe.signals.name, attestation=result,
        )
