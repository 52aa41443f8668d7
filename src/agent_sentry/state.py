"""
agent_sentry.state — Durable checkpoint, attested-set and agent database.

Three JSON files, each owned by a single sentry process:
    state.json          — last scanned block, attested agent ids, run stats
    agents.json         — denormalized per-agent records for the query API
    ipfs-registry.json  — attestation UID -> evidence CID

All writes go through ``atomic_write_json`` (temp file + rename) so a crash
never leaves a torn file behind. Unreadable files fall back to empty state.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from agent_sentry.models import AgentProbe, AgentRecord

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def atomic_write_json(path: Path, data: dict) -> None:
    """Write JSON to ``path`` via a temp file in the same directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _read_json(path: Path) -> Optional[dict]:
    """Read a JSON object, or None if the file is missing or malformed."""
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Unreadable state file %s, using defaults: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Malformed state file %s, using defaults", path)
        return None
    return data


# ─── Sentry state ──────────────────────────────────────────────────

@dataclass
class RunStats:
    total_scanned: int = 0
    total_attested: int = 0


@dataclass
class SentryState:
    """Process-wide checkpoint.

    ``attested_agents`` only ever grows. ``evaluated_agents`` holds agents
    that scored below the threshold; they are final and not probed again.
    """
    last_scanned_block: int = 0
    attested_agents: set[str] = field(default_factory=set)
    evaluated_agents: set[str] = field(default_factory=set)
    last_run: str = ""
    stats: RunStats = field(default_factory=RunStats)

    def is_attested(self, agent_id: str) -> bool:
        return agent_id in self.attested_agents

    def is_settled(self, agent_id: str) -> bool:
        """True once an agent needs no further work."""
        return agent_id in self.attested_agents or agent_id in self.evaluated_agents

    def mark_attested(self, agent_id: str) -> bool:
        """Add to the attested-set. Returns False if it was already there."""
        if agent_id in self.attested_agents:
            return False
        self.attested_agents.add(agent_id)
        self.stats.total_attested += 1
        return True

    def mark_evaluated(self, agent_id: str) -> None:
        if agent_id not in self.attested_agents:
            self.evaluated_agents.add(agent_id)

    def advance_checkpoint(self, block: int) -> None:
        """Move the checkpoint forward; lower values are ignored."""
        if block > self.last_scanned_block:
            self.last_scanned_block = block

    def to_dict(self) -> dict:
        return {
            "lastScannedBlock": self.last_scanned_block,
            "attestedAgents": sorted(self.attested_agents, key=_agent_sort_key),
            "evaluatedAgents": sorted(self.evaluated_agents, key=_agent_sort_key),
            "lastRun": self.last_run,
            "stats": {
                "totalScanned": self.stats.total_scanned,
                "totalAttested": self.stats.total_attested,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SentryState":
        stats = data.get("stats") or {}
        for key in ("attestedAgents", "evaluatedAgents"):
            if not isinstance(data.get(key, []), list):
                raise ValueError(f"{key} must be a list")
        return cls(
            last_scanned_block=int(data.get("lastScannedBlock", 0)),
            attested_agents={str(a) for a in data.get("attestedAgents", [])},
            evaluated_agents={str(a) for a in data.get("evaluatedAgents", [])},
            last_run=str(data.get("lastRun", "")),
            stats=RunStats(
                total_scanned=int(stats.get("totalScanned", 0)),
                total_attested=int(stats.get("totalAttested", 0)),
            ),
        )


def _agent_sort_key(agent_id: str):
    return (0, int(agent_id), "") if agent_id.isdigit() else (1, 0, agent_id)


class StateStore:
    """Loads and saves ``SentryState`` at a fixed path."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> SentryState:
        data = _read_json(self.path)
        if data is None:
            return SentryState()
        try:
            return SentryState.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning("Malformed state in %s, using defaults: %s", self.path, e)
            return SentryState()

    def save(self, state: SentryState) -> None:
        state.last_run = _now_iso()
        atomic_write_json(self.path, state.to_dict())


# ─── Agents database ───────────────────────────────────────────────

class AgentsDatabase:
    """agentId -> AgentRecord. Records are added and updated, never deleted."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._agents: dict[str, AgentRecord] = {}
        self.updated_at = ""
        self.load()

    def load(self) -> None:
        self._agents = {}
        data = _read_json(self.path)
        if data is None:
            return
        self.updated_at = str(data.get("updatedAt", ""))
        agents = data.get("agents") or {}
        if not isinstance(agents, dict):
            logger.warning("Ignoring agents file %s: 'agents' is not an object", self.path)
            return
        for agent_id, raw in agents.items():
            try:
                self._agents[str(agent_id)] = AgentRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed agent record %s: %s", agent_id, e)

    def save(self) -> None:
        self.updated_at = _now_iso()
        atomic_write_json(self.path, {
            "updatedAt": self.updated_at,
            "agents": {aid: rec.to_dict() for aid, rec in self._agents.items()},
        })

    def get(self, agent_id: str) -> Optional[AgentRecord]:
        return self._agents.get(agent_id)

    def all(self) -> list[AgentRecord]:
        return list(self._agents.values())

    def __len__(self) -> int:
        return len(self._agents)

    def upsert_probe(self, probe: AgentProbe, score: int) -> AgentRecord:
        """Store the latest probe. An existing attestation reference is kept."""
        existing = self._agents.get(probe.agent_id)
        record = AgentRecord(
            token_id=probe.agent_id,
            name=probe.signals.name,
            description=probe.signals.description,
            owner=probe.owner,
            score=score,
            signals=probe.signals,
            probed_at=probe.probed_at,
            attestation_id=existing.attestation_id if existing else None,
            ipfs_cid=existing.ipfs_cid if existing else None,
        )
        self._agents[probe.agent_id] = record
        return record

    def set_attestation(self, agent_id: str, uid: str, cid: Optional[str] = None) -> None:
        record = self._agents.get(agent_id)
        if record is None:
            raise KeyError(f"Agent {agent_id} not in database")
        record.attestation_id = uid
        if cid:
            record.ipfs_cid = cid


# ─── UID -> CID registry ───────────────────────────────────────────

class CidRegistry:
    """Maps attestation UIDs to the CID of their uploaded evidence."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict:
        data = _read_json(self.path)
        if data is None or not isinstance(data.get("entries"), dict):
            return {"updatedAt": _now_iso(), "entries": {}}
        return data

    def register(self, attestation_uid: str, agent_id: str, cid: str) -> bool:
        """Record a CID for a UID. Entries are written once."""
        registry = self._load()
        if attestation_uid in registry["entries"]:
            return False
        registry["entries"][attestation_uid] = {
            "cid": cid,
            "agentId": agent_id,
            "uploadedAt": _now_iso(),
        }
        registry["updatedAt"] = _now_iso()
        atomic_write_json(self.path, registry)
        return True

    def get(self, attestation_uid: str) -> Optional[str]:
        entry = self._load()["entries"].get(attestation_uid)
        return entry.get("cid") if isinstance(entry, dict) else None

    def entries(self) -> dict[str, dict]:
        return dict(self._load()["entries"])


__all__ = [
    "atomic_write_json",
    "RunStats",
    "SentryState",
    "StateStore",
    "AgentsDatabase",
    "CidRegistry",
]
