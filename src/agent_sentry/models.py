"""
agent_sentry.models — Records passed between the scan, probe and attest stages.

Every persisted record round-trips through ``to_dict()`` / ``from_dict()``
using the camelCase keys of the JSON files on disk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


DESCRIPTION_MAX = 200


class AgentStatus(Enum):
    """Per-agent position in a pipeline run."""
    BELOW_THRESHOLD = "below_threshold"
    ATTESTED = "attested"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class RegistryEvent:
    """A mint (transfer from the zero address) on the agent registry."""
    agent_id: str
    owner: str
    block: int
    tx_hash: str

    def to_dict(self) -> dict:
        return {
            "agentId": self.agent_id,
            "owner": self.owner,
            "block": self.block,
            "txHash": self.tx_hash,
        }


@dataclass
class AgentService:
    name: str
    endpoint: str = ""
    version: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"name": self.name, "endpoint": self.endpoint}
        if self.version is not None:
            d["version"] = self.version
        return d


@dataclass
class AgentRegistration:
    """Off-chain registration document referenced by the agent's token URI."""
    name: Optional[str] = None
    active: bool = False
    description: Optional[str] = None
    services: list[AgentService] = field(default_factory=list)
    x402_support: bool = False
    type: Optional[str] = None

    @classmethod
    def parse(cls, obj: Any) -> Optional["AgentRegistration"]:
        """Validate an untrusted JSON document.

        Any JSON object counts as a registration; fields of the wrong type
        are dropped. Returns None for anything that is not an object.
        """
        if not isinstance(obj, dict):
            return None
        name = obj.get("name")
        if not isinstance(name, str):
            name = None

        description = obj.get("description")
        if not isinstance(description, str):
            description = None

        services: list[AgentService] = []
        raw_services = obj.get("services")
        if isinstance(raw_services, list):
            for svc in raw_services:
                if not isinstance(svc, dict) or not isinstance(svc.get("name"), str):
                    continue
                endpoint = svc.get("endpoint")
                version = svc.get("version")
                services.append(AgentService(
                    name=svc["name"],
                    endpoint=endpoint if isinstance(endpoint, str) else "",
                    version=version if isinstance(version, str) else None,
                ))

        doc_type = obj.get("type")
        return cls(
            name=name,
            active=obj.get("active") is True,
            description=description,
            services=services,
            x402_support=obj.get("x402Support") is True,
            type=doc_type if isinstance(doc_type, str) else None,
        )

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "name": self.name,
            "active": self.active,
            "services": [s.to_dict() for s in self.services],
            "x402Support": self.x402_support,
        }
        if self.description is not None:
            d["description"] = self.description
        if self.type is not None:
            d["type"] = self.type
        return d


@dataclass
class AgentSignals:
    """Signals derived from a registration plus a liveness probe."""
    has_valid_registration: bool = False
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = False
    service_count: int = 0
    has_a2a: bool = False
    has_mcp: bool = False
    has_ens: bool = False
    has_x402: bool = False
    has_web: bool = False
    web_endpoint_reachable: bool = False

    _KEYS = {
        "has_valid_registration": "hasValidRegistration",
        "name": "name",
        "description": "description",
        "is_active": "isActive",
        "service_count": "serviceCount",
        "has_a2a": "hasA2A",
        "has_mcp": "hasMCP",
        "has_ens": "hasENS",
        "has_x402": "hasX402",
        "has_web": "hasWeb",
        "web_endpoint_reachable": "webEndpointReachable",
    }

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in self._KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "AgentSignals":
        kwargs = {attr: data[key] for attr, key in cls._KEYS.items() if key in data}
        return cls(**kwargs)


@dataclass
class AgentProbe:
    """One probe snapshot of an agent."""
    agent_id: str
    owner: str
    uri: str
    registration: Optional[AgentRegistration]
    signals: AgentSignals
    probed_at: str

    def to_dict(self) -> dict:
        return {
            "agentId": self.agent_id,
            "owner": self.owner,
            "uri": self.uri,
            "registration": self.registration.to_dict() if self.registration else None,
            "signals": self.signals.to_dict(),
            "probedAt": self.probed_at,
        }


@dataclass
class AttestationResult:
    agent_id: str
    tx_hash: str
    attestation_uid: str
    score: int
    timestamp: int
    ipfs_cid: Optional[str] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "agentId": self.agent_id,
            "txHash": self.tx_hash,
            "attestationUID": self.attestation_uid,
            "score": self.score,
            "timestamp": self.timestamp,
        }
        if self.ipfs_cid:
            d["ipfsCid"] = self.ipfs_cid
        return d


@dataclass
class AgentRecord:
    """Denormalized row of the agents database served by the query API."""
    token_id: str
    name: Optional[str]
    description: Optional[str]
    owner: str
    score: int
    signals: AgentSignals
    probed_at: str
    attestation_id: Optional[str] = None
    ipfs_cid: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "tokenId": self.token_id,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "score": self.score,
            "signals": self.signals.to_dict(),
            "probedAt": self.probed_at,
            "attestationId": self.attestation_id,
            "ipfsCid": self.ipfs_cid,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AgentRecord":
        return cls(
            token_id=str(data["tokenId"]),
            name=data.get("name"),
            description=data.get("description"),
            owner=data.get("owner", ""),
            score=int(data.get("score", 0)),
            signals=AgentSignals.from_dict(data.get("signals") or {}),
            probed_at=data.get("probedAt", ""),
            attestation_id=data.get("attestationId"),
            ipfs_cid=data.get("ipfsCid"),
        )
