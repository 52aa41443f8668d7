"""agent_sentry — Watches the ERC-8004 agent registry and attests trustworthy agents on EAS."""

from agent_sentry.config import Settings, VERSION
from agent_sentry.models import (
    AgentStatus, RegistryEvent, AgentRegistration, AgentService,
    AgentSignals, AgentProbe, AttestationResult, AgentRecord,
)
from agent_sentry.state import (
    SentryState, StateStore, AgentsDatabase, CidRegistry, atomic_write_json,
)
from agent_sentry.chain import JsonRpcChainReader, RpcError
from agent_sentry.registry import RegistryScanner, fetch_registration, iter_block_windows
from agent_sentry.prober import (
    SignalFlag, calculate_score, pack_signals, unpack_signals, probe_agent,
)
from agent_sentry.ledger import (
    AttestationPayload, EasLedger, LedgerError,
    encode_attestation_data, decode_attestation_data,
)
from agent_sentry.ipfs import FallbackUploader, PinataUploader, KuboUploader, UploadError
from agent_sentry.attester import (
    AttestationEngine, AttestationError, AlreadyAttestedError, RateGate,
)
from agent_sentry.pipeline import SentryRunner, RunReport, AgentOutcome

__version__ = VERSION

__all__ = [
    "Settings", "VERSION",
    "AgentStatus", "RegistryEvent", "AgentRegistration", "AgentService",
    "AgentSignals", "AgentProbe", "AttestationResult", "AgentRecord",
    "SentryState", "StateStore", "AgentsDatabase", "CidRegistry", "atomic_write_json",
    "JsonRpcChainReader", "RpcError",
    "RegistryScanner", "fetch_registration", "iter_block_windows",
    "SignalFlag", "calculate_score", "pack_signals", "unpack_signals", "probe_agent",
    "AttestationPayload", "EasLedger", "LedgerError",
    "encode_attestation_data", "decode_attestation_data",
    "FallbackUploader", "PinataUploader", "KuboUploader", "UploadError",
    "AttestationEngine", "AttestationError", "AlreadyAttestedError", "RateGate",
    "SentryRunner", "RunReport", "AgentOutcome",
]
