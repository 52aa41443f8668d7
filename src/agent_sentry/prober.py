"""
agent_sentry.prober — Derive trust signals, the 0-100 score and the packed bitfield.

Score weights:
    valid registration   20
    active               20
    >= 1 service         15
    A2A service          10
    MCP service          10
    ENS service          10
    web endpoint alive   15

The signal bitfield stored on-chain uses a fixed bit per flag
(``SignalFlag``). Encoder and decoder share ``SIGNAL_FIELDS``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import IntEnum
from typing import Optional

import httpx

from agent_sentry.models import DESCRIPTION_MAX, AgentProbe, AgentRegistration, AgentSignals

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 5.0
MAX_SCORE = 100

SCORE_WEIGHTS = {
    "has_valid_registration": 20,
    "is_active": 20,
    "has_services": 15,
    "has_a2a": 10,
    "has_mcp": 10,
    "has_ens": 10,
    "web_endpoint_reachable": 15,
}


class SignalFlag(IntEnum):
    """Bit positions in the on-chain ``bytes32 signals`` field."""
    VALID_REGISTRATION = 0
    IS_ACTIVE = 1
    HAS_A2A = 2
    HAS_MCP = 3
    HAS_ENS = 4
    HAS_X402 = 5
    WEB_REACHABLE = 6
    # bit 7 is reserved for a verified-endpoint flag


SIGNAL_FIELDS: dict[SignalFlag, str] = {
    SignalFlag.VALID_REGISTRATION: "has_valid_registration",
    SignalFlag.IS_ACTIVE: "is_active",
    SignalFlag.HAS_A2A: "has_a2a",
    SignalFlag.HAS_MCP: "has_mcp",
    SignalFlag.HAS_ENS: "has_ens",
    SignalFlag.HAS_X402: "has_x402",
    SignalFlag.WEB_REACHABLE: "web_endpoint_reachable",
}


def calculate_score(signals: AgentSignals) -> int:
    """Additive weighted score, capped at 100."""
    score = 0
    if signals.has_valid_registration:
        score += SCORE_WEIGHTS["has_valid_registration"]
    if signals.is_active:
        score += SCORE_WEIGHTS["is_active"]
    if signals.service_count > 0:
        score += SCORE_WEIGHTS["has_services"]
    if signals.has_a2a:
        score += SCORE_WEIGHTS["has_a2a"]
    if signals.has_mcp:
        score += SCORE_WEIGHTS["has_mcp"]
    if signals.has_ens:
        score += SCORE_WEIGHTS["has_ens"]
    if signals.web_endpoint_reachable:
        score += SCORE_WEIGHTS["web_endpoint_reachable"]
    return min(MAX_SCORE, score)


def pack_signals(signals: AgentSignals) -> int:
    """Encode boolean signals into an integer (< 2**256); unused bits are zero."""
    flags = 0
    for flag, attr in SIGNAL_FIELDS.items():
        if getattr(signals, attr):
            flags |= 1 << flag
    return flags


def unpack_signals(value: int) -> dict[str, bool]:
    """Recover the boolean signals from a packed value."""
    if value < 0 or value >= 1 << 256:
        raise ValueError("signals value out of 256-bit range")
    return {attr: bool(value >> flag & 1) for flag, attr in SIGNAL_FIELDS.items()}


def signals_to_bytes32(value: int) -> bytes:
    return value.to_bytes(32, "big")


def signals_to_hex(value: int) -> str:
    return "0x" + f"{value:x}".rjust(64, "0")


async def probe_endpoint(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> bool:
    """HEAD the endpoint; True on a 2xx answer within the timeout."""
    if not url.startswith(("http://", "https://")):
        return False
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own:
                resp = await own.head(url)
        else:
            resp = await client.head(url, timeout=timeout)
        return resp.is_success
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        logger.debug("Endpoint probe failed for %s: %s", url, e)
        return False


async def derive_signals(
    registration: Optional[AgentRegistration],
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> AgentSignals:
    if registration is None:
        return AgentSignals()

    signals = AgentSignals(
        has_valid_registration=True,
        name=registration.name,
        description=registration.description[:DESCRIPTION_MAX] if registration.description else None,
        is_active=registration.active,
        service_count=len(registration.services),
        has_x402=registration.x402_support,
    )
    for svc in registration.services:
        if svc.name == "A2A":
            signals.has_a2a = True
        elif svc.name == "MCP":
            signals.has_mcp = True
        elif svc.name == "ENS":
            signals.has_ens = True
        elif svc.name == "web":
            signals.has_web = True
            # any reachable web service counts
            if not signals.web_endpoint_reachable:
                signals.web_endpoint_reachable = await probe_endpoint(
                    svc.endpoint, client=client, timeout=timeout,
                )
    return signals


async def probe_agent(
    agent_id: str,
    owner: str,
    uri: str,
    registration: Optional[AgentRegistration],
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> AgentProbe:
    """Build a probe snapshot for one agent."""
    signals = await derive_signals(registration, client=client, timeout=timeout)
    return AgentProbe(
        agent_id=agent_id,
        owner=owner,
        uri=uri,
        registration=registration,
        signals=signals,
        probed_at=datetime.now(timezone.utc).isoformat(),
    )
