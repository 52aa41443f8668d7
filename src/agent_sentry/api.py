"""
agent_sentry API — Read-only trust queries over the sentry's agent database.

Endpoints:
  GET /health               — Health check
  GET /stats                — Registry statistics
  GET /agent/{id}           — Free preview (identity, score, attestation presence)
  GET /agent/{id}/full      — Full report, gated behind an x402 payment header

Data files are re-read on each request; the batch job writes them.
"""

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from agent_sentry.config import VERSION, Settings, format_attestation_link
from agent_sentry.models import AgentRecord
from agent_sentry.security import apply_security, limiter
from agent_sentry.state import AgentsDatabase, StateStore
from agent_sentry.x402 import (
    PAYMENT_HEADER,
    PAYMENT_REQUIRED_HEADER,
    ReportPricing,
    decode_payment_header,
    has_payment,
    payment_required_body,
)

logger = logging.getLogger(__name__)

PREVIEW_NOTE = "Full report requires x402 payment. See X-Payment-Required header on /agent/:id/full"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "Agent Sentry"
    version: str = VERSION
    endpoints: dict[str, str] = {}


class AgentPreview(BaseModel):
    tokenId: str
    name: Optional[str] = None
    score: int
    attested: bool
    probedAt: str


class AgentFullReport(BaseModel):
    tokenId: str
    name: Optional[str] = None
    description: Optional[str] = None
    owner: str
    score: int
    signals: dict
    attestationId: Optional[str] = None
    ipfsCid: Optional[str] = None
    probedAt: str
    attestationLink: Optional[str] = None


def preview_of(agent: AgentRecord) -> dict:
    body = AgentPreview(
        tokenId=agent.token_id,
        name=agent.name,
        score=agent.score,
        attested=bool(agent.attestation_id),
        probedAt=agent.probed_at,
    ).model_dump()
    body["_note"] = PREVIEW_NOTE
    return body


def full_report_of(agent: AgentRecord) -> dict:
    return AgentFullReport(
        tokenId=agent.token_id,
        name=agent.name,
        description=agent.description,
        owner=agent.owner,
        score=agent.score,
        signals=agent.signals.to_dict(),
        attestationId=agent.attestation_id,
        ipfsCid=agent.ipfs_cid,
        probedAt=agent.probed_at,
        attestationLink=format_attestation_link(agent.attestation_id) if agent.attestation_id else None,
    ).model_dump()


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter()


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _load_agent(request: Request, agent_id: str) -> AgentRecord:
    if not (agent_id.isascii() and agent_id.isdigit()):
        raise HTTPException(status_code=404, detail="Agent not found")
    agent = AgentsDatabase(_settings(request).agents_path).get(str(int(agent_id)))
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@router.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(endpoints={
        "/agent/:id": "Free preview of agent trust data",
        "/agent/:id/full": "Full trust report (x402 payment required)",
        "/stats": "Registry statistics",
    })


@router.get("/stats")
@limiter.limit("60/minute")
async def stats(request: Request):
    settings = _settings(request)
    state = StateStore(settings.state_path).load()
    agents = AgentsDatabase(settings.agents_path)
    return {
        "totalAgents": len(agents),
        "attestedAgents": len(state.attested_agents),
        "lastScannedBlock": state.last_scanned_block,
        "lastRun": state.last_run,
        "schema": settings.schema_uid,
        "operator": {"wallet": settings.pay_to},
    }


@router.get("/agent/{agent_id}")
@limiter.limit("60/minute")
async def agent_preview(agent_id: str, request: Request):
    """Free preview: identity, score and whether an attestation exists."""
    return preview_of(_load_agent(request, agent_id))


@router.get("/agent/{agent_id}/full")
@limiter.limit("60/minute")
async def agent_full(agent_id: str, request: Request):
    """Full report. Without a payment header, answer with an x402 challenge."""
    agent = _load_agent(request, agent_id)
    payment = request.headers.get(PAYMENT_HEADER)

    if not has_payment(payment):
        pricing: ReportPricing = request.app.state.pricing
        requirement = pricing.requirement(
            resource=f"/agent/{agent.token_id}/full",
            description=f"Full trust report for agent #{agent.token_id} ({agent.name or 'unnamed'})",
        )
        return JSONResponse(
            status_code=402,
            content=payment_required_body(requirement),
            headers={PAYMENT_REQUIRED_HEADER: requirement.to_header()},
        )

    # Verification is the facilitator's job; presence is enough here.
    decoded = decode_payment_header(payment)
    logger.info(
        "x402 payment header received for agent #%s", agent.token_id,
        extra={"payment_scheme": decoded.get("scheme", "") if decoded else "opaque"},
    )
    return full_report_of(agent)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create the query API bound to a data directory."""
    settings = settings or Settings.from_env()
    app = FastAPI(
        title="Agent Sentry API",
        description="Trust queries for registry agents with x402-gated full reports.",
        version=VERSION,
    )
    app.state.settings = settings
    app.state.pricing = ReportPricing(
        amount=settings.price_full_report,
        pay_to=settings.pay_to,
        asset=settings.payment_asset,
        network=settings.payment_network,
    )
    apply_security(app)
    app.include_router(router)
    return app
