#!/usr/bin/env python3
"""
agent-sentry CLI — Batch runs, backfills and maintenance for the sentry.

Commands:
    run       - Scan new registrations, probe, score and attest
    backfill  - Same pipeline over N blocks below the chain head
    serve     - Start the trust query API
    score     - Score a local registration JSON file (offline)
    decode    - Decode raw attestation data
    revoke    - Revoke attestations by UID (duplicate clean-up)
    status    - Show persisted state
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from agent_sentry.config import Settings, format_tx_link


def _output(data: dict, args: argparse.Namespace, human_fn=None):
    """Output data as JSON or pretty-printed."""
    if getattr(args, 'json', False):
        print(json.dumps(data, indent=2, default=str))
    elif human_fn:
        human_fn(data)
    else:
        print(json.dumps(data, indent=2, default=str))


def _settings(args: argparse.Namespace) -> Settings:
    from agent_sentry.security import setup_structured_logging

    settings = Settings.from_env()
    if getattr(args, 'data_dir', None):
        settings.data_dir = Path(args.data_dir)
    setup_structured_logging(settings.log_level)
    return settings


def _build_ledger(settings: Settings):
    from agent_sentry.ledger import EasLedger

    return EasLedger(
        settings.base_rpc_urls[0],
        settings.private_key,
        settings.eas_address,
        settings.schema_uid,
    )


async def _run_pipeline(settings: Settings, blocks_back: Optional[int] = None) -> dict:
    import httpx

    from agent_sentry.attester import AttestationEngine
    from agent_sentry.chain import JsonRpcChainReader
    from agent_sentry.ipfs import build_uploader
    from agent_sentry.pipeline import SentryRunner
    from agent_sentry.registry import RegistryScanner
    from agent_sentry.state import AgentsDatabase, CidRegistry, StateStore

    async with httpx.AsyncClient(follow_redirects=True) as client:
        chain = JsonRpcChainReader(settings.eth_rpc_urls, http_client=client)
        scanner = RegistryScanner(
            chain,
            settings.registry_address,
            chunk_size=settings.chunk_size,
            gateway=settings.ipfs_gateway,
            http_client=client,
        )
        engine = AttestationEngine(
            _build_ledger(settings),
            registry_address=settings.registry_address,
            schema_uid=settings.schema_uid,
            uploader=build_uploader(settings),
            cid_registry=CidRegistry(settings.cid_registry_path),
            min_interval=settings.attest_interval,
        )
        runner = SentryRunner(
            settings,
            chain=chain,
            scanner=scanner,
            engine=engine,
            state_store=StateStore(settings.state_path),
            agents_db=AgentsDatabase(settings.agents_path),
            http_client=client,
        )
        if blocks_back is None:
            report = await runner.run()
        else:
            report = await runner.backfill(blocks_back)
    return report.to_dict()


def _print_report(d: dict):
    print(f"📡 Blocks {d['fromBlock']} → {d['toBlock']}")
    print(f"   Registrations: {d['eventsFound']} (new: {d['newEvents']}, deferred: {d['deferred']})")
    for o in d['outcomes']:
        line = f"   #{o['agentId']} {o['name'] or 'Unknown'} — {o['status']}"
        if o['score'] is not None:
            line += f" (score {o['score']})"
        if o.get('attestation'):
            line += f"\n      TX: {format_tx_link(o['attestation']['txHash'])}"
        if o.get('error'):
            line += f"\n      Error: {o['error']}"
        print(line)
    print(f"✅ Attested: {d['attested']}  Failed: {d['failed']}  Checkpoint: {d['checkpoint']}")


# ─── Commands ──────────────────────────────────────────────────────

def cmd_run(args):
    """One incremental pipeline run."""
    result = asyncio.run(_run_pipeline(_settings(args)))
    _output(result, args, _print_report)
    return result


def cmd_backfill(args):
    """Scan historical blocks and attest what was missed."""
    if args.blocks < 1:
        raise ValueError("blocks must be positive")
    result = asyncio.run(_run_pipeline(_settings(args), blocks_back=args.blocks))
    _output(result, args, _print_report)
    return result


def cmd_serve(args):
    """Run the query API with uvicorn."""
    import uvicorn

    from agent_sentry.api import create_app

    uvicorn.run(create_app(_settings(args)), host=args.host, port=args.port)


def cmd_score(args):
    """Offline score for a registration document."""
    from agent_sentry.models import AgentRegistration
    from agent_sentry.prober import calculate_score, pack_signals, probe_agent, signals_to_hex

    if args.file == '-':
        doc = json.load(sys.stdin)
    else:
        with open(args.file) as f:
            doc = json.load(f)

    registration = AgentRegistration.parse(doc)
    probe = asyncio.run(probe_agent(args.agent_id, "", args.file, registration))
    result = {
        "agentId": args.agent_id,
        "score": calculate_score(probe.signals),
        "signals": probe.signals.to_dict(),
        "packed": signals_to_hex(pack_signals(probe.signals)),
    }

    def human(d):
        print(f"🔍 {d['signals']['name'] or 'Unknown'}: score {d['score']}")
        for key, value in d['signals'].items():
            print(f"   {key}: {value}")
        print(f"   packed: {d['packed']}")

    _output(result, args, human)
    return result


def cmd_decode(args):
    """Decode raw attestation data through the canonical codec."""
    from agent_sentry.ledger import decode_attestation_data
    from agent_sentry.prober import unpack_signals

    payload = decode_attestation_data(bytes.fromhex(args.data.removeprefix("0x")))
    result = {
        "agentId": payload.agent_id,
        "registry": payload.registry_address,
        "verifiedAt": payload.verified_at,
        "score": payload.score,
        "signals": unpack_signals(payload.signals),
    }
    _output(result, args)
    return result


def cmd_revoke(args):
    """Revoke attestations, spaced like regular submissions."""
    from agent_sentry.attester import AttestationEngine
    from agent_sentry.ledger import LedgerError

    settings = _settings(args)
    engine = AttestationEngine(
        _build_ledger(settings),
        registry_address=settings.registry_address,
        schema_uid=settings.schema_uid,
        min_interval=settings.attest_interval,
    )

    async def revoke_all():
        revoked, failed = [], []
        for uid in args.uids:
            try:
                tx = await engine.revoke(uid)
                revoked.append({"uid": uid, "txHash": tx})
            except LedgerError as e:
                failed.append({"uid": uid, "error": str(e)})
        return {"revoked": revoked, "failed": failed}

    result = asyncio.run(revoke_all())

    def human(d):
        for r in d['revoked']:
            print(f"✓ Revoked {r['uid'][:18]}... TX: {r['txHash'][:18]}...")
        for r in d['failed']:
            print(f"✗ Failed {r['uid'][:18]}...: {r['error'][:60]}")
        print(f"\n✅ Done! Revoked: {len(d['revoked'])}, Failed: {len(d['failed'])}")

    _output(result, args, human)
    return result


def cmd_status(args):
    """Summarize persisted state."""
    from agent_sentry.state import AgentsDatabase, StateStore

    settings = _settings(args)
    state = StateStore(settings.state_path).load()
    agents = AgentsDatabase(settings.agents_path)
    result = {
        "lastScannedBlock": state.last_scanned_block,
        "lastRun": state.last_run,
        "attestedAgents": len(state.attested_agents),
        "knownAgents": len(agents),
        "totalScanned": state.stats.total_scanned,
        "totalAttested": state.stats.total_attested,
    }

    def human(d):
        print(f"📊 Last scanned block: {d['lastScannedBlock']}")
        print(f"   Last run:           {d['lastRun'] or 'never'}")
        print(f"   Attested agents:    {d['attestedAgents']}")
        print(f"   Known agents:       {d['knownAgents']}")

    _output(result, args, human)
    return result


# ─── Parser ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-sentry",
        description="agent-sentry — registry watcher and trust attester",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Machine-readable JSON output")
    parser.add_argument("-d", "--data-dir", help="Directory for state and agent files")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    sub.add_parser("run", help="Incremental scan, probe and attest")

    p = sub.add_parser("backfill", help="Scan historical blocks")
    p.add_argument("blocks", type=int, nargs="?", default=100_000, help="Blocks to look back")

    p = sub.add_parser("serve", help="Start the query API")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=3402)

    p = sub.add_parser("score", help="Score a registration JSON file")
    p.add_argument("file", help="Registration JSON file (- for stdin)")
    p.add_argument("--agent-id", default="0", help="Agent ID to report")

    p = sub.add_parser("decode", help="Decode raw attestation data")
    p.add_argument("data", help="Hex-encoded attestation data")

    p = sub.add_parser("revoke", help="Revoke attestations by UID")
    p.add_argument("uids", nargs="+", help="Attestation UIDs")

    sub.add_parser("status", help="Show persisted state")

    return parser


def main(argv: Optional[list[str]] = None) -> Optional[dict]:
    """CLI entry point. Returns result dict for testing."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "run": cmd_run,
        "backfill": cmd_backfill,
        "serve": cmd_serve,
        "score": cmd_score,
        "decode": cmd_decode,
        "revoke": cmd_revoke,
        "status": cmd_status,
    }

    try:
        return commands[args.command](args)
    except FileNotFoundError as e:
        print(f"❌ File not found: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
