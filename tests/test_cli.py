"""Tests for the agent-sentry CLI."""

import json

import pytest

from agent_sentry.cli import build_parser, main
from agent_sentry.config import REGISTRY_ADDRESS
from agent_sentry.ledger import AttestationPayload, encode_attestation_data
from agent_sentry.state import SentryState, StateStore


class TestParser:
    def test_commands(self):
        parser = build_parser()
        assert parser.parse_args(["run"]).command == "run"
        assert parser.parse_args(["backfill", "5000"]).blocks == 5000
        assert parser.parse_args(["backfill"]).blocks == 100_000
        args = parser.parse_args(["serve", "--port", "9000"])
        assert args.port == 9000 and args.host == "0.0.0.0"
        assert parser.parse_args(["revoke", "0x1", "0x2"]).uids == ["0x1", "0x2"]

    def test_no_command_exits(self):
        with pytest.raises(SystemExit):
            main([])


class TestScore:
    def test_score_file(self, tmp_path, capsys):
        doc = tmp_path / "agent.json"
        doc.write_text(json.dumps({
            "name": "Cli Agent", "active": True,
            "services": [{"name": "MCP", "endpoint": "https://mcp.example"}],
        }))
        result = main(["--json", "score", str(doc), "--agent-id", "12"])
        assert result["score"] == 20 + 20 + 15 + 10
        assert result["signals"]["hasMCP"] is True
        assert result["packed"] == "0x" + f"{0b1011:064x}"
        assert json.loads(capsys.readouterr().out)["agentId"] == "12"

    def test_human_output(self, tmp_path, capsys):
        doc = tmp_path / "agent.json"
        doc.write_text(json.dumps({"name": "Plain"}))
        main(["score", str(doc)])
        out = capsys.readouterr().out
        assert "Plain" in out
        assert "score 20" in out

    def test_missing_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit):
            main(["score", str(tmp_path / "nope.json")])
        assert "not found" in capsys.readouterr().err


class TestDecode:
    def test_decode(self):
        data = encode_attestation_data(AttestationPayload(
            agent_id=31, registry_address=REGISTRY_ADDRESS, verified_at=1_700_000_000,
            score=65, signals=0b0000111,
        ))
        result = main(["--json", "decode", "0x" + data.hex()])
        assert result["agentId"] == 31
        assert result["score"] == 65
        assert result["signals"]["is_active"] is True
        assert result["signals"]["has_mcp"] is False

    def test_bad_hex(self, capsys):
        with pytest.raises(SystemExit):
            main(["decode", "0xzz"])
        assert "Error" in capsys.readouterr().err


class TestStatus:
    def test_status(self, tmp_path):
        state = SentryState(last_scanned_block=123)
        state.mark_attested("4")
        StateStore(tmp_path / "state.json").save(state)

        result = main(["--json", "-d", str(tmp_path), "status"])
        assert result["lastScannedBlock"] == 123
        assert result["attestedAgents"] == 1
        assert result["knownAgents"] == 0

    def test_status_empty_dir(self, tmp_path, capsys):
        result = main(["-d", str(tmp_path), "status"])
        assert result["lastRun"] == ""
        assert "never" in capsys.readouterr().out


class TestSigningCommands:
    def test_revoke_without_key(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("SENTRY_PRIVATE_KEY", raising=False)
        with pytest.raises(SystemExit):
            main(["-d", str(tmp_path), "revoke", "0x" + "12" * 32])
        assert "signing key" in capsys.readouterr().err
