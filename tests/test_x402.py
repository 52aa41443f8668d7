"""Tests for agent_sentry.x402 — HTTP 402 payment challenge."""

import base64
import json

import pytest

from agent_sentry.x402 import (
    PaymentRequirement, PaymentScheme, ReportPricing,
    decode_payment_header, has_payment, payment_required_body,
)


class TestPaymentRequirement:
    def test_dict_uses_wire_names(self):
        req = PaymentRequirement(
            max_amount_required="10000",
            resource="/agent/1/full",
            pay_to="0xrecipient",
            asset="0xusdc",
        )
        data = req.to_dict()
        assert data["maxAmountRequired"] == "10000"
        assert data["payTo"] == "0xrecipient"
        assert data["scheme"] == "exact"
        assert data["mimeType"] == "application/json"
        assert "extra" not in data

    def test_header_roundtrip(self):
        req = PaymentRequirement(
            max_amount_required="500",
            resource="/agent/9/full",
            pay_to="0xabc",
            asset="0xusdc",
            scheme=PaymentScheme.UPTO,
            description="report",
            extra={"name": "USD Coin"},
        )
        parsed = PaymentRequirement.from_header(req.to_header())
        assert parsed == req

    def test_header_is_base64_json(self):
        req = PaymentRequirement("1", "/r", "0xa", "0xb")
        assert json.loads(base64.b64decode(req.to_header()))["resource"] == "/r"


class TestReportPricing:
    def test_requirement(self):
        pricing = ReportPricing(amount="10000", pay_to="0xrecipient", asset="0xusdc")
        req = pricing.requirement("/agent/5/full")
        assert req.max_amount_required == "10000"
        assert req.network == "base"
        assert req.description == "Access to /agent/5/full"

    def test_negative_amount(self):
        with pytest.raises(ValueError):
            ReportPricing(amount="-1", pay_to="0x", asset="0x")


class TestChallenge:
    def test_body(self):
        req = PaymentRequirement("10000", "/agent/1/full", "0xa", "0xb")
        body = payment_required_body(req)
        assert body["x402Version"] == 1
        assert body["error"] == "Payment Required"
        assert body["accepts"] == [req.to_dict()]

    def test_has_payment(self):
        assert has_payment("anything")
        assert not has_payment(None)
        assert not has_payment("")
        assert not has_payment("  ")

    def test_decode_payment_header(self):
        encoded = base64.b64encode(json.dumps({"scheme": "exact"}).encode()).decode()
        assert decode_payment_header(encoded) == {"scheme": "exact"}
        assert decode_payment_header("not base64!") is None
        assert decode_payment_header(base64.b64encode(b"[1, 2]").decode()) is None
