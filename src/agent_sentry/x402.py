"""
agent_sentry.x402 — HTTP 402 payment challenge for paid trust reports.

Builds x402 ``PaymentRequirement`` objects and the 402 response body. The
sentry only gates on the presence of an ``X-Payment`` header; settling and
verifying the payment belongs to an external facilitator.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

X402_VERSION = 1
PAYMENT_HEADER = "X-Payment"
PAYMENT_REQUIRED_HEADER = "X-Payment-Required"


class PaymentScheme(Enum):
    """x402 settlement schemes."""
    EXACT = "exact"
    UPTO = "upto"


@dataclass
class PaymentRequirement:
    """x402 payment requirement returned in 402 responses.

    Amounts are strings in the asset's smallest unit (USDC: 6 decimals).
    """
    max_amount_required: str
    resource: str
    pay_to: str
    asset: str
    network: str = "base"
    scheme: PaymentScheme = PaymentScheme.EXACT
    description: str = ""
    mime_type: str = "application/json"
    max_timeout_seconds: int = 300
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "scheme": self.scheme.value,
            "network": self.network,
            "maxAmountRequired": self.max_amount_required,
            "resource": self.resource,
            "description": self.description,
            "mimeType": self.mime_type,
            "payTo": self.pay_to,
            "maxTimeoutSeconds": self.max_timeout_seconds,
            "asset": self.asset,
        }
        if self.extra:
            data["extra"] = self.extra
        return data

    def to_header(self) -> str:
        """Serialize to a base64 ``X-Payment-Required`` header value."""
        return base64.b64encode(json.dumps(self.to_dict()).encode()).decode()

    @classmethod
    def from_header(cls, header: str) -> "PaymentRequirement":
        data = json.loads(base64.b64decode(header))
        return cls(
            max_amount_required=data["maxAmountRequired"],
            resource=data["resource"],
            pay_to=data["payTo"],
            asset=data["asset"],
            network=data.get("network", "base"),
            scheme=PaymentScheme(data.get("scheme", "exact")),
            description=data.get("description", ""),
            mime_type=data.get("mimeType", "application/json"),
            max_timeout_seconds=int(data.get("maxTimeoutSeconds", 300)),
            extra=data.get("extra") or {},
        )


class ReportPricing:
    """Price list for the paid report endpoint."""

    def __init__(self, amount: str, pay_to: str, asset: str, network: str = "base"):
        if int(amount) < 0:
            raise ValueError("amount must be non-negative")
        self.amount = amount
        self.pay_to = pay_to
        self.asset = asset
        self.network = network

    def requirement(self, resource: str, description: str = "") -> PaymentRequirement:
        return PaymentRequirement(
            max_amount_required=self.amount,
            resource=resource,
            pay_to=self.pay_to,
            asset=self.asset,
            network=self.network,
            description=description or f"Access to {resource}",
        )


def payment_required_body(requirement: PaymentRequirement, error: str = "Payment Required") -> dict:
    """Standard x402 challenge body."""
    return {
        "x402Version": X402_VERSION,
        "error": error,
        "accepts": [requirement.to_dict()],
    }


def has_payment(header: Optional[str]) -> bool:
    return bool(header and header.strip())


def decode_payment_header(header: str) -> Optional[dict]:
    """Best-effort decode of an ``X-Payment`` header for logging."""
    try:
        data = json.loads(base64.b64decode(header, validate=True))
    except (binascii.Error, ValueError):
        return None
    return data if isinstance(data, dict) else None
