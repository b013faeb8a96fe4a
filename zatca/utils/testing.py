# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Test Utilities for ZATCA

Provides mock responses, a scripted API client, key material and record
factories for testing without the network or a Frappe site.
"""

import base64
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from zatca.utils.config import Organization, SandboxCredentials, ZatcaConfig


@dataclass
class MockResponse:
    """Mock HTTP response"""
    status_code: int = 200
    content: bytes | str = b""
    headers: dict = field(default_factory=dict)
    text: str = field(init=False, default="")

    def __post_init__(self):
        if isinstance(self.content, (dict, list)):
            self.content = json.dumps(self.content)
        if isinstance(self.content, str):
            self.content = self.content.encode("utf-8")
        self.text = bytes(self.content).decode("utf-8")

    def json(self) -> Any:
        return json.loads(self.content)


class FakeZatcaClient:
    """
    Scripted stand-in for ZatcaClient.

    Usage:
        client = FakeZatcaClient()
        client.set_response("report", make_reporting_response())
        client.set_error("clear", SubmissionError("down", status_code=503))
    """

    METHODS = ("compliance_check", "report", "clear", "get_status")

    def __init__(self):
        self._responses: dict[str, list] = {}
        self._calls: dict[str, list] = {}

    def set_response(self, method: str, *responses: Any):
        """Queue responses (or exceptions); the last one repeats"""
        self._responses[method] = list(responses)

    def set_error(self, method: str, error: Exception):
        self._responses[method] = [error]

    def call_count(self, method: str) -> int:
        return len(self._calls.get(method, []))

    def get_calls(self, method: str) -> list:
        return self._calls.get(method, [])

    def _respond(self, method: str, argument):
        self._calls.setdefault(method, []).append(argument)
        queue = self._responses.get(method)
        if not queue:
            return self._default(method, argument)
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def _default(self, method: str, argument):
        if method == "clear":
            return make_clearance_response()
        if method == "report":
            return make_reporting_response()
        return {"status": "PASS"}

    def compliance_check(self, payload):
        return self._respond("compliance_check", payload)

    def report(self, payload):
        return self._respond("report", payload)

    def clear(self, payload):
        return self._respond("clear", payload)

    def get_status(self, uuid):
        return self._respond("get_status", uuid)


# Key material

@lru_cache(maxsize=None)
def generate_test_credentials(common_name: str = "Test Seller", days: int = 365) -> tuple[str, str]:
    """
    Create a self-signed ECDSA certificate.

    Returns:
        tuple: (private key PEM, certificate PEM)
    """
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "SA"),
    ])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=days))
        .sign(key, hashes.SHA256())
    )

    private_key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")
    certificate_pem = certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
    return private_key_pem, certificate_pem


def make_config(with_certificate: bool = True, **overrides) -> ZatcaConfig:
    """Sandbox configuration with inline test credentials and no retry delays"""
    sandbox = SandboxCredentials(certificate_id="TST-CERT", api_secret="secret")
    if with_certificate:
        private_key, certificate = generate_test_credentials()
        sandbox = SandboxCredentials(
            certificate=certificate,
            private_key=private_key,
            certificate_id="TST-CERT",
            api_secret="secret",
        )

    values = {
        "sandbox": sandbox,
        "organization": Organization(name="Test Seller LLC", tax_number="300000000000003"),
        "backoff": (0, 0, 0),
    }
    values.update(overrides)
    return ZatcaConfig(**values)


# Record factories

def make_invoice_record(
    record_id: int = 1,
    number: str = "INV-001",
    total: Any = 115,
    **kwargs
) -> dict:
    """Create a test invoice record with one 100.00 line at 15% VAT"""
    record = {
        "id": record_id,
        "number": number,
        "type": "invoice",
        "created_at": "2024-01-15 10:30:00",
        "currency_code": "SAR",
        "customer": {
            "name": "Test Buyer",
            "tax_number": None,
            "street": "King Fahd Road",
            "city": "Riyadh",
            "postal_code": "12345",
        },
        "items": [
            {"name": "Widget", "quantity": 1, "unit_price": 100, "vat_rate": 15},
        ],
        "sub_total": 100,
        "vat_amount": 15,
        "total": total,
    }
    record.update(kwargs)
    return record


def make_credit_note_record(
    record_id: int = 2,
    number: str = "CN-001",
    original_number: str | None = "INV-001",
    **kwargs
) -> dict:
    """Create a test credit note against an original invoice"""
    record = make_invoice_record(record_id=record_id, number=number)
    record["type"] = "credit_note"
    record["originalInvoice"] = {
        "number": original_number,
        "zatca_invoice_uuid": "3cf5ee18-ee25-44ea-a444-2c37ba7f28be",
        "issue_date": "2024-01-10",
    }
    record.update(kwargs)
    return record


def make_reporting_response(status: str = "REPORTED", request_id: str = "REQ-1", **kwargs) -> dict:
    """Create mock reporting response"""
    return {
        "reportingStatus": status,
        "requestID": request_id,
        "validationResults": {"status": "PASS", "warningMessages": [], "errorMessages": []},
        **kwargs
    }


def make_clearance_response(
    status: str = "CLEARED",
    request_id: str = "REQ-1",
    cleared_xml: bytes | None = None,
    **kwargs
) -> dict:
    """Create mock clearance response"""
    response = {
        "clearanceStatus": status,
        "requestID": request_id,
        "validationResults": {"status": "PASS", "warningMessages": [], "errorMessages": []},
        **kwargs
    }
    if cleared_xml is not None:
        response["clearedInvoice"] = base64.b64encode(cleared_xml).decode("ascii")
    return response
