# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA QR Code Module

Builds the Tag-Length-Value payload printed on simplified invoices and
renders it as a PNG QR code (base64 data URI).

TLV layout: 1 byte tag, 1 byte length, UTF-8 value. Tags are emitted in
ascending order:

    1  Seller name
    2  Seller VAT number
    3  Issue timestamp (UTC, YYYY-MM-DDTHH:MM:SSZ)
    4  Total including VAT
    5  VAT total
    6  Invoice hash (when available)
    7  Signature value (when available)
    8  "CreditNote" (credit notes only)
    9  Original invoice number (credit notes only)
"""

import base64
import io
from dataclasses import dataclass
from datetime import timezone
from decimal import Decimal, ROUND_HALF_UP

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from zatca.api.document import CanonicalDocument
from zatca.utils.logging import get_logger

logger = get_logger("zatca.qr")

MAX_VALUE_LENGTH = 255
CREDIT_NOTE_MARKER = "CreditNote"

TAG_SELLER_NAME = 1
TAG_VAT_NUMBER = 2
TAG_TIMESTAMP = 3
TAG_TOTAL = 4
TAG_VAT_TOTAL = 5
TAG_INVOICE_HASH = 6
TAG_SIGNATURE = 7
TAG_CREDIT_NOTE = 8
TAG_ORIGINAL_NUMBER = 9


class TLVError(ValueError):
    """Malformed TLV payload"""
    pass


def encode_tlv(tag: int, value: str | bytes) -> bytes:
    """
    Encode a single TLV field.

    Values longer than 255 bytes do not fit the one-byte length and are
    truncated on a UTF-8 character boundary.

    Args:
        tag: Tag number (1-255)
        value: Field value

    Returns:
        bytes: tag + length + value
    """
    if not 0 < tag <= 255:
        raise TLVError(f"Tag out of range: {tag}")

    data = value if isinstance(value, bytes) else str(value).encode("utf-8")
    if len(data) > MAX_VALUE_LENGTH:
        logger.warning("TLV value truncated", tag=tag, length=len(data))
        data = data[:MAX_VALUE_LENGTH]
        if not isinstance(value, bytes):
            data = data.decode("utf-8", errors="ignore").encode("utf-8")

    return bytes([tag, len(data)]) + data


def decode_tlv(payload: bytes) -> list[tuple[int, str]]:
    """
    Decode a TLV payload.

    Args:
        payload: Raw TLV bytes (or its base64 text)

    Returns:
        list: (tag, value) pairs in payload order

    Raises:
        TLVError: If a length runs past the end of the payload
    """
    if isinstance(payload, str):
        payload = base64.b64decode(payload)

    fields = []
    position = 0
    while position < len(payload):
        if position + 2 > len(payload):
            raise TLVError(f"Truncated TLV header at offset {position}")
        tag = payload[position]
        length = payload[position + 1]
        start = position + 2
        end = start + length
        if end > len(payload):
            raise TLVError(f"TLV value for tag {tag} overruns payload")
        fields.append((tag, payload[start:end].decode("utf-8")))
        position = end
    return fields


def format_amount(value: Decimal | None) -> str:
    """Non-negative magnitude with exactly two decimals"""
    amount = abs(value or Decimal("0"))
    return str(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_timestamp(document: CanonicalDocument) -> str:
    issued_at = document.issued_at
    if issued_at.tzinfo is not None:
        issued_at = issued_at.astimezone(timezone.utc)
    return issued_at.strftime("%Y-%m-%dT%H:%M:%SZ")


def encode(
    document: CanonicalDocument,
    invoice_hash: str | None = None,
    signature: str | None = None
) -> bytes:
    """
    Build the TLV payload for a canonical document.

    Args:
        document: Canonical document
        invoice_hash: Base64 invoice hash (tag 6)
        signature: Base64 signature value (tag 7)

    Returns:
        bytes: Concatenated TLV fields
    """
    fields: list[tuple[int, str]] = [
        (TAG_SELLER_NAME, document.seller.name or ""),
        (TAG_VAT_NUMBER, document.seller.tax_number or ""),
        (TAG_TIMESTAMP, format_timestamp(document)),
        (TAG_TOTAL, format_amount(document.total)),
        (TAG_VAT_TOTAL, format_amount(document.total_vat)),
    ]

    if invoice_hash:
        fields.append((TAG_INVOICE_HASH, invoice_hash))
    if signature:
        fields.append((TAG_SIGNATURE, signature))

    if document.is_credit_note:
        fields.append((TAG_CREDIT_NOTE, CREDIT_NOTE_MARKER))
        if document.billing_reference and document.billing_reference.number:
            fields.append((TAG_ORIGINAL_NUMBER, document.billing_reference.number))

    return b"".join(encode_tlv(tag, value) for tag, value in fields)


def render_qr_image(payload: bytes, box_size: int = 10, border: int = 1) -> str:
    """
    Render the base64 TLV payload as a PNG QR code.

    Args:
        payload: Raw TLV bytes
        box_size: Pixels per module
        border: Quiet zone in modules

    Returns:
        str: data:image/png;base64,... URI
    """
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(base64.b64encode(payload).decode("ascii"))
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@dataclass
class QRPayload:
    """TLV payload and its rendered image"""
    tlv: bytes
    image: str

    @property
    def text(self) -> str:
        """Base64 TLV; the string actually encoded in the QR code"""
        return base64.b64encode(self.tlv).decode("ascii")


class QRCodeGenerator:
    """QR code generator for canonical documents"""

    def __init__(self, box_size: int = 10, border: int = 1):
        self.box_size = box_size
        self.border = border

    def generate(
        self,
        document: CanonicalDocument,
        invoice_hash: str | None = None,
        signature: str | None = None
    ) -> QRPayload:
        tlv = encode(document, invoice_hash, signature)
        image = render_qr_image(tlv, box_size=self.box_size, border=self.border)
        return QRPayload(tlv=tlv, image=image)


def get_qr_generator() -> QRCodeGenerator:
    """Get QR code generator instance"""
    return QRCodeGenerator()
