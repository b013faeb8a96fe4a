# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Canonical Document

Normalized, structurally uniform projection of an invoice or credit note.
Everything downstream (XML, QR, submission) reads these types only.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any


TYPE_CODE_INVOICE = "388"
TYPE_CODE_CREDIT_NOTE = "381"
TYPE_CODE_DEBIT_NOTE = "383"

TYPE_CODES = (TYPE_CODE_INVOICE, TYPE_CODE_CREDIT_NOTE, TYPE_CODE_DEBIT_NOTE)


@dataclass
class Party:
    """Seller or buyer"""
    name: str | None = None
    tax_number: str | None = None
    address: str | None = None
    street: str | None = None
    building_number: str | None = None
    postal_code: str | None = None
    city: str | None = None
    district: str | None = None
    additional_number: str | None = None
    region: str | None = None
    country_code: str = "SA"


@dataclass
class LineItem:
    name: str
    quantity: Decimal
    price: Decimal
    line_extension_amount: Decimal
    unit_code: str = "EA"
    price_inclusive: Decimal | None = None
    discount: Decimal = Decimal("0")
    discount_reason: str | None = None
    tax_category: str = "S"
    tax_rate: Decimal = Decimal("15")
    tax_amount: Decimal | None = None


@dataclass
class BillingReference:
    """The original document a credit note corrects"""
    number: str
    uuid: str | None = None
    issue_date: str | None = None


@dataclass
class CanonicalDocument:
    """
    Canonical invoice / credit note.

    Monetary fields are Decimals. For credit notes every monetary and
    quantity field is non-positive; unit prices stay non-negative rates.
    The UUID is not set by mapping; it is assigned per submission attempt.
    """
    number: str
    type_code: str
    is_credit_note: bool
    issue_date: str
    issue_time: str
    issued_at: datetime
    seller: Party
    buyer: Party | None
    line_items: list[LineItem]
    subtotal: Decimal
    total_vat: Decimal
    total: Decimal
    total_discount: Decimal = Decimal("0")
    currency: str = "SAR"
    billing_reference: BillingReference | None = None
    source_id: str | None = None
    counter_value: str | None = None
    previous_hash: str | None = None
    payment_means_code: str | None = None
    supply_date: str | None = None
    supply_end_date: str | None = None
    special_tax_treatment: str | None = None
    note: str | None = None
    custom_fields: dict[str, Any] = field(default_factory=dict)
    uuid: str | None = None

    @property
    def document_type(self) -> str:
        return "credit_note" if self.is_credit_note else "invoice"

    @property
    def is_simplified(self) -> bool:
        """B2C document: the buyer carries no VAT number"""
        return not (self.buyer and self.buyer.tax_number)
