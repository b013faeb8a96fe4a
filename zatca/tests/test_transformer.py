# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Tests for the canonical mapper
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest import TestCase

from zatca.api.document import TYPE_CODE_CREDIT_NOTE, TYPE_CODE_DEBIT_NOTE, TYPE_CODE_INVOICE
from zatca.api.transformer import ZatcaTransformer, non_positive
from zatca.exceptions import IncompleteDocument, MappingError, MissingReference
from zatca.utils.config import FieldMap
from zatca.utils.testing import make_config, make_credit_note_record, make_invoice_record


class TestZatcaTransformer(TestCase):
    """Tests for ZatcaTransformer"""

    def setUp(self):
        self.config = make_config(with_certificate=False)
        self.fixed_now = datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
        self.transformer = ZatcaTransformer(self.config, clock=lambda: self.fixed_now)

    def test_invoice_mapping(self):
        document = self.transformer.map(make_invoice_record())

        self.assertEqual(document.number, "INV-001")
        self.assertEqual(document.type_code, TYPE_CODE_INVOICE)
        self.assertFalse(document.is_credit_note)
        self.assertEqual(document.issue_date, "2024-01-15")
        self.assertEqual(document.issue_time, "10:30:00")
        self.assertEqual(document.total, Decimal("115"))
        self.assertEqual(document.total_vat, Decimal("15"))
        self.assertEqual(document.subtotal, Decimal("100"))
        self.assertEqual(document.source_id, "1")
        self.assertEqual(document.counter_value, "1")
        self.assertEqual(document.currency, "SAR")

    def test_seller_falls_back_to_organization(self):
        document = self.transformer.map(make_invoice_record())
        self.assertEqual(document.seller.name, "Test Seller LLC")
        self.assertEqual(document.seller.tax_number, "300000000000003")

    def test_buyer_mapping(self):
        document = self.transformer.map(make_invoice_record())
        self.assertEqual(document.buyer.name, "Test Buyer")
        self.assertEqual(document.buyer.city, "Riyadh")
        self.assertEqual(document.buyer.country_code, "SA")
        self.assertTrue(document.is_simplified)

    def test_buyer_absent(self):
        document = self.transformer.map(make_invoice_record(customer=None))
        self.assertIsNone(document.buyer)

    def test_line_item_defaults(self):
        record = make_invoice_record(items=[{"name": "Service", "unit_price": "50"}])
        line = self.transformer.map(record).line_items[0]

        self.assertEqual(line.quantity, Decimal("1"))
        self.assertEqual(line.tax_rate, Decimal("15"))
        self.assertEqual(line.line_extension_amount, Decimal("50"))
        self.assertEqual(line.tax_amount, Decimal("7.50"))
        self.assertEqual(line.unit_code, "EA")
        self.assertEqual(line.tax_category, "S")

    def test_line_item_explicit_tax(self):
        record = make_invoice_record(items=[
            {"name": "Zero rated", "quantity": 2, "unit_price": 10, "vat_rate": 0, "vat_category": "Z", "vat_amount": 0},
        ])
        line = self.transformer.map(record).line_items[0]
        self.assertEqual(line.tax_amount, Decimal("0"))
        self.assertEqual(line.tax_category, "Z")
        self.assertEqual(line.line_extension_amount, Decimal("20"))

    def test_credit_note_amounts_are_non_positive(self):
        document = self.transformer.map(make_credit_note_record())

        self.assertTrue(document.is_credit_note)
        self.assertEqual(document.type_code, TYPE_CODE_CREDIT_NOTE)
        self.assertEqual(document.total, Decimal("-115"))
        self.assertEqual(document.subtotal, Decimal("-100"))
        self.assertEqual(document.total_vat, Decimal("-15"))

        line = document.line_items[0]
        self.assertEqual(line.quantity, Decimal("-1"))
        self.assertEqual(line.line_extension_amount, Decimal("-100"))
        self.assertEqual(line.tax_amount, Decimal("-15.00"))
        self.assertEqual(line.price, Decimal("100"))

    def test_credit_note_already_negative(self):
        record = make_credit_note_record(total=-115, sub_total=-100, vat_amount=-15)
        document = self.transformer.map(record)
        self.assertEqual(document.total, Decimal("-115"))
        self.assertEqual(document.subtotal, Decimal("-100"))

    def test_credit_note_billing_reference(self):
        document = self.transformer.map(make_credit_note_record())
        self.assertEqual(document.billing_reference.number, "INV-001")
        self.assertEqual(document.billing_reference.uuid, "3cf5ee18-ee25-44ea-a444-2c37ba7f28be")
        self.assertEqual(document.billing_reference.issue_date, "2024-01-10")

    def test_credit_note_without_reference(self):
        with self.assertRaises(MissingReference):
            self.transformer.map(make_credit_note_record(original_number=None))

    def test_missing_number(self):
        with self.assertRaises(IncompleteDocument):
            self.transformer.map(make_invoice_record(number=None))
        with self.assertRaises(IncompleteDocument):
            self.transformer.map(make_invoice_record(number="  "))

    def test_invalid_amount(self):
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(total="abc"))
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(total=True))

    def test_non_finite_amounts_rejected(self):
        for value in ("NaN", "Infinity", "-inf", float("nan"), Decimal("sNaN"), Decimal("Infinity")):
            with self.subTest(value=value):
                with self.assertRaises(MappingError) as ctx:
                    self.transformer.map(make_invoice_record(total=value))
                self.assertEqual(ctx.exception.field, "total_including_vat")

    def test_non_finite_line_values_rejected(self):
        items = [{"name": "Widget", "quantity": "NaN", "unit_price": 100, "vat_rate": 15}]
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(items=items))

        items = [{"name": "Widget", "quantity": 1, "unit_price": float("inf"), "vat_rate": 15}]
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(items=items))

    def test_line_items_must_be_a_sequence(self):
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(items="Widget"))
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(items={"name": "Widget"}))

    def test_missing_totals_default_to_zero(self):
        record = make_invoice_record()
        del record["total"]
        self.assertEqual(self.transformer.map(record).total, Decimal("0"))

    def test_missing_date_uses_clock(self):
        record = make_invoice_record()
        del record["created_at"]
        document = self.transformer.map(record)
        self.assertEqual(document.issued_at, self.fixed_now)
        self.assertEqual(document.issue_date, "2024-03-01")

    def test_aware_datetime_converted_to_utc(self):
        riyadh = timezone(timedelta(hours=3))
        record = make_invoice_record(created_at=datetime(2024, 1, 15, 2, 0, 0, tzinfo=riyadh))
        document = self.transformer.map(record)
        self.assertEqual(document.issue_date, "2024-01-14")
        self.assertEqual(document.issue_time, "23:00:00")

    def test_separate_date_and_timedelta_time(self):
        config = make_config(
            with_certificate=False,
            field_map=FieldMap(issue_date="posting_date", issue_time="posting_time"),
        )
        transformer = ZatcaTransformer(config)
        record = make_invoice_record(posting_date="2024-02-02", posting_time=timedelta(hours=9, minutes=5, seconds=7))
        document = transformer.map(record)
        self.assertEqual(document.issue_date, "2024-02-02")
        self.assertEqual(document.issue_time, "09:05:07")

    def test_invalid_date(self):
        with self.assertRaises(MappingError):
            self.transformer.map(make_invoice_record(created_at="not a date"))

    def test_debit_note_type_override(self):
        document = self.transformer.map(make_invoice_record(type=TYPE_CODE_DEBIT_NOTE))
        self.assertEqual(document.type_code, TYPE_CODE_DEBIT_NOTE)

    def test_custom_fields(self):
        document = self.transformer.map(make_invoice_record(custom_data={"branch": "RUH"}))
        self.assertEqual(document.custom_fields, {"branch": "RUH"})

    def test_non_positive(self):
        self.assertEqual(non_positive(Decimal("5")), Decimal("-5"))
        self.assertEqual(non_positive(Decimal("-5")), Decimal("-5"))
        self.assertEqual(non_positive(Decimal("0")), Decimal("0"))
        self.assertIsNone(non_positive(None))
