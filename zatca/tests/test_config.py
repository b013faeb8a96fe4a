# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Tests for configuration loading and validation
"""

from decimal import Decimal
from unittest import TestCase

from zatca.exceptions import ZatcaConfigError
from zatca.utils.config import (
    ClassificationStrategy,
    CreditNoteIdentification,
    FieldMap,
    ZatcaConfig,
    validate_config,
)
from zatca.utils.testing import make_config


class TestZatcaConfig(TestCase):
    """Tests for ZatcaConfig"""

    def test_defaults(self):
        config = ZatcaConfig()
        self.assertTrue(config.is_sandbox)
        self.assertEqual(config.clearance_threshold, Decimal("1000"))
        self.assertEqual(config.field_map.invoice_number, "number")
        self.assertEqual(config.field_map.buyer_name, "customer.name")
        self.assertIsNone(config.field_map.seller_name)
        self.assertEqual(config.credit_note_identification.method, ClassificationStrategy.TYPE_FIELD)
        self.assertTrue(config.endpoints.reporting_url.endswith("/invoices/reporting/single"))

    def test_default_environment_urls(self):
        config = ZatcaConfig()

        sandbox = config.environments["sandbox"]
        self.assertEqual(sandbox.base_url, "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal/sandbox")
        self.assertEqual(
            sandbox.clearance_url,
            "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal/sandbox/invoices/clearance/single"
        )

        production = config.environments["production"]
        self.assertEqual(production.base_url, "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal")
        self.assertEqual(
            production.reporting_url,
            "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal/invoices/reporting/single"
        )

    def test_from_dict(self):
        config = ZatcaConfig.from_dict({
            "environment": "PRODUCTION",
            "api_secret": "s3cret",
            "clearance_threshold": "2500.50",
            "organization": {"name": "Seller", "tax_number": "300000000000003"},
            "credit_note_identification": {"method": "model", "model_kind": "CreditNote"},
            "field_mapping": {"invoice_number": "invoice_no", "buyer_name": ""},
            "backoff": [1, 2],
            "max_attempts": "5",
        })

        self.assertEqual(config.environment, "production")
        self.assertFalse(config.is_sandbox)
        self.assertEqual(config.api_secret, "s3cret")
        self.assertEqual(config.clearance_threshold, Decimal("2500.50"))
        self.assertEqual(config.organization.name, "Seller")
        self.assertEqual(config.credit_note_identification.method, ClassificationStrategy.MODEL_KIND)
        self.assertEqual(config.field_map.invoice_number, "invoice_no")
        self.assertIsNone(config.field_map.buyer_name)
        self.assertEqual(config.field_map.total_including_vat, "total")
        self.assertEqual(config.backoff, (1, 2))
        self.assertEqual(config.max_attempts, 5)

    def test_unknown_field_map_key(self):
        with self.assertRaises(ZatcaConfigError) as ctx:
            FieldMap.from_dict({"invoice_numbr": "number"})
        self.assertEqual(ctx.exception.details["unknown"], ["invoice_numbr"])

    def test_invalid_values(self):
        with self.assertRaises(ZatcaConfigError):
            ZatcaConfig.from_dict({"clearance_threshold": "lots"})
        with self.assertRaises(ZatcaConfigError):
            ZatcaConfig.from_dict({"credit_note_identification": {"method": "magic"}})

    def test_unknown_environment(self):
        config = ZatcaConfig(environment="staging")
        with self.assertRaises(ZatcaConfigError):
            config.endpoints

    def test_custom_environment_urls(self):
        config = ZatcaConfig.from_dict({
            "environments": {
                "sandbox": "https://sandbox.test/",
                "production": {"base_url": "https://prod.test", "status_url": "https://prod.test/status"},
            },
        })
        self.assertEqual(config.endpoints.reporting_url, "https://sandbox.test/invoices/reporting/single")
        production = config.environments["production"]
        self.assertEqual(production.status_url, "https://prod.test/status")
        self.assertEqual(production.clearance_url, "https://prod.test/invoices/clearance/single")

    def test_from_env(self):
        config = ZatcaConfig.from_env({
            "ZATCA_ENVIRONMENT": "sandbox",
            "ZATCA_SANDBOX_CERTIFICATE_ID": "CERT",
            "ZATCA_SANDBOX_SECRET": "secret",
            "ZATCA_ORGANIZATION_NAME": "Seller",
            "ZATCA_CLEARANCE_THRESHOLD": "500",
            "ZATCA_SANDBOX_URL": "https://sandbox.test",
        })
        self.assertEqual(config.sandbox.certificate_id, "CERT")
        self.assertEqual(config.sandbox.api_secret, "secret")
        self.assertEqual(config.organization.name, "Seller")
        self.assertEqual(config.clearance_threshold, Decimal("500"))
        self.assertEqual(config.endpoints.base_url, "https://sandbox.test")


class TestConfigValidator(TestCase):
    """Tests for ConfigValidator"""

    def test_valid_sandbox_config(self):
        result = validate_config(make_config())
        self.assertTrue(result.is_valid)
        self.assertEqual(result.get_errors(), [])

    def test_missing_sandbox_credentials(self):
        result = validate_config(make_config(with_certificate=False))
        self.assertFalse(result.is_valid)
        fields = {issue.field for issue in result.get_errors()}
        self.assertIn("sandbox.certificate", fields)
        self.assertIn("sandbox.private_key", fields)

    def test_production_requires_secret_and_directory(self):
        config = make_config(environment="production", certificate_path="/nonexistent/zatca")
        fields = {issue.field for issue in validate_config(config).get_errors()}
        self.assertIn("api_secret", fields)
        self.assertIn("certificate_path", fields)

    def test_unsupported_classification(self):
        config = make_config(
            credit_note_identification=CreditNoteIdentification(method=ClassificationStrategy.TABLE_ORIGIN)
        )
        result = validate_config(config)
        self.assertFalse(result.is_valid)

    def test_organization_warnings(self):
        from zatca.utils.config import Organization

        config = make_config(organization=Organization(name="Seller", tax_number="123"))
        result = validate_config(config)
        self.assertTrue(result.is_valid)
        self.assertEqual([w.field for w in result.get_warnings()], ["organization.tax_number"])
