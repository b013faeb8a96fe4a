# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false, reportArgumentType=false

"""
ZATCA Settings DocType

Site configuration for ZATCA (Fatoora) e-invoicing, turned into a
ZatcaConfig for the submission pipeline by get_zatca_config().
"""

import json

import frappe
from frappe import _
from frappe.model.document import Document
from frappe.utils import cint, flt

from zatca.exceptions import ZatcaConfigError, ZatcaError
from zatca.utils.config import FieldMap, ZatcaConfig

SETTINGS_DOCTYPE = "ZATCA Settings"

ENVIRONMENTS = {
	"Sandbox": "sandbox",
	"Production": "production",
}

# Sales Invoice field paths, overridable per site through field_mapping
ERPNEXT_FIELD_MAPPING = {
	"invoice_number": "name",
	"invoice_type": None,
	"issue_date": "posting_date",
	"issue_time": "posting_time",
	"invoice_currency_code": "currency",
	"invoice_counter_value": None,
	"payment_means_type_code": None,
	"seller_name": "company",
	"seller_tax_number": "company_tax_id",
	"seller_address": "company_address_display",
	"seller_street": None,
	"seller_building_number": None,
	"seller_postal_code": None,
	"seller_city": None,
	"seller_district": None,
	"seller_additional_number": None,
	"seller_region": None,
	"seller_country_code": None,
	"buyer_name": "customer_name",
	"buyer_tax_number": "tax_id",
	"buyer_address": "address_display",
	"buyer_street": None,
	"buyer_building_number": None,
	"buyer_postal_code": None,
	"buyer_city": None,
	"buyer_district": None,
	"buyer_additional_number": None,
	"buyer_region": None,
	"buyer_country_code": None,
	"line_items": "items",
	"item_name": "item_name",
	"item_quantity": "qty",
	"item_unit_code": None,
	"item_price": "rate",
	"item_price_inclusive": None,
	"item_discount": "discount_amount",
	"item_discount_reason": None,
	"item_tax_category": None,
	"item_tax_rate": None,
	"item_tax_amount": None,
	"total_excluding_vat": "net_total",
	"total_including_vat": "grand_total",
	"total_vat": "total_taxes_and_charges",
	"total_discount": "discount_amount",
	"invoice_note": "remarks",
	"custom_fields": None,
}


class ZATCASettings(Document):
	"""
	ZATCA Settings - Configuration for the Fatoora platform

	Environments:
	- Sandbox: developer portal, inline certificate and secret
	- Production: certificates stored under the certificate path

	Credit notes are Sales Invoices with is_return = 1 by default.
	"""

	def validate(self):
		"""Validate settings before save"""
		if flt(self.clearance_threshold) < 0:
			frappe.throw(_("Clearance threshold must not be negative"))
		if cint(self.max_attempts) < 1:
			self.max_attempts = 1

		self.validate_field_mapping()

		if self.enabled:
			self.validate_credentials()

	def validate_field_mapping(self):
		"""Field mapping must be a JSON object of known canonical fields"""
		if not self.field_mapping:
			return
		try:
			FieldMap.from_dict({**ERPNEXT_FIELD_MAPPING, **_parse_mapping(self.field_mapping)})
		except (ValueError, ZatcaConfigError) as e:
			frappe.throw(_("Invalid field mapping: {0}").format(e))

	def validate_credentials(self):
		"""Validate required credentials are present"""
		if self.environment == "Sandbox":
			if not self.sandbox_certificate_id:
				frappe.throw(_("Sandbox certificate id is required"))
			if not self.get_password("sandbox_api_secret", raise_exception=False):
				frappe.throw(_("Sandbox API secret is required"))
		elif not self.get_password("api_secret", raise_exception=False):
			frappe.throw(_("API secret is required for production"))

	def on_update(self):
		"""Clear cached settings after update"""
		frappe.cache.delete_value("zatca_settings")

	@frappe.whitelist()
	def test_connection(self):
		"""
		Check that credentials resolve for the active environment.

		Returns:
			dict: Connection status
		"""
		if not self.enabled:
			return {"success": False, "message": _("ZATCA integration is not enabled")}

		from zatca.api.client import ZatcaClient

		result = ZatcaClient(get_zatca_config(self)).test_connection()
		self.db_set("connection_status", "Connected" if result.get("success") else "Failed")
		return result

	@frappe.whitelist()
	def generate_csr(self):
		"""
		Generate a private key and CSR for onboarding.

		Returns:
			dict: CSR PEM and request id
		"""
		from zatca.api.signature import CertificateManager

		try:
			request = CertificateManager(get_zatca_config(self)).generate_request(
				self.organization_name, self.vat_number
			)
		except ZatcaError as e:
			frappe.throw(str(e))

		return {"csr": request.csr, "request_id": request.request_id}

	@frappe.whitelist()
	def save_certificate(self, content: str, kind: str = "production"):
		"""
		Store a certificate issued by ZATCA.

		Args:
			content: PEM or base64 DER certificate
			kind: "compliance" or "production"
		"""
		from zatca.api.signature import CertificateManager

		manager = CertificateManager(get_zatca_config(self))
		try:
			manager.save_certificate(content, kind)
		except ZatcaError as e:
			frappe.throw(str(e))

		info = manager.get_certificate_info(kind)
		if info.get("valid_to"):
			self.db_set("certificate_expiry", info["valid_to"][:10])
		return info


def _parse_mapping(value) -> dict:
	if isinstance(value, dict):
		return value
	parsed = json.loads(value)
	if not isinstance(parsed, dict):
		raise ValueError("field mapping must be a JSON object")
	return parsed


def get_zatca_config(settings=None) -> ZatcaConfig:
	"""
	Build the pipeline configuration from ZATCA Settings.

	Args:
		settings: ZATCA Settings document (loaded if omitted)

	Returns:
		ZatcaConfig
	"""
	settings = settings or frappe.get_cached_doc(SETTINGS_DOCTYPE)

	mapping = dict(ERPNEXT_FIELD_MAPPING)
	if settings.field_mapping:
		mapping.update(_parse_mapping(settings.field_mapping))

	data = {
		"environment": ENVIRONMENTS.get(settings.environment or "Sandbox", "sandbox"),
		"sandbox": {
			"certificate": settings.sandbox_certificate,
			"private_key": settings.sandbox_private_key,
			"certificate_id": settings.sandbox_certificate_id,
			"api_secret": settings.get_password("sandbox_api_secret", raise_exception=False),
		},
		"certificate_path": settings.certificate_path or frappe.get_site_path("private", "zatca"),
		"organization": {
			"name": settings.organization_name,
			"tax_number": settings.vat_number,
		},
		"api_secret": settings.get_password("api_secret", raise_exception=False),
		"clearance_threshold": settings.clearance_threshold,
		"credit_note_identification": {
			"method": settings.credit_note_method or "type_field",
			"type_field": settings.credit_note_type_field or "is_return",
			"type_value": settings.credit_note_type_value or "1",
			"model_kind": settings.credit_note_model_kind,
		},
		"invoice_reference": {
			"number_reference": "return_against",
			"uuid_reference": "return_against_uuid",
			"date_reference": "return_against_date",
		},
		"field_mapping": mapping,
		"record_id_field": "name",
		"timeout": cint(settings.timeout) or 30,
		"max_attempts": cint(settings.max_attempts) or 3,
		"batch_size": cint(settings.batch_size) or 10,
		"debug_mode": bool(cint(settings.debug_mode)),
	}

	return ZatcaConfig.from_dict(data)
