# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API Client

Remote authority endpoints (per environment):
1. compliance - Compliance check of a signed invoice during onboarding
2. reporting  - Report a simplified (B2C) invoice within 24 hours
3. clearance  - Clear a standard (B2B) invoice before sharing it
4. status     - Query a submission by UUID
"""

import base64

from zatca.api.auth import ZatcaAuth
from zatca.api.http_client import ZatcaHTTPClient
from zatca.exceptions import ZatcaError
from zatca.utils.config import ZatcaConfig, get_config

DOCUMENT_TYPE_CREDIT_NOTE = "CreditNote"


def build_submission_payload(invoice_hash: str, uuid: str, signed_xml: bytes, is_credit_note: bool = False) -> dict:
	"""
	Build the JSON body for compliance / reporting / clearance.

	Args:
		invoice_hash: Base64 invoice hash
		uuid: Submission UUID
		signed_xml: Signed invoice XML
		is_credit_note: Adds documentType "CreditNote"

	Returns:
		dict: Request payload
	"""
	payload = {
		"invoiceHash": invoice_hash,
		"uuid": uuid,
		"invoice": base64.b64encode(signed_xml).decode("ascii"),
	}
	if is_credit_note:
		payload["documentType"] = DOCUMENT_TYPE_CREDIT_NOTE
	return payload


class ZatcaClient:
	"""
	ZATCA API Client for Fatoora e-invoicing.

	Usage:
		client = ZatcaClient()

		payload = build_submission_payload(invoice_hash, uuid, signed_xml)
		response = client.report(payload)

		status = client.get_status(uuid)
	"""

	def __init__(self, config: ZatcaConfig | None = None, http: ZatcaHTTPClient | None = None, auth: ZatcaAuth | None = None):
		"""
		Initialize ZATCA client.

		Args:
			config: ZATCA configuration
			http: HTTP client
			auth: Auth handler
		"""
		self.config = config or get_config()
		self.endpoints = self.config.endpoints
		self.http = http or ZatcaHTTPClient(
			base_url=self.endpoints.base_url,
			timeout=self.config.timeout,
			debug_mode=self.config.debug_mode
		)
		self.auth = auth or ZatcaAuth(self.config)

	def _post(self, url, payload):
		return self.http.post(url, data=payload, auth_header=self.auth.get_auth_header())

	def compliance_check(self, payload: dict) -> dict:
		"""
		Submit a signed sample invoice for compliance checks.

		Args:
			payload: Submission payload

		Returns:
			dict: Validation results
		"""
		return self._post(self.endpoints.compliance_url, payload)

	def report(self, payload: dict) -> dict:
		"""
		Report a simplified invoice.

		Args:
			payload: Submission payload

		Returns:
			dict: Response with reportingStatus
		"""
		return self._post(self.endpoints.reporting_url, payload)

	def clear(self, payload: dict) -> dict:
		"""
		Clear a standard invoice.

		Args:
			payload: Submission payload

		Returns:
			dict: Response with clearanceStatus and clearedInvoice
		"""
		return self._post(self.endpoints.clearance_url, payload)

	def get_status(self, uuid: str) -> dict:
		"""Query submission status by UUID"""
		return self.http.get(
			self.endpoints.status_url,
			auth_header=self.auth.get_auth_header(),
			params={"uuid": uuid}
		)

	def test_connection(self) -> dict:
		"""Check that credentials resolve for the active environment"""
		try:
			self.auth.get_auth_header()
		except ZatcaError as e:
			return {"success": False, "message": str(e)}
		return {"success": True, "environment": self.config.environment, "base_url": self.endpoints.base_url}


def get_client(config: ZatcaConfig | None = None) -> ZatcaClient:
	"""Get ZATCA client instance"""
	return ZatcaClient(config)
