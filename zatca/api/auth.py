# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API - Authentication Module

ZATCA authenticates every call with HTTP Basic auth built from the
certificate id (binarySecurityToken identity) and the API secret issued
during onboarding.

- Sandbox: certificate id and secret from the sandbox configuration
- Production: certificate id from the stored production certificate,
  secret from configuration

The previous invoice hash is never part of the credentials; it is carried
by the PIH reference in the XML.
"""

import base64

from zatca.api.signature import CertificateManager
from zatca.exceptions import ZatcaConfigError
from zatca.utils.config import ZatcaConfig, get_config


class ZatcaAuth:
	"""
	Basic auth handler for ZATCA.

	Credentials are read on each call so a newly saved production
	certificate is picked up without a restart.
	"""

	def __init__(self, config: ZatcaConfig | None = None, certificates: CertificateManager | None = None):
		"""
		Initialize auth handler.

		Args:
			config: ZATCA configuration
			certificates: Certificate manager used for production credentials
		"""
		self.config = config or get_config()
		self.certificates = certificates or CertificateManager(self.config)

	def get_credentials(self) -> tuple[str, str]:
		"""
		Get (certificate_id, secret) for the active environment.

		Raises:
			ZatcaConfigError: If either value is missing
		"""
		if self.config.is_sandbox:
			certificate_id = self.config.sandbox.certificate_id
			secret = self.config.sandbox.api_secret
		else:
			certificate_id = self.certificates.get_certificate_data().certificate_id
			secret = self.config.api_secret

		if not certificate_id:
			raise ZatcaConfigError(f"Certificate id is not configured for {self.config.environment}")
		if not secret:
			raise ZatcaConfigError(f"API secret is not configured for {self.config.environment}")

		return certificate_id, secret

	def get_auth_header(self) -> dict:
		"""
		Get Authorization header for API requests.

		Returns:
			dict: {"Authorization": "Basic ..."}
		"""
		certificate_id, secret = self.get_credentials()
		token = base64.b64encode(f"{certificate_id}:{secret}".encode("utf-8")).decode("ascii")
		return {"Authorization": f"Basic {token}"}


def get_auth(config: ZatcaConfig | None = None) -> ZatcaAuth:
	"""Get auth handler instance"""
	return ZatcaAuth(config)
