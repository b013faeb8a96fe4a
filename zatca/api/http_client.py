# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API - HTTP Client Module

Handles all HTTP communication with the ZATCA (Fatoora) API.
Transport failures and error responses surface as SubmissionError with a
status code; timeouts map to 408, connection and other transport failures to 503.
"""

import json
import time

import requests

from zatca.api.pool import get_session
from zatca.exceptions import SubmissionError
from zatca.utils.logging import get_logger

logger = get_logger("zatca.http")


class ZatcaHTTPClient:
	"""
	HTTP client for the ZATCA API.

	Key features:
	- JSON request/response handling with API versioning headers
	- Authorization header passthrough (redacted in debug logs)
	- Fixed timeout per call
	- Error mapping to SubmissionError

	ZATCA response codes:
	- 200: Accepted
	- 202: Accepted with warnings
	- 400: Rejected (validation results in body)
	- 401: Bad credentials
	- 429: Throttled
	- 5xx: Server error
	"""

	API_VERSION = "V2"

	def __init__(self, base_url: str = "", timeout: int = 30, session=None, debug_mode: bool = False):
		"""
		Initialize HTTP client.

		Args:
			base_url: Prefix for relative endpoints
			timeout: Seconds per request
			session: requests.Session (the calling thread's pooled session if omitted)
			debug_mode: Log request and response bodies
		"""
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout
		self._session = session
		self.debug_mode = debug_mode

	@property
	def session(self) -> requests.Session:
		"""Injected session, or the pooled session of the calling thread"""
		return self._session if self._session is not None else get_session()

	def _build_url(self, endpoint):
		"""Build full URL from endpoint"""
		if endpoint.startswith("http"):
			return endpoint
		if endpoint.startswith("/"):
			return f"{self.base_url}{endpoint}"
		return f"{self.base_url}/{endpoint}"

	def _get_headers(self, auth_header=None, extra_headers=None):
		"""
		Build request headers.

		Args:
			auth_header: Authorization header dict
			extra_headers: Additional headers

		Returns:
			dict: Complete headers
		"""
		headers = {
			"Content-Type": "application/json",
			"Accept": "application/json",
			"Accept-Language": "en",
			"Accept-Version": self.API_VERSION,
		}

		if auth_header:
			headers.update(auth_header)

		if extra_headers:
			headers.update(extra_headers)

		return headers

	def _log_request(self, method, url, headers, data=None, params=None):
		"""Log request details in debug mode"""
		if not self.debug_mode:
			return

		safe_headers = {k: v for k, v in headers.items() if k.lower() != "authorization"}
		if "Authorization" in headers:
			safe_headers["Authorization"] = "Basic ***"

		logger.debug(
			f"ZATCA API Request {method} {url}",
			headers=safe_headers,
			params=params,
			body=json.dumps(data, ensure_ascii=False)[:1000] if data else None
		)

	def _log_response(self, method, url, response, duration=None):
		status_code = getattr(response, "status_code", None)
		logger.api_call(
			method=method,
			url=url,
			status_code=status_code,
			duration_ms=duration * 1000 if duration is not None else None,
			response_body=response.text[:2000] if self.debug_mode else None,
			error=None if status_code is not None and status_code < 400 else f"HTTP {status_code}"
		)

	def _handle_response(self, response):
		"""
		Handle API response.

		Args:
			response: requests.Response object

		Returns:
			dict: Response data

		Raises:
			SubmissionError: On error response
		"""
		try:
			data = response.json()
		except ValueError:
			if response.status_code >= 400:
				raise SubmissionError(
					f"HTTP {response.status_code}: {response.text[:200]}",
					status_code=response.status_code
				)
			return {"raw_response": response.text}

		if response.status_code >= 400:
			message = f"HTTP {response.status_code}"
			if isinstance(data, dict):
				message = data.get("message", data.get("error", message))
				errors = (data.get("validationResults") or {}).get("errorMessages") or []
				if errors:
					message = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
			raise SubmissionError(message, status_code=response.status_code, response_data=data)

		return data

	def request(self, method, endpoint, data=None, auth_header=None, headers=None, params=None):
		"""
		Make a request to the ZATCA API.

		Args:
			method: HTTP method
			endpoint: API endpoint path or absolute URL
			data: Request body (dict)
			auth_header: Authorization header
			headers: Additional headers
			params: Query parameters

		Returns:
			dict: Response data
		"""
		url = self._build_url(endpoint)
		request_headers = self._get_headers(auth_header, headers)

		self._log_request(method, url, request_headers, data=data, params=params)

		start_time = time.time()
		try:
			response = self.session.request(
				method,
				url,
				json=data,
				headers=request_headers,
				params=params,
				timeout=self.timeout
			)
		except requests.exceptions.Timeout:
			logger.api_call(method=method, url=url, error="timeout")
			raise SubmissionError(f"Request timeout after {self.timeout}s", status_code=408)
		except requests.exceptions.ConnectionError as e:
			logger.api_call(method=method, url=url, error=str(e))
			raise SubmissionError(f"Connection error: {str(e)}", status_code=503)
		except requests.exceptions.RequestException as e:
			logger.api_call(method=method, url=url, error=str(e))
			raise SubmissionError(f"Transport error: {type(e).__name__}: {e}", status_code=503)

		self._log_response(method, url, response, round(time.time() - start_time, 3))

		return self._handle_response(response)

	def get(self, endpoint, auth_header=None, headers=None, params=None):
		"""Make GET request to ZATCA API"""
		return self.request("GET", endpoint, auth_header=auth_header, headers=headers, params=params)

	def post(self, endpoint, data=None, auth_header=None, headers=None, params=None):
		"""Make POST request to ZATCA API"""
		return self.request("POST", endpoint, data=data, auth_header=auth_header, headers=headers, params=params)


def get_http_client(base_url: str = "", timeout: int = 30) -> ZatcaHTTPClient:
	"""Get ZATCA HTTP client instance"""
	return ZatcaHTTPClient(base_url=base_url, timeout=timeout)
