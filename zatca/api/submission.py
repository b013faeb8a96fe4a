# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API - Submission Orchestrator Module

Drives a record through canonicalize -> XML -> hash -> sign -> QR ->
submit, and owns the per-document submission state:

	UNSUBMITTED -> REPORTED | CLEARED | FAILED
	FAILED      -> REPORTED | CLEARED (retry)
	any         -> FAILED

REPORTED and CLEARED are only left through an explicit report()/clear()
call (or a failure). Callbacks follow the same table.
"""

import base64
import binascii
import copy
import threading
import uuid as uuid_lib
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from zatca.api.auth import ZatcaAuth
from zatca.api.client import ZatcaClient, build_submission_payload
from zatca.api.qr import QRCodeGenerator
from zatca.api.signature import CertificateManager, hash_document
from zatca.api.transformer import ZatcaTransformer
from zatca.api.xml_builder import UBLBuilder
from zatca.exceptions import (
	DocumentNotFound,
	IncompleteDocument,
	SubmissionError,
	ZatcaError,
	ZatcaValidationError,
)
from zatca.utils.config import ZatcaConfig, get_config
from zatca.utils.fields import get_field_value
from zatca.utils.logging import StructuredLogger, get_logger, log_context

_logger = get_logger("zatca.submission")

OPERATION_REPORT = "report"
OPERATION_CLEAR = "clear"
OPERATION_AUTO = "auto"
OPERATIONS = (OPERATION_REPORT, OPERATION_CLEAR, OPERATION_AUTO)


class SubmissionStatus(str, Enum):
	UNSUBMITTED = "UNSUBMITTED"
	REPORTED = "REPORTED"
	CLEARED = "CLEARED"
	FAILED = "FAILED"


# Transitions a callback may apply; explicit report()/clear() calls may start from any state
ALLOWED_TRANSITIONS = {
	SubmissionStatus.UNSUBMITTED: {SubmissionStatus.REPORTED, SubmissionStatus.CLEARED, SubmissionStatus.FAILED},
	SubmissionStatus.FAILED: {SubmissionStatus.REPORTED, SubmissionStatus.CLEARED, SubmissionStatus.FAILED},
	SubmissionStatus.REPORTED: {SubmissionStatus.REPORTED, SubmissionStatus.FAILED},
	SubmissionStatus.CLEARED: {SubmissionStatus.CLEARED, SubmissionStatus.FAILED},
}


@dataclass
class SubmissionState:
	"""Compliance state of one document, keyed by document id"""
	document_id: str
	status: SubmissionStatus = SubmissionStatus.UNSUBMITTED
	document_type: str | None = None
	response: dict | None = None
	errors: dict | None = None
	reported_at: datetime | None = None
	cleared_at: datetime | None = None
	compliance_invoice_id: str | None = None
	invoice_hash: str | None = None
	uuid: str | None = None
	qr_code: str | None = None
	signed_xml: bytes | None = None
	request_id: str | None = None
	last_callback: dict | None = None
	attempts: int = 0

	def transition(self, target: SubmissionStatus, explicit: bool = False):
		"""
		Move to a new status.

		Args:
			target: New status
			explicit: True for report()/clear() outcomes, which may leave
				REPORTED / CLEARED

		Raises:
			ZatcaValidationError: If the transition is not allowed
		"""
		if not explicit and target not in ALLOWED_TRANSITIONS[self.status]:
			raise ZatcaValidationError(
				f"Cannot move {self.document_id} from {self.status.value} to {target.value}",
				field="status"
			)
		self.status = target

	def mark_reported(self, response: dict, at: datetime, explicit: bool = False):
		self.transition(SubmissionStatus.REPORTED, explicit)
		self.response = response
		self.errors = None
		self.reported_at = at
		self.request_id = _request_id(response) or self.request_id

	def mark_cleared(self, response: dict, at: datetime, explicit: bool = False):
		self.transition(SubmissionStatus.CLEARED, explicit)
		self.response = response
		self.errors = None
		self.cleared_at = at
		self.request_id = _request_id(response) or self.request_id

	def mark_failed(self, errors: dict, response: Any = None):
		self.transition(SubmissionStatus.FAILED, explicit=True)
		self.errors = errors
		if response is not None:
			self.response = response
			self.request_id = _request_id(response) or self.request_id

	def to_dict(self) -> dict:
		data = asdict(self)
		data["status"] = self.status.value
		if self.signed_xml is not None:
			data["signed_xml"] = self.signed_xml.decode("utf-8")
		return data


def _request_id(response) -> str | None:
	if not isinstance(response, dict):
		return None
	value = response.get("requestID") or response.get("requestId")
	return str(value) if value else None


# =========================================================================
# Stores
# =========================================================================

class SubmissionStore(ABC):
	"""Persistence collaborator for submission state"""

	@abstractmethod
	def get(self, document_id: str) -> SubmissionState:
		"""State for a document; a fresh UNSUBMITTED state if none exists"""

	@abstractmethod
	def save(self, state: SubmissionState) -> None:
		"""Persist state (create or overwrite)"""

	@abstractmethod
	def find_by_request_id(self, request_id: str) -> SubmissionState | None:
		"""State whose last submission carried this request id"""


class InMemorySubmissionStore(SubmissionStore):
	"""Thread-safe store for tests, scripts and single-process use"""

	def __init__(self):
		self._states: dict[str, SubmissionState] = {}
		self._lock = threading.Lock()

	def get(self, document_id):
		with self._lock:
			state = self._states.get(document_id)
			return copy.deepcopy(state) if state else SubmissionState(document_id=document_id)

	def save(self, state):
		with self._lock:
			self._states[state.document_id] = copy.deepcopy(state)

	def find_by_request_id(self, request_id):
		with self._lock:
			for state in self._states.values():
				if state.request_id == request_id:
					return copy.deepcopy(state)
		return None


# =========================================================================
# Callbacks
# =========================================================================

def validate_callback_payload(payload) -> tuple[str, str]:
	"""
	Validate an inbound callback.

	Args:
		payload: {"requestID": ..., "status": ...}

	Returns:
		tuple: (request_id, status)

	Raises:
		ZatcaValidationError: If either field is missing
	"""
	if not isinstance(payload, dict):
		raise ZatcaValidationError("Callback payload must be an object")

	missing = [key for key in ("requestID", "status") if not payload.get(key)]
	if missing:
		raise ZatcaValidationError(
			f"Callback payload is missing {', '.join(missing)}",
			field=missing[0],
			errors=missing
		)
	return str(payload["requestID"]), str(payload["status"])


# =========================================================================
# Orchestrator
# =========================================================================

class SubmissionOrchestrator:
	"""
	Submission orchestrator for ZATCA.

	Usage:
		orchestrator = SubmissionOrchestrator(config, store=store)
		state = orchestrator.report(invoice)
		state = orchestrator.clear(b2b_invoice)
		payload = orchestrator.check_status(invoice)
	"""

	REPORTED_STATUSES = frozenset({"REPORTED", "SUBMITTED"})
	CLEARED_STATUSES = frozenset({"CLEARED"})
	FAILED_CALLBACK_STATUSES = frozenset({"FAILED", "REJECTED"})

	def __init__(
		self,
		config: ZatcaConfig | None = None,
		transformer: ZatcaTransformer | None = None,
		builder: UBLBuilder | None = None,
		certificates: CertificateManager | None = None,
		qr: QRCodeGenerator | None = None,
		client: ZatcaClient | None = None,
		store: SubmissionStore | None = None,
		clock: Callable[[], datetime] | None = None,
		uuid_factory: Callable[[], Any] | None = None,
		logger: StructuredLogger | None = None
	):
		self.config = config or get_config()
		self.transformer = transformer or ZatcaTransformer(self.config)
		self.builder = builder or UBLBuilder()
		self.certificates = certificates or CertificateManager(self.config)
		self.qr = qr or QRCodeGenerator()
		self.client = client or ZatcaClient(self.config, auth=ZatcaAuth(self.config, self.certificates))
		self.store = store or InMemorySubmissionStore()
		self.clock = clock or (lambda: datetime.now(timezone.utc))
		self.uuid_factory = uuid_factory or uuid_lib.uuid4
		self.logger = logger or _logger

	# =========================================================================
	# Decisions
	# =========================================================================

	def requires_clearance(self, total) -> bool:
		"""Totals at or above the threshold (by magnitude) are cleared"""
		return abs(Decimal(str(total or 0))) >= self.config.clearance_threshold

	def document_id(self, record) -> str:
		"""Key of a record's submission state"""
		value = get_field_value(record, self.config.record_id_field)
		if value is None:
			value = get_field_value(record, self.config.field_map.invoice_number)
		if value is None:
			raise IncompleteDocument("Record has no identifier", field=self.config.record_id_field)
		return str(value)

	# =========================================================================
	# Operations
	# =========================================================================

	def report(self, record, uuid: str | None = None, final_attempt: bool = True) -> SubmissionState:
		"""
		Report a document to ZATCA.

		Args:
			record: Source record
			uuid: UUID to reuse (job retries); a new one if omitted
			final_attempt: Whether a retryable failure should be recorded as FAILED

		Returns:
			SubmissionState: REPORTED state

		Raises:
			ZatcaError: Any pipeline or submission failure (state is FAILED)
		"""
		return self.submit(record, OPERATION_REPORT, uuid=uuid, final_attempt=final_attempt)

	def clear(self, record, uuid: str | None = None, final_attempt: bool = True) -> SubmissionState:
		"""
		Clear a document with ZATCA.

		Returns:
			SubmissionState: CLEARED state
		"""
		return self.submit(record, OPERATION_CLEAR, uuid=uuid, final_attempt=final_attempt)

	def submit(self, record, operation: str = OPERATION_AUTO, uuid: str | None = None, final_attempt: bool = True) -> SubmissionState:
		"""
		Run the submission pipeline.

		Args:
			record: Source record
			operation: "report", "clear", or "auto" (threshold decides)
			uuid: UUID to reuse
			final_attempt: Record retryable failures as FAILED

		Returns:
			SubmissionState
		"""
		if operation not in OPERATIONS:
			raise ZatcaValidationError(f"Unknown operation: {operation}", field="operation")

		document_id = self.document_id(record)
		state = self.store.get(document_id)
		state.attempts += 1

		with log_context(document_id=document_id, operation=operation):
			try:
				document = self.transformer.map(record)
				state.document_type = document.document_type
				if operation == OPERATION_AUTO:
					operation = OPERATION_CLEAR if self.requires_clearance(document.total) else OPERATION_REPORT

				document.uuid = uuid or str(self.uuid_factory())
				xml = self.builder.build(document, document.uuid)
				invoice_hash = hash_document(xml)
				signed = self.certificates.sign_document(xml)
				qr = self.qr.generate(document, invoice_hash, signed.signature_value)

				state.uuid = document.uuid
				state.invoice_hash = invoice_hash
				state.signed_xml = signed.xml
				state.qr_code = qr.image
				self.store.save(state)

				payload = build_submission_payload(invoice_hash, document.uuid, signed.xml, document.is_credit_note)
				if operation == OPERATION_CLEAR:
					response = self.client.clear(payload)
					self._apply_clearance(state, response)
				else:
					response = self.client.report(payload)
					self._apply_reporting(state, response)

			except SubmissionError as e:
				if e.retryable and not final_attempt:
					self.store.save(state)
					self.logger.document_event(
						operation, document_id, state.document_type,
						status="RETRY", error=e.message, attempt=state.attempts
					)
					raise
				self._fail(state, operation, e)
				raise
			except Exception as e:
				self._fail(state, operation, e)
				raise

		self.store.save(state)
		self.logger.document_event(operation, document_id, state.document_type, status=state.status.value, uuid=state.uuid)
		return state

	def _apply_reporting(self, state: SubmissionState, response: dict):
		status = (response or {}).get("reportingStatus")
		if status not in self.REPORTED_STATUSES:
			raise SubmissionError(
				f"Reporting not accepted (reportingStatus={status})",
				response_data=response,
				retryable=False
			)
		state.mark_reported(response, self.clock(), explicit=True)

	def _apply_clearance(self, state: SubmissionState, response: dict):
		status = (response or {}).get("clearanceStatus")
		if status not in self.CLEARED_STATUSES:
			raise SubmissionError(
				f"Clearance not accepted (clearanceStatus={status})",
				response_data=response,
				retryable=False
			)
		cleared_invoice = response.get("clearedInvoice")
		if cleared_invoice:
			try:
				state.signed_xml = base64.b64decode(cleared_invoice, validate=True)
			except (binascii.Error, ValueError) as e:
				# Cleared remotely; the locally signed XML stays the stored copy
				self.logger.warning(
					f"Ignoring malformed clearedInvoice for {state.document_id}",
					document_id=state.document_id,
					error=str(e)
				)
		state.mark_cleared(response, self.clock(), explicit=True)

	def _fail(self, state: SubmissionState, operation: str, error: Exception):
		message = getattr(error, "message", None) or str(error) or type(error).__name__
		errors = {
			"error": message,
			"type": type(error).__name__,
			"operation": operation,
		}
		if isinstance(error, ZatcaError) and error.code:
			errors["code"] = error.code
		if isinstance(error, SubmissionError) and error.status_code:
			errors["status_code"] = error.status_code

		state.mark_failed(errors, getattr(error, "response_data", None))
		self.store.save(state)
		self.logger.document_event(operation, state.document_id, state.document_type, status=state.status.value, error=message)

	def compliance_check(self, record) -> dict:
		"""
		Run a record through the compliance endpoint (onboarding).

		Does not change the document's status; stores the compliance UUID.

		Returns:
			dict: Compliance validation results
		"""
		document_id = self.document_id(record)
		document = self.transformer.map(record)
		document.uuid = str(self.uuid_factory())
		xml = self.builder.build(document, document.uuid)
		invoice_hash = hash_document(xml)
		signed = self.certificates.sign_document(xml)

		payload = build_submission_payload(invoice_hash, document.uuid, signed.xml, document.is_credit_note)
		response = self.client.compliance_check(payload)

		state = self.store.get(document_id)
		state.compliance_invoice_id = document.uuid
		self.store.save(state)
		self.logger.document_event("compliance", document_id, document.document_type, uuid=document.uuid)
		return response

	def check_status(self, record) -> dict:
		"""
		Query ZATCA for a submitted document.

		Does not change state; reconcile through apply_callback().

		Raises:
			ZatcaValidationError: If the document was never submitted
		"""
		state = self.store.get(self.document_id(record))
		if not state.uuid:
			raise ZatcaValidationError(
				f"Document {state.document_id} has no ZATCA UUID",
				field="uuid"
			)
		return self.client.get_status(state.uuid)

	def apply_callback(self, request_id: str, status: str, payload: dict | None = None) -> SubmissionState:
		"""
		Apply an asynchronous status notification.

		Args:
			request_id: requestID of the original submission
			status: Status reported by ZATCA
			payload: Full callback body (stored on the state)

		Returns:
			SubmissionState

		Raises:
			DocumentNotFound: If no document carries the request id
			ZatcaValidationError: If the transition is not allowed
		"""
		state = self.store.find_by_request_id(request_id)
		if state is None:
			raise DocumentNotFound(f"No document for request {request_id}", identifier=request_id)

		payload = payload or {"requestID": request_id, "status": status}
		normalized = str(status).upper()

		if normalized in self.REPORTED_STATUSES:
			state.mark_reported(payload, self.clock())
		elif normalized in self.CLEARED_STATUSES:
			state.mark_cleared(payload, self.clock())
		elif normalized in self.FAILED_CALLBACK_STATUSES:
			state.mark_failed(
				{"error": payload.get("message") or f"ZATCA reported {normalized}", "type": "Callback", "status": normalized},
				payload
			)
		else:
			state.last_callback = payload

		self.store.save(state)
		self.logger.document_event("callback", state.document_id, state.document_type, status=normalized)
		return state

	def handle_callback(self, payload) -> SubmissionState:
		"""Validate then apply a callback payload"""
		request_id, status = validate_callback_payload(payload)
		return self.apply_callback(request_id, status, payload)

	# =========================================================================
	# Artifact accessors
	# =========================================================================

	def get_state(self, document_id: str) -> SubmissionState:
		return self.store.get(document_id)

	def get_status(self, document_id: str) -> SubmissionStatus:
		return self.store.get(document_id).status

	def get_xml(self, document_id: str) -> bytes | None:
		return self.store.get(document_id).signed_xml

	def get_qr_code(self, document_id: str) -> str | None:
		return self.store.get(document_id).qr_code


def get_orchestrator(config: ZatcaConfig | None = None, store: SubmissionStore | None = None) -> SubmissionOrchestrator:
	"""Get submission orchestrator instance"""
	return SubmissionOrchestrator(config, store=store)
