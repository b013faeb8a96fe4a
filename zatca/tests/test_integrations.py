# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Integration Tests

Tests for the Frappe bindings:
- ZATCA Settings -> ZatcaConfig
- ZATCA Submission store
- Sales Invoice hooks, callback endpoint and scheduled sweep

Frappe is patched per module, so no site is required.
"""

import json
from datetime import datetime, timezone
from types import SimpleNamespace
from decimal import Decimal
from unittest import TestCase
from unittest.mock import MagicMock, patch

import pytest

pytest.importorskip("frappe")

from zatca.api.submission import SubmissionState, SubmissionStatus  # noqa: E402
from zatca.exceptions import DocumentNotFound  # noqa: E402


class FakeSettings:
    """Stand-in for the ZATCA Settings single"""

    def __init__(self, **values):
        self.enabled = 1
        self.environment = "Sandbox"
        self.sandbox_certificate = None
        self.sandbox_private_key = None
        self.sandbox_certificate_id = "CERT-ID"
        self.certificate_path = "/tmp/zatca-test"
        self.organization_name = "Seller LLC"
        self.vat_number = "300000000000003"
        self.clearance_threshold = 5000
        self.credit_note_method = None
        self.credit_note_type_field = None
        self.credit_note_type_value = None
        self.credit_note_model_kind = None
        self.field_mapping = None
        self.timeout = 0
        self.max_attempts = 4
        self.batch_size = 20
        self.debug_mode = 0
        self.passwords = {"sandbox_api_secret": "sandbox-secret", "api_secret": "prod-secret"}
        self.__dict__.update(values)

    def get_password(self, fieldname, raise_exception=True):
        return self.passwords.get(fieldname)


class TestZatcaSettingsConfig(TestCase):
    """Test suite for get_zatca_config."""

    def test_erpnext_defaults(self):
        from zatca.zatca.doctype.zatca_settings.zatca_settings import get_zatca_config

        config = get_zatca_config(FakeSettings())

        self.assertTrue(config.is_sandbox)
        self.assertEqual(config.sandbox.certificate_id, "CERT-ID")
        self.assertEqual(config.sandbox.api_secret, "sandbox-secret")
        self.assertEqual(config.api_secret, "prod-secret")
        self.assertEqual(config.clearance_threshold, Decimal("5000"))
        self.assertEqual(config.timeout, 30)
        self.assertEqual(config.max_attempts, 4)
        self.assertEqual(config.batch_size, 20)
        self.assertEqual(config.record_id_field, "name")
        self.assertEqual(config.field_map.invoice_number, "name")
        self.assertEqual(config.field_map.issue_time, "posting_time")
        self.assertEqual(config.field_map.item_quantity, "qty")
        self.assertEqual(config.credit_note_identification.type_field, "is_return")
        self.assertEqual(config.credit_note_identification.type_value, "1")
        self.assertEqual(config.invoice_reference.number_reference, "return_against")

    def test_field_mapping_override(self):
        from zatca.zatca.doctype.zatca_settings.zatca_settings import get_zatca_config

        settings = FakeSettings(
            environment="Production",
            field_mapping='{"buyer_tax_number": "customer_tax_id"}'
        )
        config = get_zatca_config(settings)

        self.assertEqual(config.environment, "production")
        self.assertEqual(config.field_map.buyer_tax_number, "customer_tax_id")
        self.assertEqual(config.field_map.buyer_name, "customer_name")


class TestSubmissionStoreFields(TestCase):
    """Test suite for ZATCA Submission field conversion."""

    def test_state_fields_round_trip(self):
        from zatca.integrations.store import _fields_to_state, _state_to_fields

        reported_at = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        state = SubmissionState(
            document_id="SINV-0001",
            status=SubmissionStatus.REPORTED,
            document_type="invoice",
            response={"reportingStatus": "REPORTED", "requestID": "REQ-1"},
            reported_at=reported_at,
            uuid="uuid-1",
            signed_xml=b"<Invoice/>",
            request_id="REQ-1",
            attempts=2,
        )

        fields = _state_to_fields(state)

        self.assertEqual(fields["status"], "REPORTED")
        self.assertIsNone(fields["reported_at"].tzinfo)
        self.assertEqual(fields["signed_xml"], "<Invoice/>")
        self.assertIsNone(fields["errors"])

        restored = _fields_to_state(fields)

        self.assertEqual(restored.status, SubmissionStatus.REPORTED)
        self.assertEqual(restored.reported_at, reported_at)
        self.assertEqual(restored.response, state.response)
        self.assertEqual(restored.signed_xml, b"<Invoice/>")
        self.assertEqual(restored.attempts, 2)

    def test_missing_row_is_unsubmitted(self):
        from zatca.integrations.store import FrappeSubmissionStore

        with patch("zatca.integrations.store.frappe") as mock_frappe:
            mock_frappe.db.get_value.return_value = None
            state = FrappeSubmissionStore().get("SINV-0002")

        self.assertEqual(state.document_id, "SINV-0002")
        self.assertEqual(state.status, SubmissionStatus.UNSUBMITTED)

    def test_save_inserts_new_row(self):
        from zatca.integrations.store import FrappeSubmissionStore

        with patch("zatca.integrations.store.frappe") as mock_frappe:
            mock_frappe.db.exists.return_value = None
            mock_frappe.as_json.side_effect = lambda value: "{}"
            FrappeSubmissionStore().save(SubmissionState(document_id="SINV-0003"))

            values = mock_frappe.get_doc.call_args.args[0]
            self.assertEqual(values["doctype"], "ZATCA Submission")
            self.assertEqual(values["reference_doctype"], "Sales Invoice")
            self.assertEqual(values["reference_name"], "SINV-0003")
            self.assertEqual(values["status"], "UNSUBMITTED")
            mock_frappe.get_doc.return_value.insert.assert_called_once_with(ignore_permissions=True)
            mock_frappe.db.commit.assert_called_once()


class TestSalesInvoiceHooks(TestCase):
    """Test suite for Sales Invoice document events."""

    def _invoice(self, **values):
        doc = MagicMock()
        doc.name = "SINV-0001"
        doc.is_return = 0
        doc.return_against = None
        for key, value in values.items():
            setattr(doc, key, value)
        return doc

    @patch("zatca.integrations.sales_invoice.enqueue_invoice_submission")
    @patch("zatca.integrations.sales_invoice.frappe")
    def test_on_submit_disabled(self, mock_frappe, mock_enqueue):
        from zatca.integrations.sales_invoice import on_submit

        mock_frappe.db.get_single_value.return_value = 0
        on_submit(self._invoice())

        mock_enqueue.assert_not_called()

    @patch("zatca.integrations.sales_invoice.enqueue_invoice_submission")
    @patch("zatca.integrations.sales_invoice.frappe")
    def test_on_submit_enqueues(self, mock_frappe, mock_enqueue):
        from zatca.integrations.sales_invoice import on_submit

        mock_frappe.db.get_single_value.return_value = 1
        on_submit(self._invoice())

        mock_enqueue.assert_called_once_with("SINV-0001")

    @patch("zatca.integrations.sales_invoice.enqueue_invoice_submission")
    @patch("zatca.integrations.sales_invoice.frappe")
    def test_return_without_reference_is_logged(self, mock_frappe, mock_enqueue):
        from zatca.integrations.sales_invoice import on_submit

        mock_frappe.db.get_single_value.return_value = 1
        on_submit(self._invoice(is_return=1))

        mock_frappe.log_error.assert_called_once()
        mock_enqueue.assert_called_once_with("SINV-0001")

    @patch("zatca.zatca.doctype.zatca_settings.zatca_settings.get_zatca_config")
    @patch("zatca.integrations.sales_invoice.frappe")
    def test_orchestrator_logs_to_site_logger(self, mock_frappe, mock_config):
        from zatca.integrations.sales_invoice import get_frappe_orchestrator
        from zatca.utils.testing import make_config

        mock_config.return_value = make_config(with_certificate=False)
        site_logger = mock_frappe.logger.return_value

        orchestrator = get_frappe_orchestrator()

        mock_frappe.logger.assert_called_once_with("zatca", allow_site=True)
        self.assertIs(orchestrator.logger.sink, site_logger)

    @patch("zatca.integrations.sales_invoice.frappe")
    def test_return_record_carries_original_reference(self, mock_frappe):
        from zatca.integrations.sales_invoice import get_invoice_record

        doc = self._invoice(is_return=1, return_against="SINV-0000")
        doc.as_dict.return_value = {"name": "SINV-0001", "is_return": 1, "return_against": "SINV-0000"}
        mock_frappe.get_doc.return_value = doc
        mock_frappe.db.get_value.side_effect = ["orig-uuid", "2024-01-10"]

        record = get_invoice_record("SINV-0001")

        self.assertEqual(record["return_against_uuid"], "orig-uuid")
        self.assertEqual(record["return_against_date"], "2024-01-10")


class TestCallbackEndpoint(TestCase):
    """Test suite for the callback endpoint."""

    def setUp(self):
        patcher = patch("zatca.integrations.callback.frappe")
        self.mock_frappe = patcher.start()
        self.addCleanup(patcher.stop)

        self.mock_frappe.get_cached_doc.return_value = FakeSettings(
            passwords={"callback_token": "token-1"}
        )
        self.mock_frappe.request.data = b'{"requestID": "REQ-1", "status": "CLEARED"}'
        self.mock_frappe.request.get_json.return_value = {"requestID": "REQ-1", "status": "CLEARED"}

    def _handle(self, token, orchestrator=None):
        from zatca.integrations.callback import handle

        self.mock_frappe.get_request_header.return_value = token
        with patch(
            "zatca.integrations.sales_invoice.get_frappe_orchestrator",
            return_value=orchestrator or MagicMock()
        ):
            return handle()

    def test_rejects_bad_token(self):
        result = self._handle("wrong")

        self.assertFalse(result["success"])
        self.assertEqual(self.mock_frappe.local.response.http_status_code, 403)

    def test_applies_callback(self):
        orchestrator = MagicMock()
        orchestrator.handle_callback.return_value = SubmissionState(
            document_id="SINV-0001", status=SubmissionStatus.CLEARED
        )

        result = self._handle("token-1", orchestrator)

        orchestrator.handle_callback.assert_called_once_with({"requestID": "REQ-1", "status": "CLEARED"})
        self.assertEqual(result, {"success": True, "document_id": "SINV-0001", "status": "CLEARED"})

    def test_unknown_request_is_404(self):
        orchestrator = MagicMock()
        orchestrator.handle_callback.side_effect = DocumentNotFound("No document", identifier="REQ-1")

        result = self._handle("token-1", orchestrator)

        self.assertFalse(result["success"])
        self.assertEqual(result["code"], "NOT_FOUND")
        self.assertEqual(self.mock_frappe.local.response.http_status_code, 404)


class TestSubmissionSweep(TestCase):
    """Test suite for the hourly submission sweep."""

    def setUp(self):
        patcher = patch("zatca.tasks.submission.frappe")
        self.mock_frappe = patcher.start()
        self.addCleanup(patcher.stop)
        self.mock_frappe.parse_json.side_effect = json.loads

        queued = patch("zatca.tasks.submission.is_invoice_submission_queued", return_value=False)
        self.mock_queued = queued.start()
        self.addCleanup(queued.stop)

    def _rows(self, invoices, submissions):
        self.mock_frappe.get_all.side_effect = [invoices, submissions]

    def test_pending_excludes_settled(self):
        from zatca.tasks.submission import get_pending_invoices

        self._rows(
            ["SINV-1", "SINV-2", "SINV-3", "SINV-4"],
            [
                SimpleNamespace(name="SINV-1", status="REPORTED", attempts=1, errors=None),
                SimpleNamespace(name="SINV-2", status="FAILED", attempts=2, errors=None),
                SimpleNamespace(name="SINV-3", status="FAILED", attempts=10, errors=None),
            ],
        )

        self.assertEqual(get_pending_invoices(), ["SINV-2", "SINV-4"])

    def test_permanent_failures_are_not_resubmitted(self):
        from zatca.tasks.submission import get_pending_invoices

        self._rows(
            ["SINV-1", "SINV-2", "SINV-3", "SINV-4"],
            [
                SimpleNamespace(
                    name="SINV-1", status="FAILED", attempts=1,
                    errors=json.dumps({"error": "Missing buyer name", "type": "IncompleteDocument", "operation": "report"})
                ),
                SimpleNamespace(
                    name="SINV-2", status="FAILED", attempts=1,
                    errors=json.dumps({"error": "No key", "type": "SigningError", "operation": "clear"})
                ),
                SimpleNamespace(
                    name="SINV-3", status="FAILED", attempts=3,
                    errors=json.dumps({"error": "Service unavailable", "type": "SubmissionError", "status_code": 503})
                ),
            ],
        )

        self.assertEqual(get_pending_invoices(), ["SINV-3", "SINV-4"])

    def test_invoices_with_live_jobs_are_skipped(self):
        from zatca.tasks.submission import get_pending_invoices

        self._rows(["SINV-1", "SINV-2", "SINV-3"], [])
        self.mock_queued.side_effect = lambda name: name == "SINV-2"

        self.assertEqual(get_pending_invoices(), ["SINV-1", "SINV-3"])

    def test_limit_counts_pending_only(self):
        from zatca.tasks.submission import get_pending_invoices

        self._rows(
            ["SINV-1", "SINV-2", "SINV-3"],
            [SimpleNamespace(name="SINV-1", status="CLEARED", attempts=1, errors=None)],
        )

        self.assertEqual(get_pending_invoices(limit=1), ["SINV-2"])

    @patch("zatca.tasks.submission.enqueue_pending_batch")
    def test_disabled_sweep_does_nothing(self, mock_enqueue):
        from zatca.tasks.submission import submit_pending_documents

        self.mock_frappe.db.get_single_value.return_value = 0
        submit_pending_documents()

        mock_enqueue.assert_not_called()


class TestBackgroundJobs(TestCase):
    """Test suite for job enqueueing."""

    @patch("zatca.utils.background.frappe")
    def test_sweep_batch_is_deduplicated(self, mock_frappe):
        from zatca.utils.background import SWEEP_JOB_NAME, enqueue_pending_batch

        enqueue_pending_batch(["SINV-1", "SINV-2"])

        kwargs = mock_frappe.enqueue.call_args.kwargs
        self.assertEqual(kwargs["job_id"], SWEEP_JOB_NAME)
        self.assertTrue(kwargs["deduplicate"])
        self.assertEqual(kwargs["invoice_names"], ["SINV-1", "SINV-2"])

    @patch("zatca.utils.background.frappe")
    def test_invoice_job_is_deduplicated(self, mock_frappe):
        from zatca.utils.background import enqueue_invoice_submission

        enqueue_invoice_submission("SINV-1")

        kwargs = mock_frappe.enqueue.call_args.kwargs
        self.assertEqual(kwargs["job_id"], "zatca_submit_SINV-1")
        self.assertTrue(kwargs["deduplicate"])
        self.assertEqual(kwargs["method"], "zatca.integrations.sales_invoice.submit_invoice")

    @patch("zatca.utils.background.is_job_enqueued", return_value=True)
    def test_live_invoice_job_lookup(self, mock_enqueued):
        from zatca.utils.background import is_invoice_submission_queued

        self.assertTrue(is_invoice_submission_queued("SINV-1"))
        mock_enqueued.assert_called_once_with("zatca_submit_SINV-1")
