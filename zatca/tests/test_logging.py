# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Tests for structured logging
"""

import json
from unittest import TestCase
from unittest.mock import MagicMock

from zatca.utils.logging import CorrelationContext, StructuredLogger, get_logger, log_context, log_function_call


class TestStructuredLogger(TestCase):

    def setUp(self):
        CorrelationContext.clear()
        self.addCleanup(CorrelationContext.clear)

    def _entries(self, logs):
        return [json.loads(record.getMessage()) for record in logs.records]

    def test_json_entry_with_context(self):
        logger = StructuredLogger("zatca.test")
        CorrelationContext.set_id("job-123")

        with self.assertLogs("zatca.test", level="INFO") as logs:
            with log_context(document_id="INV-001"):
                logger.info("Invoice reported", uuid="abc")

        entry = self._entries(logs)[0]
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["correlation_id"], "job-123")
        self.assertEqual(entry["context"], {"document_id": "INV-001"})
        self.assertEqual(entry["data"], {"uuid": "abc"})

    def test_document_event_error_level(self):
        logger = StructuredLogger("zatca.test")

        with self.assertLogs("zatca.test", level="INFO") as logs:
            logger.document_event("report", "INV-001", "invoice", status="FAILED", error="rejected")

        self.assertEqual(logs.records[0].levelname, "ERROR")
        data = self._entries(logs)[0]["data"]
        self.assertEqual(data["operation"], "report")
        self.assertEqual(data["status"], "FAILED")

    def test_api_call_hides_payloads_by_default(self):
        logger = StructuredLogger("zatca.test")

        with self.assertLogs("zatca.test", level="INFO") as logs:
            logger.api_call("POST", "https://example.test", status_code=200, request_body={"invoice": "..."})

        data = self._entries(logs)[0]["data"]
        self.assertEqual(data["status_code"], 200)
        self.assertNotIn("request", data)

    def test_log_function_call_reraises(self):
        @log_function_call
        def broken():
            raise ValueError("boom")

        with self.assertLogs("zatca", level="ERROR") as logs:
            with self.assertRaises(ValueError):
                broken()

        self.assertEqual(self._entries(logs)[0]["data"]["error_type"], "ValueError")

    def test_sink_receives_entries(self):
        sink = MagicMock()
        logger = get_logger("zatca.submission", sink=sink)

        logger.warning("Malformed response", document_id="INV-001")

        self.assertIs(logger.sink, sink)
        entry = json.loads(sink.warning.call_args[0][0])
        self.assertEqual(entry["logger"], "zatca.submission")
        self.assertEqual(entry["data"], {"document_id": "INV-001"})
