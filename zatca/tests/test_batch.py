# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Tests for submission jobs and batch processing
"""

from unittest import TestCase
from unittest.mock import MagicMock

from zatca.api.batch import BatchProcessor, submit_batch
from zatca.api.jobs import SubmissionJob
from zatca.api.signature import CertificateManager
from zatca.api.submission import InMemorySubmissionStore, SubmissionOrchestrator, SubmissionStatus
from zatca.exceptions import SubmissionError, ZatcaValidationError
from zatca.utils.resilience import BackoffPolicy
from zatca.utils.testing import FakeZatcaClient, make_config, make_invoice_record, make_reporting_response


class BatchTestCase(TestCase):

    def setUp(self):
        self.config = make_config()
        self.client = FakeZatcaClient()
        self.store = InMemorySubmissionStore()
        self.orchestrator = SubmissionOrchestrator(
            self.config,
            certificates=CertificateManager(self.config),
            client=self.client,
            store=self.store,
        )
        self.sleep = MagicMock()


class TestSubmissionJob(BatchTestCase):
    """Tests for SubmissionJob"""

    def test_success_first_attempt(self):
        job = SubmissionJob(self.orchestrator, make_invoice_record(), "report", sleep=self.sleep)
        state = job.run()

        self.assertEqual(state.status, SubmissionStatus.REPORTED)
        self.assertEqual(job.attempts, 1)
        self.sleep.assert_not_called()

    def test_retries_transient_failure_with_same_uuid(self):
        self.client.set_response(
            "report",
            SubmissionError("Service unavailable", status_code=503),
            make_reporting_response()
        )
        policy = BackoffPolicy(max_attempts=3, delays=(30, 60, 120))
        job = SubmissionJob(self.orchestrator, make_invoice_record(), "report", policy=policy, sleep=self.sleep)

        state = job.run()

        self.assertEqual(state.status, SubmissionStatus.REPORTED)
        self.assertEqual(job.attempts, 2)
        self.sleep.assert_called_once_with(30)
        uuids = {payload["uuid"] for payload in self.client.get_calls("report")}
        self.assertEqual(uuids, {job.uuid})

    def test_exhausted_attempts_mark_failed(self):
        self.client.set_error("report", SubmissionError("Service unavailable", status_code=503))
        policy = BackoffPolicy(max_attempts=3, delays=(30, 60, 120))
        job = SubmissionJob(self.orchestrator, make_invoice_record(), "report", policy=policy, sleep=self.sleep)

        with self.assertRaises(SubmissionError):
            job.run()

        self.assertEqual(job.attempts, 3)
        self.assertEqual([c.args[0] for c in self.sleep.call_args_list], [30, 60])
        state = self.store.get("1")
        self.assertEqual(state.status, SubmissionStatus.FAILED)
        self.assertEqual(state.attempts, 3)

    def test_permanent_failure_is_not_retried(self):
        self.client.set_error("report", SubmissionError("Invalid VAT number", status_code=400))
        job = SubmissionJob(self.orchestrator, make_invoice_record(), "report", sleep=self.sleep)

        with self.assertRaises(SubmissionError):
            job.run()

        self.assertEqual(job.attempts, 1)
        self.sleep.assert_not_called()
        self.assertEqual(self.store.get("1").status, SubmissionStatus.FAILED)

    def test_policy_from_config(self):
        job = SubmissionJob(self.orchestrator, make_invoice_record())
        self.assertEqual(job.policy.max_attempts, self.config.max_attempts)
        self.assertEqual(job.policy.delays, self.config.backoff)


class TestBatchProcessor(BatchTestCase):
    """Tests for BatchProcessor"""

    def _records(self, count, malformed=()):
        records = []
        for index in range(1, count + 1):
            number = None if index in malformed else f"INV-{index:03d}"
            records.append(make_invoice_record(record_id=index, number=number))
        return records

    def test_partial_failures_do_not_stop_batch(self):
        records = self._records(25, malformed={3, 7, 11, 19, 23})
        processor = BatchProcessor(self.orchestrator, batch_size=10, sleep=self.sleep)

        summary = processor.process(records, "report")

        self.assertEqual(summary.attempted, 25)
        self.assertEqual(summary.succeeded, 20)
        self.assertEqual(summary.failed, 5)
        self.assertEqual(
            sorted(failure["document_id"] for failure in summary.failures),
            sorted(["3", "7", "11", "19", "23"])
        )
        self.assertEqual(self.client.call_count("report"), 20)
        self.assertEqual(self.store.get("7").status, SubmissionStatus.FAILED)
        self.assertEqual(self.store.get("8").status, SubmissionStatus.REPORTED)

    def test_on_complete_callback(self):
        on_complete = MagicMock()
        processor = BatchProcessor(self.orchestrator, batch_size=2, sleep=self.sleep, on_complete=on_complete)

        summary = processor.process(self._records(3), "report")

        on_complete.assert_called_once_with(summary)
        self.assertEqual(summary.succeeded, 3)

    def test_batch_size_defaults_to_config(self):
        processor = BatchProcessor(self.orchestrator)
        self.assertEqual(processor.batch_size, self.config.batch_size)
        self.assertEqual(BatchProcessor(self.orchestrator, batch_size=0).batch_size, 1)

    def test_empty_batch(self):
        summary = BatchProcessor(self.orchestrator, sleep=self.sleep).process([], "report")
        self.assertEqual(summary.attempted, 0)

    def test_unknown_operation(self):
        with self.assertRaises(ZatcaValidationError):
            BatchProcessor(self.orchestrator).process(self._records(1), "void")

    def test_submit_batch(self):
        result = submit_batch(self.orchestrator, self._records(2), "report")
        self.assertEqual(result["succeeded"], 2)
        self.assertEqual(result["failures"], [])

    def test_single_worker_runs_in_calling_thread(self):
        import threading

        threads = set()
        submit = self.orchestrator.submit

        def record_thread(*args, **kwargs):
            threads.add(threading.get_ident())
            return submit(*args, **kwargs)

        self.orchestrator.submit = record_thread
        summary = BatchProcessor(self.orchestrator, max_workers=1, sleep=self.sleep).process(self._records(3), "report")

        self.assertEqual(summary.succeeded, 3)
        self.assertEqual(threads, {threading.get_ident()})
