# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Batch Operations

Submits many documents in fixed-size chunks. Each document runs as its
own SubmissionJob; one document's failure never stops the others.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable

from zatca.api.jobs import SubmissionJob
from zatca.api.submission import OPERATIONS, SubmissionOrchestrator
from zatca.exceptions import ZatcaError, ZatcaValidationError
from zatca.utils.logging import get_logger

logger = get_logger("zatca.batch")


@dataclass
class BatchSummary:
	attempted: int = 0
	succeeded: int = 0
	failed: int = 0
	failures: list[dict] = field(default_factory=list)

	def to_dict(self) -> dict:
		return {
			"attempted": self.attempted,
			"succeeded": self.succeeded,
			"failed": self.failed,
			"failures": list(self.failures),
		}


class BatchProcessor:
	"""
	Batch processor for ZATCA submissions.

	Usage:
		processor = BatchProcessor(orchestrator, batch_size=10)
		summary = processor.process(invoices, operation="report")
	"""

	def __init__(
		self,
		orchestrator: SubmissionOrchestrator,
		batch_size: int | None = None,
		max_workers: int = 4,
		sleep: Callable[[float], None] = time.sleep,
		on_complete: Callable[[BatchSummary], None] | None = None
	):
		"""
		Initialize batch processor.

		Args:
			orchestrator: Submission orchestrator
			batch_size: Documents per chunk (config batch_size if omitted)
			max_workers: Concurrent submissions within a chunk (1 runs in the
				calling thread)
			sleep: Sleep function used between retries
			on_complete: Called once with the summary after all chunks
		"""
		size = batch_size if batch_size is not None else orchestrator.config.batch_size
		self.orchestrator = orchestrator
		self.batch_size = max(1, int(size))
		self.max_workers = max(1, int(max_workers))
		self.sleep = sleep
		self.on_complete = on_complete
		self._lock = threading.Lock()

	def process(self, records: Iterable, operation: str = "report") -> BatchSummary:
		"""
		Submit records chunk by chunk.

		Args:
			records: Source records
			operation: "report", "clear" or "auto"

		Returns:
			BatchSummary: Counts and per-document failures
		"""
		if operation not in OPERATIONS:
			raise ZatcaValidationError(f"Unknown operation: {operation}", field="operation")

		records = list(records)
		summary = BatchSummary()

		for start in range(0, len(records), self.batch_size):
			chunk = records[start:start + self.batch_size]
			if self.max_workers == 1:
				# Caller thread only, for hosts whose database handle is thread-local
				for record in chunk:
					self._submit_one(record, operation, summary)
				continue
			with ThreadPoolExecutor(max_workers=min(self.max_workers, len(chunk))) as executor:
				for record in chunk:
					executor.submit(self._submit_one, record, operation, summary)

		logger.info(
			f"Batch {operation} finished: {summary.succeeded}/{summary.attempted} succeeded",
			attempted=summary.attempted,
			succeeded=summary.succeeded,
			failed=summary.failed
		)

		if self.on_complete:
			self.on_complete(summary)

		return summary

	def _submit_one(self, record, operation: str, summary: BatchSummary):
		try:
			SubmissionJob(self.orchestrator, record, operation, sleep=self.sleep).run()
		except Exception as e:
			failure = {
				"document_id": self._identify(record),
				"error": getattr(e, "message", None) or str(e),
				"type": type(e).__name__,
			}
			with self._lock:
				summary.attempted += 1
				summary.failed += 1
				summary.failures.append(failure)
			logger.error(f"Batch {operation} failed for {failure['document_id']}", **failure)
			return

		with self._lock:
			summary.attempted += 1
			summary.succeeded += 1

	def _identify(self, record) -> str | None:
		try:
			return self.orchestrator.document_id(record)
		except ZatcaError:
			return None


def submit_batch(orchestrator: SubmissionOrchestrator, records: Iterable, operation: str = "report", batch_size: int | None = None) -> dict:
	"""
	Convenience function for batch submission.

	Returns:
		dict: Summary counts
	"""
	return BatchProcessor(orchestrator, batch_size=batch_size).process(records, operation).to_dict()
