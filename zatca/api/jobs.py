# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Submission Jobs

A job is one document's submission with a retry budget. Every attempt of
a job reuses the same UUID; only the last attempt records FAILED.
"""

import itertools
import time
import uuid as uuid_lib
from typing import Callable

from zatca.api.submission import OPERATION_AUTO, SubmissionOrchestrator, SubmissionState
from zatca.utils.resilience import BackoffPolicy, is_retryable, retry_with_backoff


class SubmissionJob:
	"""
	Retrying submission of one record.

	Usage:
		job = SubmissionJob(orchestrator, invoice, operation="report")
		state = job.run()
	"""

	def __init__(
		self,
		orchestrator: SubmissionOrchestrator,
		record,
		operation: str = OPERATION_AUTO,
		policy: BackoffPolicy | None = None,
		sleep: Callable[[float], None] = time.sleep,
		uuid: str | None = None
	):
		self.orchestrator = orchestrator
		self.record = record
		self.operation = operation
		self.policy = policy or BackoffPolicy.from_config(orchestrator.config)
		self.sleep = sleep
		self.uuid = uuid or str(uuid_lib.uuid4())
		self.attempts = 0

	def run(self) -> SubmissionState:
		"""
		Submit with retries.

		Returns:
			SubmissionState: Final state on success

		Raises:
			ZatcaError: Last failure once the budget is spent or on a
				non-retryable error
		"""
		max_attempts = self.policy.max_attempts
		counter = itertools.count(1)

		@retry_with_backoff(
			max_retries=max_attempts - 1,
			delays=self.policy.delays,
			retry_if=is_retryable,
			sleep=self.sleep
		)
		def attempt():
			self.attempts = next(counter)
			return self.orchestrator.submit(
				self.record,
				self.operation,
				uuid=self.uuid,
				final_attempt=self.attempts >= max_attempts
			)

		return attempt()

