# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Tests for retry utilities
"""

from unittest import TestCase
from unittest.mock import MagicMock

from zatca.exceptions import SubmissionError
from zatca.utils.resilience import BackoffPolicy, is_retryable, retry_with_backoff


class TestBackoffPolicy(TestCase):

    def test_delay_schedule(self):
        policy = BackoffPolicy(max_attempts=5, delays=(30, 60, 120))
        self.assertEqual([policy.delay_for(n) for n in range(1, 6)], [30, 60, 120, 120, 120])

    def test_empty_schedule(self):
        self.assertEqual(BackoffPolicy(delays=()).delay_for(1), 0)

    def test_is_retryable(self):
        self.assertTrue(is_retryable(SubmissionError("x", status_code=429)))
        self.assertTrue(is_retryable(SubmissionError("x", status_code=500)))
        self.assertFalse(is_retryable(SubmissionError("x", status_code=400)))
        self.assertFalse(is_retryable(SubmissionError("x", status_code=503, retryable=False)))
        self.assertFalse(is_retryable(ValueError("x")))


class TestRetryWithBackoff(TestCase):

    def test_retries_until_success(self):
        sleep = MagicMock()
        calls = MagicMock(side_effect=[ConnectionError("a"), ConnectionError("b"), "ok"])

        @retry_with_backoff(max_retries=3, initial_delay=1, exceptions=(ConnectionError,), sleep=sleep)
        def flaky():
            return calls()

        self.assertEqual(flaky(), "ok")
        self.assertEqual([c.args[0] for c in sleep.call_args_list], [1, 2.0])

    def test_raises_after_budget(self):
        sleep = MagicMock()

        @retry_with_backoff(max_retries=2, delays=(5,), sleep=sleep)
        def failing():
            raise SubmissionError("down", status_code=503)

        with self.assertRaises(SubmissionError):
            failing()
        self.assertEqual(sleep.call_count, 2)

    def test_retry_if_stops_early(self):
        sleep = MagicMock()
        on_retry = MagicMock()

        @retry_with_backoff(max_retries=3, retry_if=is_retryable, on_retry=on_retry, sleep=sleep)
        def rejected():
            raise SubmissionError("bad request", status_code=400)

        with self.assertRaises(SubmissionError):
            rejected()
        sleep.assert_not_called()
        on_retry.assert_not_called()

    def test_unlisted_exception_propagates(self):
        @retry_with_backoff(max_retries=3, exceptions=(ConnectionError,), sleep=MagicMock())
        def broken():
            raise KeyError("x")

        with self.assertRaises(KeyError):
            broken()
