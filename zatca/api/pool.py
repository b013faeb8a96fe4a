# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Connection Pool

HTTP connection pooling for batch submissions. Each worker thread gets its
own requests.Session so concurrent submissions never share one.

Transport retries cover connection setup and GETs only; submission
retries belong to SubmissionJob.
"""

import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

_session_pool = threading.local()


def get_session(
    pool_connections: int = 10,
    pool_maxsize: int = 20,
    max_retries: int = 3,
    backoff_factor: float = 0.3
) -> requests.Session:
    """
    Get or create the current thread's pooled session.

    Args:
        pool_connections: Number of connection pools
        pool_maxsize: Max connections per pool
        max_retries: Max connect retries
        backoff_factor: Retry backoff factor

    Returns:
        requests.Session: Pooled session
    """
    if getattr(_session_pool, "session", None) is None:
        session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            connect=max_retries,
            read=0,
            status=0,
            backoff_factor=backoff_factor,
            allowed_methods=["GET"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
            max_retries=retry_strategy
        )

        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update({
            "Accept-Encoding": "gzip, deflate",
            "Connection": "keep-alive"
        })

        _session_pool.session = session

    return _session_pool.session


def close_session():
    """Close the current thread's session"""
    session = getattr(_session_pool, "session", None)
    if session is not None:
        session.close()
        _session_pool.session = None
