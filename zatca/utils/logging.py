# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Structured Logging Utilities for ZATCA

Provides correlation IDs and structured logging for tracing documents
across the pipeline and API calls. Log lines are JSON emitted through the
standard ``logging`` tree under ``zatca`` unless a sink is given. Frappe's
``frappe.logger`` builds its own non-propagating loggers that write to the
bench and site log files, so the Frappe adapter passes one in as the sink.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable

_correlation_id: ContextVar[str | None] = ContextVar("zatca_correlation_id", default=None)
_log_context: ContextVar[dict[str, Any]] = ContextVar("zatca_log_context", default={})


class CorrelationContext:
    """Manages correlation ID for request tracing"""

    HEADER_NAME = "X-Correlation-ID"

    @classmethod
    def get_id(cls) -> str:
        """Get or create correlation ID for the current context"""
        correlation_id = _correlation_id.get()
        if not correlation_id:
            correlation_id = cls._generate_id()
            _correlation_id.set(correlation_id)
        return correlation_id

    @classmethod
    def set_id(cls, correlation_id: str):
        """Set correlation ID (useful for background jobs)"""
        _correlation_id.set(correlation_id)

    @classmethod
    def _generate_id(cls) -> str:
        return uuid.uuid4().hex[:12]

    @classmethod
    def clear(cls):
        _correlation_id.set(None)


class StructuredLogger:
    """
    Structured logger for ZATCA.

    Usage:
        logger = StructuredLogger("zatca.submission")
        logger.info("Invoice reported", document_id="INV-001", uuid="...")
    """

    def __init__(self, name: str = "zatca", debug_payloads: bool = False, sink: logging.Logger | None = None):
        self.name = name
        self.debug_payloads = debug_payloads
        self._logger = sink if sink is not None else logging.getLogger(name)

    @property
    def sink(self) -> logging.Logger:
        return self._logger

    def _format_message(self, level: str, message: str, **kwargs) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level.upper(),
            "app": "zatca",
            "logger": self.name,
            "correlation_id": CorrelationContext.get_id(),
            "message": message,
        }

        context = get_log_context()
        if context:
            entry["context"] = context

        if kwargs:
            entry["data"] = kwargs

        return entry

    def _log(self, level: str, message: str, **kwargs):
        entry = self._format_message(level, message, **kwargs)
        log_line = json.dumps(entry, default=str, ensure_ascii=False)
        getattr(self._logger, level.lower())(log_line)

    def debug(self, message: str, **kwargs):
        self._log("debug", message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log("warning", message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log("error", message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._log("critical", message, **kwargs)

    def api_call(
        self,
        method: str,
        url: str,
        status_code: int | None = None,
        duration_ms: float | None = None,
        request_body: Any = None,
        response_body: Any = None,
        error: str | None = None
    ):
        """Log API call with standard fields"""
        data: dict[str, Any] = {
            "http_method": method,
            "url": url,
        }

        if status_code is not None:
            data["status_code"] = status_code
        if duration_ms is not None:
            data["duration_ms"] = round(duration_ms, 2)
        if error:
            data["error"] = error

        if self.debug_payloads:
            if request_body:
                data["request"] = request_body
            if response_body:
                data["response"] = response_body

        level = "info" if not error else "error"
        self._log(level, f"API {method} {url}", **data)

    def document_event(
        self,
        operation: str,
        document_id: str | None,
        document_type: str | None = None,
        status: str | None = None,
        error: str | None = None,
        **extra
    ):
        """Log a per-document pipeline event keyed by operation and document"""
        data: dict[str, Any] = {
            "operation": operation,
            "document_id": document_id,
        }
        if document_type:
            data["document_type"] = document_type
        if status:
            data["status"] = status
        if error:
            data["error"] = error
        data.update(extra)

        level = "info" if not error else "error"
        self._log(level, f"Document {operation}", **data)


# Singleton logger instance
logger = StructuredLogger("zatca")


def get_logger(name: str | None = None, sink: logging.Logger | None = None) -> StructuredLogger:
    """Get a logger instance, optionally writing to the given stdlib logger"""
    if name is None and sink is None:
        return logger
    return StructuredLogger(name or "zatca", sink=sink)


def log_function_call(func: Callable) -> Callable:
    """Decorator to log function entry and exit"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        func_name = f"{func.__module__}.{func.__name__}"

        logger.debug(f"Entering {func_name}", args_count=len(args), kwargs_keys=list(kwargs.keys()))

        try:
            result = func(*args, **kwargs)
            logger.debug(f"Exiting {func_name}", success=True)
            return result
        except Exception as e:
            logger.error(f"Exception in {func_name}", error=str(e), error_type=type(e).__name__)
            raise

    return wrapper


@contextmanager
def log_context(**kwargs):
    """Context manager for adding extra context to all logs within block"""
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)


def get_log_context() -> dict:
    return dict(_log_context.get())
