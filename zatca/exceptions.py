# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
"""
ZATCA Exception Hierarchy

Provides a consistent exception hierarchy for ZATCA operations.
All custom exceptions inherit from ZatcaError for easy catching.
"""

from __future__ import annotations

from typing import Any


class ZatcaError(Exception):
    """Base exception for all ZATCA errors.

    All ZATCA-specific exceptions should inherit from this class.
    This allows catching all ZATCA errors with a single except clause.

    Example:
        try:
            orchestrator.report(invoice)
        except ZatcaError as e:
            handle_zatca_error(e)
    """

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details
        }


class ZatcaConfigError(ZatcaError):
    """Configuration error for ZATCA.

    Raised when required settings are missing or invalid, e.g. an unknown
    field-map key or a missing certificate file.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFIG_ERROR", details=details)


class ZatcaValidationError(ZatcaError):
    """Validation error for ZATCA input.

    Raised when input (callback payloads, batch operations, stored state)
    fails validation before anything is mutated.

    Attributes:
        field: Field that failed validation
        errors: List of validation errors
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        errors: list[str] | None = None
    ):
        super().__init__(message, code="VALIDATION_ERROR")
        self.field = field
        self.errors = errors or []


class ClassificationError(ZatcaError):
    """Credit-note classification failed.

    Raised when the configured identification strategy cannot be
    evaluated at this layer.
    """

    def __init__(self, message: str, strategy: str | None = None):
        super().__init__(message, code="CLASSIFICATION_ERROR", details={"strategy": strategy})
        self.strategy = strategy


class MappingError(ZatcaError):
    """Error while projecting a source record to a canonical document."""

    def __init__(self, message: str, field: str | None = None, code: str = "MAPPING_ERROR"):
        super().__init__(message, code=code, details={"field": field} if field else None)
        self.field = field


class IncompleteDocument(MappingError):
    """A required canonical field (e.g. the document number) is missing."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field, code="INCOMPLETE_DOCUMENT")


class MissingReference(MappingError):
    """A credit note does not resolve to the document it corrects."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field, code="MISSING_REFERENCE")


class XMLGenerationError(MappingError):
    """The canonical document could not be rendered as UBL XML."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, field=field, code="XML_ERROR")


class SigningError(ZatcaError):
    """Digital signature error for ZATCA.

    Raised when key or certificate material is missing or malformed,
    or when the signature cannot be computed.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="SIGNING_ERROR", details=details)


class InvalidCertificate(ZatcaError):
    """Certificate content could not be parsed or validated."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, code="INVALID_CERTIFICATE", details=details)


class SubmissionError(ZatcaError):
    """Error talking to the ZATCA reporting / clearance API.

    Raised on transport failures, HTTP error responses and rejected
    submissions.

    Attributes:
        status_code: HTTP status code (408 for timeouts, 503 for connection errors)
        response_data: Raw response data from API
        retryable: Whether a later attempt may succeed
    """

    RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: Any = None,
        retryable: bool | None = None
    ):
        super().__init__(message, code="SUBMISSION_ERROR", details={"status_code": status_code})
        self.status_code = status_code
        self.response_data = response_data
        if retryable is None:
            retryable = status_code in self.RETRYABLE_STATUS_CODES
        self.retryable = retryable


class DocumentNotFound(ZatcaError):
    """No submission state matches the given identifier."""

    def __init__(self, message: str, identifier: str | None = None):
        super().__init__(message, code="NOT_FOUND", details={"identifier": identifier})
        self.identifier = identifier


# Export all exceptions
__all__ = [
    "ZatcaError",
    "ZatcaConfigError",
    "ZatcaValidationError",
    "ClassificationError",
    "MappingError",
    "IncompleteDocument",
    "MissingReference",
    "XMLGenerationError",
    "SigningError",
    "InvalidCertificate",
    "SubmissionError",
    "DocumentNotFound",
]
