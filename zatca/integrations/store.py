# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
ZATCA Submission Store backed by the ZATCA Submission DocType

Datetimes are stored naive in UTC (Frappe Datetime fields carry no zone)
and come back as aware UTC values.
"""

import json
from datetime import datetime, timezone

import frappe
from frappe.utils import get_datetime

from zatca.api.submission import SubmissionState, SubmissionStatus, SubmissionStore

SUBMISSION_DOCTYPE = "ZATCA Submission"

JSON_FIELDS = ("response", "errors", "last_callback")
DATETIME_FIELDS = ("reported_at", "cleared_at")
PLAIN_FIELDS = (
    "document_type",
    "compliance_invoice_id",
    "invoice_hash",
    "uuid",
    "qr_code",
    "request_id",
)


def _to_db_datetime(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_datetime(value) -> datetime | None:
    if not value:
        return None
    parsed = get_datetime(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _state_to_fields(state: SubmissionState) -> dict:
    """DocType field values for a state"""
    values = {
        "document_id": state.document_id,
        "status": state.status.value,
        "attempts": state.attempts,
        "signed_xml": state.signed_xml.decode("utf-8") if state.signed_xml else None,
    }
    for fieldname in PLAIN_FIELDS:
        values[fieldname] = getattr(state, fieldname)
    for fieldname in DATETIME_FIELDS:
        values[fieldname] = _to_db_datetime(getattr(state, fieldname))
    for fieldname in JSON_FIELDS:
        value = getattr(state, fieldname)
        values[fieldname] = frappe.as_json(value) if value is not None else None
    return values


def _fields_to_state(values) -> SubmissionState:
    """State from a DocType row (dict or document)"""
    kwargs = {
        "document_id": values.get("document_id"),
        "status": SubmissionStatus(values.get("status") or SubmissionStatus.UNSUBMITTED.value),
        "attempts": int(values.get("attempts") or 0),
        "signed_xml": values["signed_xml"].encode("utf-8") if values.get("signed_xml") else None,
    }
    for fieldname in PLAIN_FIELDS:
        kwargs[fieldname] = values.get(fieldname) or None
    for fieldname in DATETIME_FIELDS:
        kwargs[fieldname] = _from_db_datetime(values.get(fieldname))
    for fieldname in JSON_FIELDS:
        raw = values.get(fieldname)
        kwargs[fieldname] = json.loads(raw) if raw else None
    return SubmissionState(**kwargs)


class FrappeSubmissionStore(SubmissionStore):
    """
    Submission state persisted as ZATCA Submission documents.

    Documents are named by document_id, which for ERPNext is the
    reference document's name.
    """

    FIELDS = ("document_id", "status", "attempts", "signed_xml") + PLAIN_FIELDS + DATETIME_FIELDS + JSON_FIELDS

    def __init__(self, reference_doctype: str = "Sales Invoice"):
        self.reference_doctype = reference_doctype

    def get(self, document_id):
        row = frappe.db.get_value(SUBMISSION_DOCTYPE, document_id, list(self.FIELDS), as_dict=True)
        if not row:
            return SubmissionState(document_id=document_id)
        return _fields_to_state(row)

    def save(self, state):
        values = _state_to_fields(state)

        if frappe.db.exists(SUBMISSION_DOCTYPE, state.document_id):
            doc = frappe.get_doc(SUBMISSION_DOCTYPE, state.document_id)
            doc.update(values)
            doc.save(ignore_permissions=True)
        else:
            doc = frappe.get_doc({
                "doctype": SUBMISSION_DOCTYPE,
                "reference_doctype": self.reference_doctype,
                "reference_name": state.document_id,
                **values
            })
            doc.insert(ignore_permissions=True)

        frappe.db.commit()

    def find_by_request_id(self, request_id):
        name = frappe.db.get_value(SUBMISSION_DOCTYPE, {"request_id": request_id}, "name")
        if not name:
            return None
        return self.get(name)
