# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
ZATCA Sales Invoice Integration

Submitted Sales Invoices (and returns, which are credit notes) are queued
for ZATCA reporting or clearance. The worker job runs the submission
pipeline with retries and stores the outcome in ZATCA Submission.
"""

import frappe

from zatca.api.batch import BatchProcessor
from zatca.api.jobs import SubmissionJob
from zatca.api.submission import SubmissionOrchestrator
from zatca.integrations.store import SUBMISSION_DOCTYPE, FrappeSubmissionStore
from zatca.utils.background import enqueue_invoice_submission
from zatca.utils.logging import get_logger, log_function_call

REFERENCE_DOCTYPE = "Sales Invoice"


def on_submit(doc, method=None):
    """
    Handle Sales Invoice submission - queue it for ZATCA.

    Args:
        doc: Sales Invoice document
        method: Event method name
    """
    if not _is_zatca_enabled():
        return

    if doc.is_return and not doc.return_against:
        frappe.log_error(
            message=f"Return invoice {doc.name} has no return_against reference",
            title="ZATCA: Return Invoice Warning"
        )

    enqueue_invoice_submission(doc.name)


def get_invoice_record(invoice_name: str) -> dict:
    """
    Load a Sales Invoice as a submission record.

    Returns carry the original invoice's ZATCA UUID and posting date under
    return_against_uuid / return_against_date.

    Args:
        invoice_name: Sales Invoice name

    Returns:
        dict: Invoice fields with child tables as lists of dicts
    """
    doc = frappe.get_doc(REFERENCE_DOCTYPE, invoice_name)
    record = doc.as_dict()

    if doc.is_return and doc.return_against:
        record["return_against_uuid"] = frappe.db.get_value(SUBMISSION_DOCTYPE, doc.return_against, "uuid")
        record["return_against_date"] = frappe.db.get_value(REFERENCE_DOCTYPE, doc.return_against, "posting_date")

    return record


def get_frappe_orchestrator() -> SubmissionOrchestrator:
    """Orchestrator configured from ZATCA Settings with a DocType-backed store"""
    from zatca.zatca.doctype.zatca_settings.zatca_settings import get_zatca_config

    return SubmissionOrchestrator(
        get_zatca_config(),
        store=FrappeSubmissionStore(REFERENCE_DOCTYPE),
        logger=get_logger("zatca.submission", sink=frappe.logger("zatca", allow_site=True))
    )


@log_function_call
def submit_invoice(invoice_name: str, operation: str = "auto") -> dict:
    """
    Background job: submit one Sales Invoice with retries.

    Args:
        invoice_name: Sales Invoice name
        operation: "report", "clear" or "auto"

    Returns:
        dict: Final submission state
    """
    orchestrator = get_frappe_orchestrator()
    state = SubmissionJob(orchestrator, get_invoice_record(invoice_name), operation).run()
    return {"document_id": state.document_id, "status": state.status.value, "uuid": state.uuid}


@log_function_call
def submit_invoices(invoice_names: list[str], operation: str = "auto") -> dict:
    """
    Background job: submit Sales Invoices in batches.

    Runs in the worker thread; one invoice failing does not stop the rest.

    Returns:
        dict: Batch summary
    """
    orchestrator = get_frappe_orchestrator()
    records = [get_invoice_record(name) for name in invoice_names]
    summary = BatchProcessor(orchestrator, max_workers=1).process(records, operation)

    frappe.logger("zatca").info(
        f"ZATCA batch {operation}: {summary.succeeded}/{summary.attempted} succeeded"
    )
    return summary.to_dict()


def _is_zatca_enabled():
    """Check if ZATCA submission is enabled."""
    return bool(frappe.db.get_single_value("ZATCA Settings", "enabled"))
