# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
Scheduled submission sweep for ZATCA

Picks up submitted Sales Invoices that are not yet REPORTED or CLEARED
(the on_submit job never ran, or failed) and queues them as one batch.
The batch job is deduplicated, and invoices whose own submission job is
still queued or running are left to that job.
"""

import frappe
from frappe.utils import add_days, cint, today

from zatca.integrations.store import SUBMISSION_DOCTYPE
from zatca.utils.background import enqueue_pending_batch, is_invoice_submission_queued

# FAILED documents at or past this many attempts need a manual resubmit
MAX_SWEEP_ATTEMPTS = 10
LOOKBACK_DAYS = 30
SWEEP_LIMIT = 500

# Failures that repeat until the invoice or ZATCA Settings change
PERMANENT_ERROR_TYPES = frozenset({
    "ClassificationError",
    "MappingError",
    "IncompleteDocument",
    "MissingReference",
    "XMLGenerationError",
    "SigningError",
    "InvalidCertificate",
    "ZatcaConfigError",
})


def submit_pending_documents():
    """Hourly task: queue unsubmitted and retryable Sales Invoices"""
    if not frappe.db.get_single_value("ZATCA Settings", "enabled"):
        return

    pending = get_pending_invoices()
    if not pending:
        return

    frappe.logger("zatca").info(f"ZATCA sweep: queuing {len(pending)} invoices")
    enqueue_pending_batch(pending)


def get_pending_invoices(limit: int = SWEEP_LIMIT) -> list[str]:
    """
    Names of submitted Sales Invoices still awaiting ZATCA acceptance.

    Returns:
        list: Sales Invoice names, oldest first
    """
    invoices = frappe.get_all(
        "Sales Invoice",
        filters={
            "docstatus": 1,
            "posting_date": [">=", add_days(today(), -LOOKBACK_DAYS)]
        },
        order_by="posting_date asc, creation asc",
        pluck="name"
    )
    if not invoices:
        return []

    submissions = frappe.get_all(
        SUBMISSION_DOCTYPE,
        filters={"reference_name": ["in", invoices]},
        fields=["name", "status", "attempts", "errors"]
    )
    skip = {row.name for row in submissions if not _needs_resubmit(row)}

    pending = []
    for name in invoices:
        if name in skip or is_invoice_submission_queued(name):
            continue
        pending.append(name)
        if len(pending) >= limit:
            break
    return pending


def _needs_resubmit(row) -> bool:
    if row.status in ("REPORTED", "CLEARED"):
        return False
    if cint(row.attempts) >= MAX_SWEEP_ATTEMPTS:
        return False
    if row.status == "FAILED" and row.errors:
        errors = frappe.parse_json(row.errors) or {}
        if errors.get("type") in PERMANENT_ERROR_TYPES:
            return False
    return True
