# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
Background Job Utilities for ZATCA

Runs submissions in the Frappe worker queue. Retries with backoff happen
inside the job (SubmissionJob), so a job is enqueued once per document.
"""

from typing import Any, Callable

import frappe
from frappe import _
from frappe.utils.background_jobs import is_job_enqueued

from zatca.api.pool import close_session
from zatca.utils.logging import CorrelationContext


def enqueue_job(
    method: str | Callable,
    queue: str = "default",
    timeout: int = 300,
    job_name: str | None = None,
    **kwargs
) -> str | None:
    """
    Enqueue a job after the current transaction commits.

    Jobs with the same job_name are deduplicated while queued.

    Returns:
        str: Job id, or None if nothing was enqueued
    """
    original = method if isinstance(method, str) else f"{method.__module__}.{method.__name__}"

    job = frappe.enqueue(
        "zatca.utils.background._execute_job",
        queue=queue,
        timeout=timeout,
        job_id=job_name,
        deduplicate=bool(job_name),
        enqueue_after_commit=True,
        method=original,
        correlation_id=CorrelationContext.get_id(),
        **kwargs
    )

    return job.id if job else None


def _execute_job(method: str, correlation_id: str | None = None, **kwargs) -> Any:
    """Execute a dotted-path method, logging failures before re-raising"""
    if correlation_id:
        CorrelationContext.set_id(correlation_id)
    func = frappe.get_attr(method)

    try:
        result = func(**kwargs)
    except Exception as e:
        frappe.logger("zatca").error(f"Background job failed: {method}, error: {e}")
        frappe.log_error(
            title=f"ZATCA Job Failed: {method}",
            message=f"Error: {e}\n\nKwargs: {kwargs}"
        )
        _notify_job_failure(method, str(e))
        raise
    finally:
        close_session()
        CorrelationContext.clear()

    frappe.logger("zatca").info(f"Background job completed: {method}")
    return result


def _notify_job_failure(method: str, error: str):
    """Show the failure to System Managers"""
    admins = frappe.get_all(
        "Has Role",
        filters={"role": "System Manager", "parenttype": "User"},
        pluck="parent"
    )

    for admin in admins[:3]:
        frappe.publish_realtime(
            "msgprint",
            {
                "message": _("ZATCA background job failed: {0} ({1})").format(method, error),
                "indicator": "red"
            },
            user=admin
        )


SWEEP_JOB_NAME = "zatca_submission_sweep"


def invoice_job_name(invoice_name: str) -> str:
    return f"zatca_submit_{invoice_name}"


def is_invoice_submission_queued(invoice_name: str) -> bool:
    """Whether a submission job for the invoice is queued or running"""
    return is_job_enqueued(invoice_job_name(invoice_name))


def enqueue_invoice_submission(invoice_name: str, operation: str = "auto", **kwargs) -> str | None:
    """Enqueue ZATCA submission of a Sales Invoice"""
    return enqueue_job(
        "zatca.integrations.sales_invoice.submit_invoice",
        queue="long",
        timeout=900,
        job_name=invoice_job_name(invoice_name),
        invoice_name=invoice_name,
        operation=operation,
        **kwargs
    )


def enqueue_pending_batch(invoice_names: list[str], operation: str = "auto") -> str | None:
    """Enqueue the batch submission of Sales Invoices; one sweep batch runs at a time"""
    return enqueue_job(
        "zatca.integrations.sales_invoice.submit_invoices",
        queue="long",
        timeout=3600,
        job_name=SWEEP_JOB_NAME,
        invoice_names=invoice_names,
        operation=operation
    )
