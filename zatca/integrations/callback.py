# -*- coding: utf-8 -*-
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Callback Endpoint

POST /api/method/zatca.integrations.callback.handle
Body: {"requestID": "...", "status": "REPORTED" | "CLEARED" | "FAILED" | ...}
Header: X-ZATCA-Token matching the callback token in ZATCA Settings
"""

import hmac

import frappe

from zatca.exceptions import DocumentNotFound, ZatcaValidationError

TOKEN_HEADER = "X-ZATCA-Token"


def _payload() -> dict:
    if frappe.request and frappe.request.data:
        body = frappe.request.get_json(silent=True)
        if body is not None:
            return body
    return {key: value for key, value in frappe.form_dict.items() if key != "cmd"}


def _authorized() -> bool:
    expected = frappe.get_cached_doc("ZATCA Settings").get_password("callback_token", raise_exception=False)
    if not expected:
        return False
    supplied = frappe.get_request_header(TOKEN_HEADER) or ""
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


@frappe.whitelist(allow_guest=True, methods=["POST"])
def handle():
    """
    Apply an asynchronous ZATCA status notification.

    Returns:
        dict: document_id and the resulting status, or an error with
            HTTP 400 (invalid payload / transition), 403 or 404
    """
    if not _authorized():
        frappe.local.response.http_status_code = 403
        return {"success": False, "error": "Invalid callback token"}

    from zatca.integrations.sales_invoice import get_frappe_orchestrator

    try:
        state = get_frappe_orchestrator().handle_callback(_payload())
    except ZatcaValidationError as e:
        frappe.local.response.http_status_code = 400
        return {"success": False, **e.to_dict()}
    except DocumentNotFound as e:
        frappe.local.response.http_status_code = 404
        return {"success": False, **e.to_dict()}

    return {"success": True, "document_id": state.document_id, "status": state.status.value}
