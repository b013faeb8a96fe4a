# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
ZATCA Submission DocType

One row per submitted document: status, UUID, hash, QR payload, signed
XML and the last platform response. Written by FrappeSubmissionStore.
"""

import frappe
from frappe import _
from frappe.model.document import Document


class ZATCASubmission(Document):
    """ZATCA Submission - compliance state of one ERPNext document."""

    def validate(self):
        """Validate the document."""
        self.validate_reference()
        if not self.status:
            self.status = "UNSUBMITTED"

    def validate_reference(self):
        """Validate that the reference document exists."""
        if self.reference_doctype and self.reference_name:
            if not frappe.db.exists(self.reference_doctype, self.reference_name):
                frappe.throw(
                    _("Reference {0} {1} does not exist").format(
                        self.reference_doctype, self.reference_name
                    )
                )

    @frappe.whitelist()
    def resubmit(self, operation: str = "auto"):
        """
        Queue this document for submission again.

        Args:
            operation: "report", "clear" or "auto"
        """
        if self.status in ("REPORTED", "CLEARED") and operation == "auto":
            frappe.throw(_("Document is already {0}").format(self.status))

        from zatca.utils.background import enqueue_invoice_submission

        return enqueue_invoice_submission(self.reference_name, operation=operation)
