# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA - Saudi e-invoicing (Fatoora) for ERPNext

Submitted Sales Invoices are converted to signed UBL 2.1 XML with a TLV
QR code and reported (simplified) or cleared (standard) with ZATCA.
Returns are submitted as credit notes.
"""

app_name = "zatca"
app_title = "ZATCA"
app_publisher = "Digital Consulting Service LLC (Mongolia)"
app_description = "ZATCA (Fatoora) e-invoicing: UBL XML, signing, QR codes, reporting and clearance for ERPNext"
app_email = "dev@frappe.mn"
app_license = "gpl-3.0"
app_version = "1.0.0"

# Required Apps
required_apps = ["frappe", "erpnext"]

# Installation hooks
after_install = "zatca.setup.install.after_install"

# Document Events
# ---------------
# Hook on document methods and events

doc_events = {
	"Sales Invoice": {
		"on_submit": "zatca.integrations.sales_invoice.on_submit"
	}
}

# Scheduled Tasks
# ---------------

scheduler_events = {
	"hourly": [
		"zatca.tasks.submission.submit_pending_documents",
	],
	"daily": [
		"zatca.tasks.certificate.check_certificate_expiry",
	],
}
