# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
ZATCA Installation Script

Called after app installation to set up default settings and the
private certificate directory.
"""

import os

import frappe

DEFAULTS = {
    "environment": "Sandbox",
    "clearance_threshold": 1000,
    "credit_note_method": "type_field",
    "credit_note_type_field": "is_return",
    "credit_note_type_value": "1",
    "timeout": 30,
    "max_attempts": 3,
    "batch_size": 10,
    "cert_expiry_alert_days": 30,
}


def after_install():
    """Run after ZATCA app is installed"""
    create_default_settings()
    create_certificate_directory()
    frappe.db.commit()
    print("ZATCA app installed successfully!")


def create_default_settings():
    """Fill empty ZATCA Settings fields with defaults"""
    if not frappe.db.exists("DocType", "ZATCA Settings"):
        return

    for fieldname, value in DEFAULTS.items():
        if not frappe.db.get_single_value("ZATCA Settings", fieldname):
            # set_single_value skips validation, which requires credentials
            frappe.db.set_single_value("ZATCA Settings", fieldname, value)


def create_certificate_directory():
    """Private directory for keys, CSRs and certificates"""
    path = frappe.get_site_path("private", "zatca")
    os.makedirs(path, mode=0o700, exist_ok=True)
