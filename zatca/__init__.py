# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA - Saudi e-invoicing (Fatoora Phase 2) for ERPNext

Turns billing records into ZATCA-compliant electronic tax documents:
- Canonical invoice / credit note projection from any record shape
- UBL 2.1 XML generation (lxml)
- XMLDSig enveloped signatures with the onboarded certificate
- TLV QR payloads rendered as base64 PNG
- Reporting / clearance submission with retries, batching and callbacks

The core (api/, utils/) does not import Frappe. Frappe bindings live in
integrations/, tasks/, utils/background.py and the ZATCA doctypes.
"""

__version__ = "1.0.0"
