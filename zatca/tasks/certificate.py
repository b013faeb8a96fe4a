# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3
# pyright: reportMissingImports=false, reportAttributeAccessIssue=false

"""
Certificate management tasks for ZATCA

Invoices are signed with the production (or sandbox) certificate issued
by ZATCA; submissions fail once it expires. This module checks the
active certificate daily and emails an alert before expiry.
"""

import frappe
from frappe.utils import cint, date_diff, getdate

from zatca.api.signature import CertificateManager


def check_certificate_expiry():
    """
    Daily task to check certificate expiry and send alerts

    Sends an email when the certificate expires within
    cert_expiry_alert_days (default 30), or has already expired.
    """
    if not frappe.db.get_single_value("ZATCA Settings", "enabled"):
        return

    from zatca.zatca.doctype.zatca_settings.zatca_settings import get_zatca_config

    settings = frappe.get_cached_doc("ZATCA Settings")
    config = get_zatca_config(settings)
    kind = "sandbox" if config.is_sandbox else "production"

    info = CertificateManager(config).get_certificate_info(kind)
    if not info.get("valid_to"):
        frappe.logger("zatca").warning(f"Certificate expiry check skipped: {info.get('error')}")
        return

    expiry = getdate(info["valid_to"][:10])
    frappe.db.set_single_value("ZATCA Settings", "certificate_expiry", str(expiry))

    days_until_expiry = date_diff(expiry, getdate())
    alert_days = cint(settings.get("cert_expiry_alert_days")) or 30

    frappe.logger("zatca").info(
        f"Certificate expiry check: {days_until_expiry} days remaining "
        f"(expiry: {expiry}, alert threshold: {alert_days} days)"
    )

    if days_until_expiry <= 0:
        send_certificate_alert(
            settings,
            subject="URGENT: ZATCA Certificate EXPIRED!",
            expiry=expiry,
            days_remaining=days_until_expiry,
            is_expired=True
        )
    elif days_until_expiry <= alert_days:
        send_certificate_alert(
            settings,
            subject=f"ZATCA Certificate Expiring in {days_until_expiry} days",
            expiry=expiry,
            days_remaining=days_until_expiry,
            is_expired=False
        )


def send_certificate_alert(settings, subject, expiry, days_remaining, is_expired=False):
    """
    Send email alert about certificate expiry

    Args:
        settings: ZATCA Settings document
        subject: Email subject
        expiry: Certificate expiry date
        days_remaining: Days until expiry (negative if expired)
        is_expired: Whether certificate has already expired
    """
    notify_email = settings.get("notify_email") or frappe.db.get_single_value("System Settings", "admin_email")
    if not notify_email:
        frappe.logger("zatca").warning(f"Certificate alert: {subject} - No email configured!")
        return

    if is_expired:
        status_html = """
        <p><strong>The ZATCA signing certificate has expired.</strong>
        Invoices cannot be reported or cleared until a new certificate is onboarded.</p>
        """
    else:
        status_html = f"""
        <p>The ZATCA signing certificate expires in <strong>{days_remaining} days</strong>.
        Generate a new CSR in ZATCA Settings and complete onboarding before then.</p>
        """

    message = f"""
    <h3>ZATCA Certificate Alert</h3>

    {status_html}

    <table border="1" cellpadding="8" cellspacing="0" style="border-collapse: collapse;">
        <tr><td><strong>Organization:</strong></td><td>{settings.get("organization_name") or "N/A"}</td></tr>
        <tr><td><strong>VAT Number:</strong></td><td>{settings.get("vat_number") or "N/A"}</td></tr>
        <tr><td><strong>Certificate Expiry:</strong></td><td>{expiry}</td></tr>
        <tr><td><strong>Days Remaining:</strong></td><td>{days_remaining}</td></tr>
    </table>
    """

    frappe.sendmail(recipients=[notify_email], subject=subject, message=message, now=True)
    frappe.logger("zatca").info(f"Certificate expiry alert sent to {notify_email}")
