# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Certificate & Signature Module

Manages the onboarding key material and signs invoices.

Key material per environment:
1. Sandbox - certificate, private key and certificate id from configuration
   (inline PEM or a file path read at call time)
2. Production - private.key / certificate.pem under the certificate path,
   certificate id from production_certificate_id.txt or the certificate serial

Signing produces an XMLDSig enveloped signature (exclusive C14N, SHA-256,
RSA-SHA256 or ECDSA-SHA256) appended as the last child of the invoice root.
"""

import base64
import hashlib
import os
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature, encode_dss_signature
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from lxml import etree

from zatca.exceptions import InvalidCertificate, SigningError, ZatcaConfigError, ZatcaValidationError
from zatca.utils.config import ZatcaConfig, get_config
from zatca.utils.logging import get_logger

logger = get_logger("zatca.signature")

NS_DS = "http://www.w3.org/2000/09/xmldsig#"

ALGORITHM_EXC_C14N = "http://www.w3.org/2001/10/xml-exc-c14n#"
ALGORITHM_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
ALGORITHM_SHA256 = "http://www.w3.org/2001/04/xmlenc#sha256"
ALGORITHM_RSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
ALGORITHM_ECDSA_SHA256 = "http://www.w3.org/2001/04/xmldsig-more#ecdsa-sha256"

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>\n'

PRIVATE_KEY_FILE = "private.key"
CSR_FILE = "certificate.csr"
REQUEST_ID_FILE = "compliance_request_id.txt"

CERTIFICATE_FILES = {
    "compliance": "compliance_certificate.pem",
    "production": "certificate.pem",
}


@dataclass
class CertificateRequest:
    """Result of generate_request()"""
    private_key: str
    csr: str
    request_id: str


@dataclass
class CertificateMaterial:
    """Key material for the active environment"""
    private_key: str
    certificate: str
    certificate_id: str


@dataclass
class SignedDocument:
    """Signed XML plus the values printed in the QR code"""
    xml: bytes
    digest_value: str
    signature_value: str


def _parser():
    return etree.XMLParser(resolve_entities=False, no_network=True)


def _c14n(element) -> bytes:
    return etree.tostring(element, method="c14n", exclusive=True, with_comments=False)


def load_certificate(content: str | bytes) -> x509.Certificate:
    """
    Parse a certificate from PEM, base64 DER, or DER bytes.

    Raises:
        InvalidCertificate: If the content is not a certificate
    """
    data = content.encode("utf-8") if isinstance(content, str) else content
    data = data.strip()
    try:
        if b"-----BEGIN" in data:
            return x509.load_pem_x509_certificate(data)
        try:
            der = base64.b64decode(b"".join(data.split()), validate=True)
        except ValueError:
            der = data
        if der.startswith(b"MII"):
            # base64 of base64, as returned in binarySecurityToken
            der = base64.b64decode(der)
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise InvalidCertificate(f"Could not parse certificate: {e}") from e


def load_private_key(content: str | bytes):
    data = content.encode("utf-8") if isinstance(content, str) else content
    data = data.strip()
    if b"-----BEGIN" in data:
        return serialization.load_pem_private_key(data, password=None)
    return serialization.load_der_private_key(base64.b64decode(data), password=None)


def certificate_id(certificate: x509.Certificate) -> str:
    """Upper-case hex serial number"""
    return format(certificate.serial_number, "X")


def hash_document(xml: bytes) -> str:
    """
    Invoice hash: base64 SHA-256 over the exclusive C14N form of the
    document with any enveloped signature removed.

    Args:
        xml: Invoice XML

    Returns:
        str: Base64 digest
    """
    root = etree.fromstring(xml, _parser())
    for signature in root.findall(f"{{{NS_DS}}}Signature"):
        root.remove(signature)
    return base64.b64encode(hashlib.sha256(_c14n(root)).digest()).decode("ascii")


class CertificateManager:
    """
    Certificate and signature handler for ZATCA.

    Owns the certificate storage directory and signs invoice XML with
    the material of the configured environment.
    """

    def __init__(self, config: ZatcaConfig | None = None, storage_path: str | None = None):
        """
        Initialize certificate manager.

        Args:
            config: ZATCA configuration (process-wide config if omitted)
            storage_path: Overrides config.certificate_path
        """
        self.config = config or get_config()
        self.storage_path = storage_path or self.config.certificate_path

    def _path(self, filename: str) -> str:
        return os.path.join(self.storage_path, filename)

    def _write(self, filename: str, content: str, private: bool = False):
        os.makedirs(self.storage_path, exist_ok=True)
        path = self._path(filename)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        if private:
            os.chmod(path, 0o600)
        return path

    def _read(self, filename: str) -> str | None:
        path = self._path(filename)
        if not os.path.isfile(path):
            return None
        with open(path, encoding="utf-8") as handle:
            return handle.read()

    # =========================================================================
    # Onboarding
    # =========================================================================

    def generate_request(
        self,
        org_name: str | None = None,
        tax_number: str | None = None,
        **extra_dn
    ) -> CertificateRequest:
        """
        Generate a private key and certificate signing request.

        Args:
            org_name: Organization name (defaults to configuration)
            tax_number: VAT number embedded as the subject serialNumber
            **extra_dn: organizational_unit, locality, state, country, email

        Returns:
            CertificateRequest: PEM key, PEM CSR and a correlation id
        """
        org_name = org_name or self.config.organization.name
        tax_number = tax_number or self.config.organization.tax_number
        if not org_name or not tax_number:
            raise ZatcaConfigError("Organization name and VAT number are required for a CSR")

        sanitized = re.sub(r"[^a-z0-9]", "", org_name.lower()) or "organization"
        subject = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, org_name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, org_name),
            x509.NameAttribute(NameOID.ORGANIZATIONAL_UNIT_NAME, extra_dn.get("organizational_unit", "IT Department")),
            x509.NameAttribute(NameOID.COUNTRY_NAME, extra_dn.get("country", "SA")),
            x509.NameAttribute(NameOID.LOCALITY_NAME, extra_dn.get("locality", "Riyadh")),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, extra_dn.get("state", "Riyadh")),
            x509.NameAttribute(NameOID.EMAIL_ADDRESS, extra_dn.get("email", f"zatca@{sanitized}.com")),
            x509.NameAttribute(NameOID.SERIAL_NUMBER, str(tax_number)),
        ])

        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(subject)
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=True,
                    key_encipherment=True,
                    data_encipherment=True,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=False,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.EMAIL_PROTECTION]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )

        private_key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode("ascii")
        csr_pem = csr.public_bytes(serialization.Encoding.PEM).decode("ascii")
        request_id = hashlib.md5(f"{csr_pem}{time.time()}".encode("utf-8")).hexdigest()

        self._write(PRIVATE_KEY_FILE, private_key_pem, private=True)
        self._write(CSR_FILE, csr_pem)
        self._write(REQUEST_ID_FILE, request_id)

        logger.info("Certificate request generated", organization=org_name, request_id=request_id)
        return CertificateRequest(private_key=private_key_pem, csr=csr_pem, request_id=request_id)

    def save_certificate(self, content: str | bytes, kind: str = "compliance") -> bool:
        """
        Persist an issued certificate and its id.

        Args:
            content: PEM or base64 DER certificate
            kind: "compliance" or "production"

        Returns:
            bool: True when saved

        Raises:
            InvalidCertificate: If parsing fails or there is no serial number
        """
        if kind not in CERTIFICATE_FILES:
            raise ZatcaValidationError(f"Unknown certificate kind: {kind}", field="kind")

        certificate = load_certificate(content)
        if not certificate.serial_number:
            raise InvalidCertificate("Certificate has no serial number")

        cert_id = certificate_id(certificate)
        pem = certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")
        self._write(CERTIFICATE_FILES[kind], pem)
        self._write(f"{kind}_certificate_id.txt", cert_id)

        logger.info("Certificate saved", kind=kind, certificate_id=cert_id)
        return True

    # =========================================================================
    # Inspection
    # =========================================================================

    def verify_certificate(self, content: str | bytes) -> dict:
        """
        Validate a certificate against the current time.

        Args:
            content: PEM or base64 DER certificate

        Returns:
            dict: valid, expired, not_yet_valid, subject, issuer,
                valid_from, valid_to, certificate_id; or valid=False
                with an error message when it cannot be parsed
        """
        try:
            certificate = load_certificate(content)
        except InvalidCertificate as e:
            return {"valid": False, "error": e.message}

        now = datetime.now(timezone.utc)
        valid_from = certificate.not_valid_before_utc
        valid_to = certificate.not_valid_after_utc
        expired = now > valid_to
        not_yet_valid = now < valid_from

        return {
            "valid": not expired and not not_yet_valid,
            "expired": expired,
            "not_yet_valid": not_yet_valid,
            "subject": certificate.subject.rfc4514_string(),
            "issuer": certificate.issuer.rfc4514_string(),
            "valid_from": valid_from.isoformat(),
            "valid_to": valid_to.isoformat(),
            "certificate_id": certificate_id(certificate),
        }

    def get_certificate_info(self, kind: str = "production") -> dict:
        """Certificate details for compliance, production or sandbox"""
        if kind == "sandbox":
            content = self._sandbox_value(self.config.sandbox.certificate)
            location = "configuration"
        else:
            filename = CERTIFICATE_FILES.get(kind)
            if filename is None:
                return {"valid": False, "error": f"Unknown certificate kind: {kind}"}
            content = self._read(filename)
            location = self._path(filename)

        if not content:
            return {"valid": False, "error": "Certificate not found", "path": location}
        return self.verify_certificate(content)

    def get_certificate_data(self) -> CertificateMaterial:
        """
        Key material for the configured environment.

        Raises:
            ZatcaConfigError: If the key or certificate is not available
        """
        if self.config.is_sandbox:
            sandbox = self.config.sandbox
            private_key = self._sandbox_value(sandbox.private_key)
            certificate = self._sandbox_value(sandbox.certificate)
            cert_id = sandbox.certificate_id
        else:
            private_key = self._read(PRIVATE_KEY_FILE)
            certificate = self._read(CERTIFICATE_FILES["production"])
            cert_id = (self._read("production_certificate_id.txt") or "").strip() or None

        if not private_key:
            raise ZatcaConfigError(f"Private key not found for {self.config.environment}")
        if not certificate:
            raise ZatcaConfigError(f"Certificate not found for {self.config.environment}")

        if not cert_id:
            cert_id = certificate_id(load_certificate(certificate))

        return CertificateMaterial(private_key=private_key, certificate=certificate, certificate_id=cert_id)

    def _sandbox_value(self, value: str | None) -> str | None:
        """Inline value, or the content of the file it names"""
        if value and os.path.isfile(value):
            with open(value, encoding="utf-8") as handle:
                return handle.read()
        return value

    # =========================================================================
    # Signing
    # =========================================================================

    def sign(self, xml: bytes) -> bytes:
        """Sign invoice XML; see sign_document()"""
        return self.sign_document(xml).xml

    def sign_document(self, xml: bytes) -> SignedDocument:
        """
        Sign invoice XML with an enveloped XMLDSig signature.

        Args:
            xml: Unsigned invoice XML

        Returns:
            SignedDocument: Signed XML, digest value and signature value

        Raises:
            SigningError: If key material is missing or malformed, or the
                document cannot be signed. Nothing is returned on failure.
        """
        try:
            material = self.get_certificate_data()
            key = load_private_key(material.private_key)
            certificate = load_certificate(material.certificate)
        except (ZatcaConfigError, InvalidCertificate, UnsupportedAlgorithm, ValueError, TypeError) as e:
            logger.error("Signing material unavailable", error=str(e))
            raise SigningError(f"Signing material unavailable: {e}") from e

        if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise SigningError(f"Unsupported private key type: {type(key).__name__}")

        try:
            root = etree.fromstring(xml, _parser())
        except etree.XMLSyntaxError as e:
            raise SigningError(f"Cannot sign malformed XML: {e}") from e

        if root.find(f"{{{NS_DS}}}Signature") is not None:
            raise SigningError("Document is already signed")

        digest_value = base64.b64encode(hashlib.sha256(_c14n(root)).digest()).decode("ascii")
        signature = self._signature_element(key, certificate, digest_value)
        root.append(signature)

        signed_info = signature.find(f"{{{NS_DS}}}SignedInfo")
        try:
            signature_value = base64.b64encode(self._sign_bytes(key, _c14n(signed_info))).decode("ascii")
        except (ValueError, TypeError) as e:
            raise SigningError(f"Signature computation failed: {e}") from e
        signature.find(f"{{{NS_DS}}}SignatureValue").text = signature_value

        signed_xml = XML_DECLARATION + etree.tostring(root, encoding="UTF-8", xml_declaration=False)
        return SignedDocument(xml=signed_xml, digest_value=digest_value, signature_value=signature_value)

    def _signature_element(self, key, certificate: x509.Certificate, digest_value: str):
        method = ALGORITHM_RSA_SHA256 if isinstance(key, rsa.RSAPrivateKey) else ALGORITHM_ECDSA_SHA256

        signature = etree.Element(f"{{{NS_DS}}}Signature", nsmap={"ds": NS_DS}, Id="signature")
        signed_info = etree.SubElement(signature, f"{{{NS_DS}}}SignedInfo")
        etree.SubElement(signed_info, f"{{{NS_DS}}}CanonicalizationMethod", Algorithm=ALGORITHM_EXC_C14N)
        etree.SubElement(signed_info, f"{{{NS_DS}}}SignatureMethod", Algorithm=method)

        reference = etree.SubElement(signed_info, f"{{{NS_DS}}}Reference", URI="")
        transforms = etree.SubElement(reference, f"{{{NS_DS}}}Transforms")
        etree.SubElement(transforms, f"{{{NS_DS}}}Transform", Algorithm=ALGORITHM_ENVELOPED)
        etree.SubElement(transforms, f"{{{NS_DS}}}Transform", Algorithm=ALGORITHM_EXC_C14N)
        etree.SubElement(reference, f"{{{NS_DS}}}DigestMethod", Algorithm=ALGORITHM_SHA256)
        etree.SubElement(reference, f"{{{NS_DS}}}DigestValue").text = digest_value

        etree.SubElement(signature, f"{{{NS_DS}}}SignatureValue")

        key_info = etree.SubElement(signature, f"{{{NS_DS}}}KeyInfo")
        x509_data = etree.SubElement(key_info, f"{{{NS_DS}}}X509Data")
        etree.SubElement(x509_data, f"{{{NS_DS}}}X509Certificate").text = base64.b64encode(
            certificate.public_bytes(serialization.Encoding.DER)
        ).decode("ascii")

        return signature

    def _sign_bytes(self, key, data: bytes) -> bytes:
        if isinstance(key, rsa.RSAPrivateKey):
            return key.sign(data, padding.PKCS1v15(), hashes.SHA256())

        # XMLDSig ECDSA values are raw r || s, not DER
        r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hashes.SHA256())))
        size = (key.curve.key_size + 7) // 8
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")

    # =========================================================================
    # Verification
    # =========================================================================

    def verify_signature(self, signed_xml: bytes) -> bool:
        """
        Verify an enveloped signature with the embedded certificate.

        Args:
            signed_xml: Signed invoice XML

        Returns:
            bool: True if digest and signature both match
        """
        root = etree.fromstring(signed_xml, _parser())
        signature = root.find(f"{{{NS_DS}}}Signature")
        if signature is None:
            return False

        signed_info = signature.find(f"{{{NS_DS}}}SignedInfo")
        signature_value = base64.b64decode(signature.findtext(f"{{{NS_DS}}}SignatureValue") or "")
        digest_value = signed_info.findtext(f".//{{{NS_DS}}}DigestValue")
        certificate = load_certificate(signature.findtext(f".//{{{NS_DS}}}X509Certificate") or "")
        public_key = certificate.public_key()
        signed_bytes = _c14n(signed_info)

        try:
            if isinstance(public_key, rsa.RSAPublicKey):
                public_key.verify(signature_value, signed_bytes, padding.PKCS1v15(), hashes.SHA256())
            else:
                size = len(signature_value) // 2
                der = encode_dss_signature(
                    int.from_bytes(signature_value[:size], "big"),
                    int.from_bytes(signature_value[size:], "big"),
                )
                public_key.verify(der, signed_bytes, ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return False

        root.remove(signature)
        expected = base64.b64encode(hashlib.sha256(_c14n(root)).digest()).decode("ascii")
        return expected == digest_value


def get_certificate_manager(config: ZatcaConfig | None = None) -> CertificateManager:
    """Get certificate manager instance"""
    return CertificateManager(config)
