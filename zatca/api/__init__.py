# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API Module

Canonical mapping, UBL/QR generation, signing and submission for ZATCA
(Fatoora) e-invoicing. Nothing in this package imports frappe.
"""

from zatca.api.auth import ZatcaAuth, get_auth
from zatca.api.batch import BatchProcessor, BatchSummary, submit_batch
from zatca.api.classifier import DocumentClassifier, get_classifier
from zatca.api.client import ZatcaClient, build_submission_payload, get_client
from zatca.api.http_client import ZatcaHTTPClient, get_http_client
from zatca.api.jobs import SubmissionJob
from zatca.api.qr import QRCodeGenerator, decode_tlv, encode, get_qr_generator
from zatca.api.signature import CertificateManager, get_certificate_manager, hash_document
from zatca.api.submission import (
    InMemorySubmissionStore,
    SubmissionOrchestrator,
    SubmissionState,
    SubmissionStatus,
    SubmissionStore,
    get_orchestrator,
)
from zatca.api.transformer import ZatcaTransformer, get_transformer
from zatca.api.xml_builder import UBLBuilder, get_builder

__all__ = [
    "BatchProcessor",
    "BatchSummary",
    "CertificateManager",
    "DocumentClassifier",
    "InMemorySubmissionStore",
    "QRCodeGenerator",
    "SubmissionJob",
    "SubmissionOrchestrator",
    "SubmissionState",
    "SubmissionStatus",
    "SubmissionStore",
    "UBLBuilder",
    "ZatcaAuth",
    "ZatcaClient",
    "ZatcaHTTPClient",
    "ZatcaTransformer",
    "build_submission_payload",
    "decode_tlv",
    "encode",
    "get_auth",
    "get_builder",
    "get_certificate_manager",
    "get_classifier",
    "get_client",
    "get_http_client",
    "get_orchestrator",
    "get_qr_generator",
    "get_transformer",
    "hash_document",
    "submit_batch"
]
