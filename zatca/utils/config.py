# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Configuration for ZATCA

Static, process-wide configuration loaded once and shared read-only:
environments and endpoints, sandbox credentials, certificate storage,
organization identity, clearance threshold, credit-note identification
and the canonical field map. Also validates the loaded configuration.
"""

import os
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from functools import lru_cache
from typing import Any, Mapping

from zatca.exceptions import ZatcaConfigError


SANDBOX = "sandbox"
PRODUCTION = "production"

DEFAULT_ENVIRONMENTS = {
    SANDBOX: "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal/sandbox",
    PRODUCTION: "https://gw-apic-gov.gazt.gov.sa/e-invoicing/developer-portal",
}


class ClassificationStrategy(Enum):
    """How a record is recognised as a credit note"""
    TYPE_FIELD = "type_field"
    MODEL_KIND = "model"
    TABLE_ORIGIN = "table"


@dataclass(frozen=True)
class EnvironmentEndpoints:
    """Remote authority endpoints for one environment"""
    base_url: str
    compliance_url: str = ""
    reporting_url: str = ""
    clearance_url: str = ""
    status_url: str = ""

    @classmethod
    def for_base_url(cls, base_url: str) -> "EnvironmentEndpoints":
        base_url = base_url.rstrip("/")
        return cls(
            base_url=base_url,
            compliance_url=f"{base_url}/compliance",
            reporting_url=f"{base_url}/invoices/reporting/single",
            clearance_url=f"{base_url}/invoices/clearance/single",
            status_url=f"{base_url}/invoices/status",
        )


@dataclass(frozen=True)
class SandboxCredentials:
    """Sandbox key material; each value is inline PEM or a file path"""
    certificate: str | None = None
    private_key: str | None = None
    certificate_id: str | None = None
    api_secret: str | None = None


@dataclass(frozen=True)
class Organization:
    name: str | None = None
    tax_number: str | None = None


@dataclass(frozen=True)
class CreditNoteIdentification:
    method: ClassificationStrategy = ClassificationStrategy.TYPE_FIELD
    type_field: str = "type"
    type_value: str = "credit_note"
    model_kind: str | None = None


@dataclass(frozen=True)
class InvoiceReference:
    """Paths from a credit note to the document it corrects"""
    field: str = "original_invoice_id"
    number_reference: str = "originalInvoice.number"
    uuid_reference: str = "originalInvoice.zatca_invoice_uuid"
    date_reference: str = "originalInvoice.issue_date"


@dataclass(frozen=True)
class FieldMap:
    """Dotted source path per canonical field; None means "not mapped"."""
    invoice_number: str | None = "number"
    invoice_type: str | None = "type"
    issue_date: str | None = "created_at"
    issue_time: str | None = "created_at"
    invoice_currency_code: str | None = "currency_code"
    invoice_counter_value: str | None = "id"
    previous_invoice_hash: str | None = None
    payment_means_type_code: str | None = "payment_method"

    seller_name: str | None = None
    seller_tax_number: str | None = None
    seller_address: str | None = "seller_address"
    seller_street: str | None = "seller_street"
    seller_building_number: str | None = "seller_building_number"
    seller_postal_code: str | None = "seller_postal_code"
    seller_city: str | None = "seller_city"
    seller_district: str | None = "seller_district"
    seller_additional_number: str | None = "seller_additional_number"
    seller_region: str | None = "seller_region"
    seller_country_code: str | None = "seller_country_code"

    buyer_name: str | None = "customer.name"
    buyer_tax_number: str | None = "customer.tax_number"
    buyer_address: str | None = "customer.address"
    buyer_street: str | None = "customer.street"
    buyer_building_number: str | None = "customer.building_number"
    buyer_postal_code: str | None = "customer.postal_code"
    buyer_city: str | None = "customer.city"
    buyer_district: str | None = "customer.district"
    buyer_additional_number: str | None = "customer.additional_number"
    buyer_region: str | None = "customer.region"
    buyer_country_code: str | None = "customer.country_code"

    line_items: str | None = "items"
    item_name: str | None = "name"
    item_quantity: str | None = "quantity"
    item_unit_code: str | None = "unit"
    item_price: str | None = "unit_price"
    item_price_inclusive: str | None = "price_inclusive_vat"
    item_discount: str | None = "discount_amount"
    item_discount_reason: str | None = "discount_reason"
    item_tax_category: str | None = "vat_category"
    item_tax_rate: str | None = "vat_rate"
    item_tax_amount: str | None = "vat_amount"

    total_excluding_vat: str | None = "sub_total"
    total_including_vat: str | None = "total"
    total_vat: str | None = "vat_amount"
    total_discount: str | None = "discount_amount"

    supply_date: str | None = None
    supply_end_date: str | None = None
    special_tax_treatment: str | None = None
    invoice_note: str | None = "notes"
    custom_fields: str | None = "custom_data"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "FieldMap":
        """Build a field map from overrides, rejecting unknown canonical fields."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ZatcaConfigError(
                f"Unknown field map keys: {', '.join(unknown)}",
                details={"unknown": unknown}
            )
        return cls(**{key: (value or None) for key, value in data.items()})


@dataclass(frozen=True)
class ZatcaConfig:
    """
    Root configuration for the ZATCA pipeline.

    Args:
        environment: "sandbox" or "production"
        environments: Endpoints per environment
        sandbox: Inline / path credentials used in the sandbox
        certificate_path: Directory holding keys, CSRs and certificates
        organization: Seller identity used when the record has none
        api_secret: Secret paired with the certificate id for Basic auth
        clearance_threshold: Totals at or above this are cleared, not reported
    """
    environment: str = SANDBOX
    environments: Mapping[str, EnvironmentEndpoints] = field(default_factory=lambda: {
        name: EnvironmentEndpoints.for_base_url(url) for name, url in DEFAULT_ENVIRONMENTS.items()
    })
    sandbox: SandboxCredentials = field(default_factory=SandboxCredentials)
    certificate_path: str = os.path.join("storage", "app", "certificates")
    organization: Organization = field(default_factory=Organization)
    api_secret: str | None = None
    clearance_threshold: Decimal = Decimal("1000")
    credit_note_identification: CreditNoteIdentification = field(default_factory=CreditNoteIdentification)
    invoice_reference: InvoiceReference = field(default_factory=InvoiceReference)
    field_map: FieldMap = field(default_factory=FieldMap)
    record_id_field: str = "id"
    timeout: int = 30
    max_attempts: int = 3
    backoff: tuple[int, ...] = (30, 60, 120)
    batch_size: int = 10
    debug_mode: bool = False

    @property
    def is_sandbox(self) -> bool:
        return self.environment == SANDBOX

    @property
    def endpoints(self) -> EnvironmentEndpoints:
        try:
            return self.environments[self.environment]
        except KeyError:
            raise ZatcaConfigError(f"Unknown ZATCA environment: {self.environment}") from None

    def with_overrides(self, **changes) -> "ZatcaConfig":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ZatcaConfig":
        """
        Build configuration from a nested mapping.

        Args:
            data: Mapping shaped like the keys of this class; nested sections
                (sandbox, organization, field_mapping, ...) are mappings too

        Returns:
            ZatcaConfig

        Raises:
            ZatcaConfigError: On unknown field map keys or invalid values
        """
        data = dict(data or {})
        kwargs: dict[str, Any] = {}

        if data.get("environment"):
            kwargs["environment"] = str(data["environment"]).lower()

        environments = data.get("environments")
        if environments:
            kwargs["environments"] = {
                name: _endpoints_from(value) for name, value in environments.items()
            }

        if data.get("sandbox"):
            kwargs["sandbox"] = SandboxCredentials(**_pick(data["sandbox"], SandboxCredentials))
        if data.get("organization"):
            kwargs["organization"] = Organization(**_pick(data["organization"], Organization))
        if data.get("certificate_path"):
            kwargs["certificate_path"] = str(data["certificate_path"])
        if data.get("api_secret"):
            kwargs["api_secret"] = str(data["api_secret"])

        if data.get("clearance_threshold") is not None:
            try:
                kwargs["clearance_threshold"] = Decimal(str(data["clearance_threshold"]))
            except InvalidOperation:
                raise ZatcaConfigError(
                    f"Invalid clearance threshold: {data['clearance_threshold']!r}"
                ) from None

        identification = data.get("credit_note_identification")
        if identification:
            values = _pick(identification, CreditNoteIdentification)
            if "method" in values:
                try:
                    values["method"] = ClassificationStrategy(values["method"])
                except ValueError:
                    raise ZatcaConfigError(
                        f"Unknown credit note identification method: {values['method']!r}"
                    ) from None
            kwargs["credit_note_identification"] = CreditNoteIdentification(**values)

        if data.get("invoice_reference"):
            kwargs["invoice_reference"] = InvoiceReference(**_pick(data["invoice_reference"], InvoiceReference))

        if "field_mapping" in data:
            kwargs["field_map"] = FieldMap.from_dict(data["field_mapping"])

        for key in ("record_id_field",):
            if data.get(key):
                kwargs[key] = str(data[key])
        for key in ("timeout", "max_attempts", "batch_size"):
            if data.get(key) is not None:
                kwargs[key] = int(data[key])
        if data.get("backoff"):
            kwargs["backoff"] = tuple(int(delay) for delay in data["backoff"])
        if "debug_mode" in data:
            kwargs["debug_mode"] = bool(data["debug_mode"])

        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ZatcaConfig":
        """Build configuration from ``ZATCA_*`` environment variables."""
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {
            "environment": env.get("ZATCA_ENVIRONMENT", SANDBOX),
            "sandbox": {
                "certificate": env.get("ZATCA_SANDBOX_CERTIFICATE"),
                "private_key": env.get("ZATCA_SANDBOX_PRIVATE_KEY"),
                "certificate_id": env.get("ZATCA_SANDBOX_CERTIFICATE_ID"),
                "api_secret": env.get("ZATCA_SANDBOX_SECRET"),
            },
            "organization": {
                "name": env.get("ZATCA_ORGANIZATION_NAME"),
                "tax_number": env.get("ZATCA_ORGANIZATION_TAX_NUMBER"),
            },
            "certificate_path": env.get("ZATCA_CERTIFICATE_PATH"),
            "api_secret": env.get("ZATCA_SECRET"),
            "clearance_threshold": env.get("ZATCA_CLEARANCE_THRESHOLD"),
            "timeout": env.get("ZATCA_TIMEOUT"),
        }

        environments = {}
        for name in DEFAULT_ENVIRONMENTS:
            url = env.get(f"ZATCA_{name.upper()}_URL")
            if url:
                environments[name] = url
        if environments:
            data["environments"] = {**DEFAULT_ENVIRONMENTS, **environments}

        return cls.from_dict(data)


def _endpoints_from(value: Any) -> EnvironmentEndpoints:
    if isinstance(value, EnvironmentEndpoints):
        return value
    if isinstance(value, str):
        return EnvironmentEndpoints.for_base_url(value)
    values = dict(value)
    defaults = EnvironmentEndpoints.for_base_url(values.pop("base_url"))
    return replace(defaults, **{k: v for k, v in _pick(values, EnvironmentEndpoints).items() if v})


def _pick(values: Mapping[str, Any], cls: type) -> dict[str, Any]:
    known = {f.name for f in fields(cls)}
    return {key: value for key, value in values.items() if key in known and value is not None}


@lru_cache(maxsize=1)
def get_config() -> ZatcaConfig:
    """Process-wide configuration, read once from the environment"""
    return ZatcaConfig.from_env()


@dataclass
class ConfigIssue:
    """Configuration issue"""
    field: str
    message: str
    severity: str = "error"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation"""
    is_valid: bool
    issues: list[ConfigIssue]

    def get_errors(self) -> list[ConfigIssue]:
        return [i for i in self.issues if i.severity == "error"]

    def get_warnings(self) -> list[ConfigIssue]:
        return [i for i in self.issues if i.severity == "warning"]


class ConfigValidator:
    """Validates ZATCA configuration"""

    def __init__(self, config: ZatcaConfig):
        self.config = config

    def validate(self) -> ConfigValidationResult:
        """Validate all configuration"""
        issues: list[ConfigIssue] = []

        issues.extend(self._validate_environment())
        issues.extend(self._validate_organization())
        issues.extend(self._validate_credentials())
        issues.extend(self._validate_submission())
        issues.extend(self._validate_classification())

        errors = [i for i in issues if i.severity == "error"]
        return ConfigValidationResult(is_valid=len(errors) == 0, issues=issues)

    def _validate_environment(self) -> list[ConfigIssue]:
        issues = []
        if self.config.environment not in self.config.environments:
            issues.append(ConfigIssue(
                field="environment",
                message=f"Unknown environment '{self.config.environment}'"
            ))
            return issues

        endpoints = self.config.endpoints
        for name in ("reporting_url", "clearance_url", "status_url"):
            url = getattr(endpoints, name)
            if not url:
                issues.append(ConfigIssue(field=name, message=f"{name} is not configured"))
            elif not url.startswith("https://"):
                issues.append(ConfigIssue(
                    field=name,
                    message=f"{name} should use HTTPS",
                    severity="warning"
                ))
        return issues

    def _validate_organization(self) -> list[ConfigIssue]:
        issues = []
        organization = self.config.organization
        if not organization.name:
            issues.append(ConfigIssue(
                field="organization.name",
                message="Organization name is not set; records must carry a seller name",
                severity="warning"
            ))
        if not organization.tax_number:
            issues.append(ConfigIssue(
                field="organization.tax_number",
                message="Organization VAT number is not set; records must carry a seller VAT number",
                severity="warning"
            ))
        elif len(organization.tax_number) != 15 or not organization.tax_number.isdigit():
            issues.append(ConfigIssue(
                field="organization.tax_number",
                message="VAT registration number should be 15 digits",
                severity="warning"
            ))
        return issues

    def _validate_credentials(self) -> list[ConfigIssue]:
        issues = []
        if self.config.is_sandbox:
            sandbox = self.config.sandbox
            for name in ("certificate", "private_key", "certificate_id", "api_secret"):
                if not getattr(sandbox, name):
                    issues.append(ConfigIssue(
                        field=f"sandbox.{name}",
                        message=f"Sandbox {name.replace('_', ' ')} is not configured"
                    ))
        else:
            if not self.config.api_secret:
                issues.append(ConfigIssue(field="api_secret", message="API secret is not configured"))
            if not os.path.isdir(self.config.certificate_path):
                issues.append(ConfigIssue(
                    field="certificate_path",
                    message=f"Certificate directory does not exist: {self.config.certificate_path}"
                ))
        return issues

    def _validate_submission(self) -> list[ConfigIssue]:
        issues = []
        if self.config.clearance_threshold < 0:
            issues.append(ConfigIssue(
                field="clearance_threshold",
                message="Clearance threshold must not be negative"
            ))
        if self.config.timeout <= 0:
            issues.append(ConfigIssue(field="timeout", message="Timeout must be positive"))
        if self.config.max_attempts < 1:
            issues.append(ConfigIssue(field="max_attempts", message="At least one attempt is required"))
        if self.config.batch_size < 1:
            issues.append(ConfigIssue(
                field="batch_size",
                message="Batch size below 1 is treated as 1",
                severity="warning"
            ))
        return issues

    def _validate_classification(self) -> list[ConfigIssue]:
        identification = self.config.credit_note_identification
        if identification.method == ClassificationStrategy.TABLE_ORIGIN:
            return [ConfigIssue(
                field="credit_note_identification.method",
                message="Table-origin credit note identification is not supported"
            )]
        if identification.method == ClassificationStrategy.MODEL_KIND and not identification.model_kind:
            return [ConfigIssue(
                field="credit_note_identification.model_kind",
                message="Model-kind identification needs a credit note kind"
            )]
        return []


def validate_config(config: ZatcaConfig | None = None) -> ConfigValidationResult:
    return ConfigValidator(config or get_config()).validate()
