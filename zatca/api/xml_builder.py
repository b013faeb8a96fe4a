# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API - UBL XML Builder Module

Renders a canonical document as an unsigned UBL 2.1 invoice. Output is
deterministic: the same document and UUID always give the same bytes.
Credit notes use the Invoice root with type code 381 and carry a
BillingReference to the original invoice.
"""

from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP

from lxml import etree

from zatca.api.document import CanonicalDocument, LineItem, Party
from zatca.exceptions import XMLGenerationError
from zatca.utils.logging import get_logger

logger = get_logger("zatca.xml")

NS_INVOICE = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
NS_CAC = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
NS_CBC = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
NS_EXT = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"

NSMAP = {
	None: NS_INVOICE,
	"cac": NS_CAC,
	"cbc": NS_CBC,
	"ext": NS_EXT,
}

XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8"?>\n'

UBL_VERSION = "2.1"
PROFILE_ID = "reporting:1.0"
TAX_CURRENCY = "SAR"
TAX_SCHEME = "VAT"

# KSA-2 invoice transaction codes
TRANSACTION_STANDARD = "0100000"
TRANSACTION_SIMPLIFIED = "0200000"


def format_amount(value: Decimal | None) -> str:
	"""Fixed-point amount with exactly two decimals"""
	value = value if value is not None else Decimal("0")
	return f"{value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP):.2f}"


def format_quantity(value: Decimal) -> str:
	normalized = value.normalize()
	if normalized == 0:
		return "0"
	return format(normalized, "f")


def cbc(parent, tag: str, text=None, **attributes):
	element = etree.SubElement(parent, f"{{{NS_CBC}}}{tag}", **attributes)
	if text is not None:
		element.text = str(text)
	return element


def cac(parent, tag: str):
	return etree.SubElement(parent, f"{{{NS_CAC}}}{tag}")


class UBLBuilder:
	"""
	UBL 2.1 invoice builder.

	Sections, in schema order:
	- Header (version, profile, ids, dates, type code, currencies)
	- Billing reference (credit notes) and ICV / PIH references
	- Supplier and customer parties
	- Delivery and payment means
	- Tax total and legal monetary total
	- Invoice lines
	"""

	def build(self, document: CanonicalDocument, uuid: str | None = None) -> bytes:
		"""
		Build unsigned UBL XML.

		Args:
			document: Canonical document
			uuid: Submission UUID (falls back to document.uuid)

		Returns:
			bytes: UTF-8 XML with declaration

		Raises:
			XMLGenerationError: If the document cannot be rendered
		"""
		try:
			root = self.build_tree(document, uuid)
			return XML_DECLARATION + etree.tostring(root, encoding="UTF-8", xml_declaration=False)
		except (TypeError, ValueError, ArithmeticError) as e:
			logger.document_event("build_xml", document.source_id, document.document_type, error=str(e))
			raise XMLGenerationError(f"Could not build XML for {document.number}: {e}") from e

	def build_tree(self, document: CanonicalDocument, uuid: str | None = None):
		"""Build the UBL element tree"""
		root = etree.Element(f"{{{NS_INVOICE}}}Invoice", nsmap=NSMAP)

		self._add_header(root, document, uuid or document.uuid)
		self._add_billing_reference(root, document)
		self._add_document_references(root, document)
		self._add_party(cac(root, "AccountingSupplierParty"), document.seller)
		if document.buyer is not None:
			self._add_party(cac(root, "AccountingCustomerParty"), document.buyer)
		self._add_delivery(root, document)
		self._add_payment_means(root, document)
		self._add_tax_total(root, document)
		self._add_monetary_total(root, document)
		for index, item in enumerate(document.line_items, start=1):
			self._add_line(root, index, item, document.currency)

		return root

	# =========================================================================
	# Header
	# =========================================================================

	def _add_header(self, root, document: CanonicalDocument, uuid: str | None):
		cbc(root, "UBLVersionID", UBL_VERSION)
		cbc(root, "ProfileID", PROFILE_ID)
		cbc(root, "ID", document.number)
		if uuid:
			cbc(root, "UUID", uuid)
		cbc(root, "IssueDate", document.issue_date)
		cbc(root, "IssueTime", document.issue_time)
		cbc(
			root,
			"InvoiceTypeCode",
			document.type_code,
			name=TRANSACTION_SIMPLIFIED if document.is_simplified else TRANSACTION_STANDARD
		)
		if document.note:
			cbc(root, "Note", document.note)
		cbc(root, "DocumentCurrencyCode", document.currency)
		cbc(root, "TaxCurrencyCode", TAX_CURRENCY)

	def _add_billing_reference(self, root, document: CanonicalDocument):
		reference = document.billing_reference
		if not document.is_credit_note or reference is None:
			return
		invoice_reference = cac(cac(root, "BillingReference"), "InvoiceDocumentReference")
		cbc(invoice_reference, "ID", reference.number)
		if reference.uuid:
			cbc(invoice_reference, "UUID", reference.uuid)
		if reference.issue_date:
			cbc(invoice_reference, "IssueDate", reference.issue_date)

	def _add_document_references(self, root, document: CanonicalDocument):
		if document.counter_value:
			icv = cac(root, "AdditionalDocumentReference")
			cbc(icv, "ID", "ICV")
			cbc(icv, "UUID", document.counter_value)
		if document.previous_hash:
			pih = cac(root, "AdditionalDocumentReference")
			cbc(pih, "ID", "PIH")
			attachment = cac(pih, "Attachment")
			cbc(attachment, "EmbeddedDocumentBinaryObject", document.previous_hash, mimeCode="text/plain")

	# =========================================================================
	# Parties
	# =========================================================================

	def _add_party(self, container, party: Party):
		node = cac(container, "Party")

		if party.tax_number:
			cbc(cac(node, "PartyIdentification"), "ID", party.tax_number)

		if party.name:
			cbc(cac(node, "PartyName"), "Name", party.name)

		address = cac(node, "PostalAddress")
		cbc(address, "StreetName", party.street or party.address or "")
		if party.building_number:
			cbc(address, "BuildingNumber", party.building_number)
		if party.additional_number:
			cbc(address, "PlotIdentification", party.additional_number)
		if party.district:
			cbc(address, "CitySubdivisionName", party.district)
		if party.city:
			cbc(address, "CityName", party.city)
		if party.postal_code:
			cbc(address, "PostalZone", party.postal_code)
		if party.region:
			cbc(address, "CountrySubentity", party.region)
		cbc(cac(address, "Country"), "IdentificationCode", party.country_code or "SA")

		if party.tax_number:
			tax_scheme = cac(node, "PartyTaxScheme")
			cbc(tax_scheme, "CompanyID", party.tax_number)
			cbc(cac(tax_scheme, "TaxScheme"), "ID", TAX_SCHEME)

		if party.name:
			cbc(cac(node, "PartyLegalEntity"), "RegistrationName", party.name)

	# =========================================================================
	# Delivery / Payment
	# =========================================================================

	def _add_delivery(self, root, document: CanonicalDocument):
		if not document.supply_date:
			return
		delivery = cac(root, "Delivery")
		cbc(delivery, "ActualDeliveryDate", document.supply_date)
		if document.supply_end_date:
			cbc(delivery, "LatestDeliveryDate", document.supply_end_date)

	def _add_payment_means(self, root, document: CanonicalDocument):
		if document.payment_means_code:
			cbc(cac(root, "PaymentMeans"), "PaymentMeansCode", document.payment_means_code)

	# =========================================================================
	# Totals
	# =========================================================================

	def _add_tax_total(self, root, document: CanonicalDocument):
		currency = document.currency
		tax_total = cac(root, "TaxTotal")
		cbc(tax_total, "TaxAmount", format_amount(document.total_vat), currencyID=currency)

		for (category, rate), bucket in self._tax_buckets(document.line_items).items():
			subtotal = cac(tax_total, "TaxSubtotal")
			cbc(subtotal, "TaxableAmount", format_amount(bucket["taxable"]), currencyID=currency)
			cbc(subtotal, "TaxAmount", format_amount(bucket["tax"]), currencyID=currency)
			tax_category = cac(subtotal, "TaxCategory")
			cbc(tax_category, "ID", category)
			cbc(tax_category, "Percent", format_amount(rate))
			if document.special_tax_treatment and category != "S":
				cbc(tax_category, "TaxExemptionReasonCode", document.special_tax_treatment)
			cbc(cac(tax_category, "TaxScheme"), "ID", TAX_SCHEME)

	def _tax_buckets(self, line_items: list[LineItem]) -> "OrderedDict[tuple[str, Decimal], dict]":
		buckets: OrderedDict = OrderedDict()
		for item in line_items:
			key = (item.tax_category, item.tax_rate)
			bucket = buckets.setdefault(key, {"taxable": Decimal("0"), "tax": Decimal("0")})
			bucket["taxable"] += item.line_extension_amount
			bucket["tax"] += item.tax_amount or Decimal("0")
		return buckets

	def _add_monetary_total(self, root, document: CanonicalDocument):
		currency = document.currency
		total = cac(root, "LegalMonetaryTotal")
		cbc(total, "LineExtensionAmount", format_amount(document.subtotal), currencyID=currency)
		cbc(total, "TaxExclusiveAmount", format_amount(document.subtotal), currencyID=currency)
		cbc(total, "TaxInclusiveAmount", format_amount(document.total), currencyID=currency)
		if document.total_discount:
			cbc(total, "AllowanceTotalAmount", format_amount(abs(document.total_discount)), currencyID=currency)
		cbc(total, "PayableAmount", format_amount(document.total), currencyID=currency)

	# =========================================================================
	# Lines
	# =========================================================================

	def _add_line(self, root, index: int, item: LineItem, currency: str):
		line = cac(root, "InvoiceLine")
		cbc(line, "ID", index)
		cbc(line, "InvoicedQuantity", format_quantity(item.quantity), unitCode=item.unit_code)
		cbc(line, "LineExtensionAmount", format_amount(item.line_extension_amount), currencyID=currency)

		if item.discount:
			allowance = cac(line, "AllowanceCharge")
			cbc(allowance, "ChargeIndicator", "false")
			cbc(allowance, "AllowanceChargeReason", item.discount_reason or "Discount")
			cbc(allowance, "Amount", format_amount(abs(item.discount)), currencyID=currency)

		if item.tax_amount is not None:
			tax_total = cac(line, "TaxTotal")
			cbc(tax_total, "TaxAmount", format_amount(item.tax_amount), currencyID=currency)
			cbc(
				tax_total,
				"RoundingAmount",
				format_amount(item.line_extension_amount + item.tax_amount),
				currencyID=currency
			)

		product = cac(line, "Item")
		cbc(product, "Name", item.name)
		category = cac(product, "ClassifiedTaxCategory")
		cbc(category, "ID", item.tax_category)
		cbc(category, "Percent", format_amount(item.tax_rate))
		cbc(cac(category, "TaxScheme"), "ID", TAX_SCHEME)

		price = cac(line, "Price")
		cbc(price, "PriceAmount", format_amount(item.price), currencyID=currency)


def get_builder() -> UBLBuilder:
	"""Get UBL builder instance"""
	return UBLBuilder()
