# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA API - Canonical Mapper Module

Projects an arbitrary billing record onto the canonical document through
the configured field map, classifying credit notes and normalizing
amounts, signs and dates on the way.
"""

from collections.abc import Iterable, Mapping
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable

from zatca.api.classifier import DocumentClassifier
from zatca.api.document import (
	BillingReference,
	CanonicalDocument,
	LineItem,
	Party,
	TYPE_CODE_CREDIT_NOTE,
	TYPE_CODE_DEBIT_NOTE,
	TYPE_CODE_INVOICE,
)
from zatca.exceptions import IncompleteDocument, MappingError, MissingReference
from zatca.utils.config import ZatcaConfig, get_config
from zatca.utils.fields import FieldResolver
from zatca.utils.logging import get_logger

logger = get_logger("zatca.transformer")

CENT = Decimal("0.01")

PARTY_PARTS = (
	"address",
	"street",
	"building_number",
	"postal_code",
	"city",
	"district",
	"additional_number",
	"region",
)


class ZatcaTransformer:
	"""
	Transform source records into canonical ZATCA documents.

	Record -> CanonicalDocument: map()
	"""

	def __init__(
		self,
		config: ZatcaConfig | None = None,
		classifier: DocumentClassifier | None = None,
		resolver: FieldResolver | None = None,
		clock: Callable[[], datetime] | None = None
	):
		"""
		Initialize transformer.

		Args:
			config: ZATCA configuration (process-wide config if omitted)
			classifier: Credit note classifier
			resolver: Field resolver used for every path
			clock: Returns "now"; used when the record carries no issue date
		"""
		self.config = config or get_config()
		self.fields = self.config.field_map
		self.classifier = classifier or DocumentClassifier(self.config.credit_note_identification)
		self.resolver = resolver or FieldResolver()
		self.clock = clock or (lambda: datetime.now(timezone.utc))

	# =========================================================================
	# Record -> Canonical Document
	# =========================================================================

	def map(self, record) -> CanonicalDocument:
		"""
		Map a source record to a canonical document.

		Args:
			record: Invoice or credit note record

		Returns:
			CanonicalDocument

		Raises:
			ClassificationError: If credit note classification is unsupported
			IncompleteDocument: If the document number is missing
			MissingReference: If a credit note has no original document number
			MappingError: If a numeric field cannot be parsed
		"""
		source_id = self._get(record, self.config.record_id_field)
		try:
			document = self._map(record)
		except MappingError as e:
			logger.document_event("map", str(source_id) if source_id is not None else None, error=str(e))
			raise

		document.source_id = str(source_id) if source_id is not None else None
		return document

	def _map(self, record) -> CanonicalDocument:
		is_credit_note = self.classifier.is_credit_note(record)
		fields = self.fields

		number = self._get(record, fields.invoice_number)
		if number is None or str(number).strip() == "":
			raise IncompleteDocument("Document number is missing", field="invoice_number")

		issued_at = self._issued_at(record)

		document = CanonicalDocument(
			number=str(number),
			type_code=self._type_code(record, is_credit_note),
			is_credit_note=is_credit_note,
			issue_date=issued_at.strftime("%Y-%m-%d"),
			issue_time=issued_at.strftime("%H:%M:%S"),
			issued_at=issued_at,
			seller=self._seller(record),
			buyer=self._buyer(record),
			line_items=[self._line_item(item, is_credit_note) for item in self._line_items(record)],
			subtotal=self._amount(record, fields.total_excluding_vat, "total_excluding_vat"),
			total_vat=self._amount(record, fields.total_vat, "total_vat"),
			total=self._amount(record, fields.total_including_vat, "total_including_vat"),
			total_discount=self._amount(record, fields.total_discount, "total_discount"),
			currency=str(self._get(record, fields.invoice_currency_code, "SAR")),
			counter_value=self._text(record, fields.invoice_counter_value),
			previous_hash=self._text(record, fields.previous_invoice_hash),
			payment_means_code=self._text(record, fields.payment_means_type_code),
			supply_date=self._date_text(self._get(record, fields.supply_date)),
			supply_end_date=self._date_text(self._get(record, fields.supply_end_date)),
			special_tax_treatment=self._text(record, fields.special_tax_treatment),
			note=self._text(record, fields.invoice_note),
			custom_fields=self._custom_fields(record),
		)

		if is_credit_note:
			document.billing_reference = self._billing_reference(record)
			document.subtotal = non_positive(document.subtotal)
			document.total_vat = non_positive(document.total_vat)
			document.total = non_positive(document.total)
			document.total_discount = non_positive(document.total_discount)

		return document

	# =========================================================================
	# Sections
	# =========================================================================

	def _type_code(self, record, is_credit_note: bool) -> str:
		if is_credit_note:
			return TYPE_CODE_CREDIT_NOTE
		override = self._get(record, self.fields.invoice_type)
		if override is not None and str(override) in (TYPE_CODE_INVOICE, TYPE_CODE_DEBIT_NOTE):
			return str(override)
		return TYPE_CODE_INVOICE

	def _seller(self, record) -> Party:
		organization = self.config.organization
		party = self._party(record, "seller")
		party.name = party.name or organization.name
		party.tax_number = party.tax_number or organization.tax_number
		return party

	def _buyer(self, record) -> Party | None:
		party = self._party(record, "buyer")
		if not (party.name or party.tax_number or party.address or party.street):
			return None
		return party

	def _party(self, record, role: str) -> Party:
		values = {
			part: self._text(record, getattr(self.fields, f"{role}_{part}"))
			for part in ("name", "tax_number") + PARTY_PARTS
		}
		country = self._text(record, getattr(self.fields, f"{role}_country_code")) or "SA"
		return Party(country_code=country, **values)

	def _line_items(self, record) -> list:
		items = self._get(record, self.fields.line_items)
		if items is None:
			return []
		if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Iterable):
			raise MappingError("Line items must be a sequence", field="line_items")
		return list(items)

	def _line_item(self, item, is_credit_note: bool) -> LineItem:
		fields = self.fields

		quantity = self._decimal(self._get(item, fields.item_quantity, 1), "item_quantity")
		price = self._decimal(self._get(item, fields.item_price, 0), "item_price")
		tax_rate = self._decimal(self._get(item, fields.item_tax_rate, 15), "item_tax_rate")
		line_extension = price * quantity

		tax_amount = self._decimal(self._get(item, fields.item_tax_amount), "item_tax_amount")
		if tax_amount is None:
			tax_amount = (line_extension * tax_rate / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)

		line = LineItem(
			name=str(self._get(item, fields.item_name, "")),
			quantity=quantity,
			price=price,
			line_extension_amount=line_extension,
			unit_code=str(self._get(item, fields.item_unit_code, "EA")),
			price_inclusive=self._decimal(self._get(item, fields.item_price_inclusive), "item_price_inclusive"),
			discount=self._decimal(self._get(item, fields.item_discount, 0), "item_discount"),
			discount_reason=self._text(item, fields.item_discount_reason),
			tax_category=str(self._get(item, fields.item_tax_category, "S")),
			tax_rate=tax_rate,
			tax_amount=tax_amount,
		)

		if is_credit_note:
			line.quantity = non_positive(line.quantity)
			line.line_extension_amount = non_positive(line.line_extension_amount)
			line.discount = non_positive(line.discount)
			line.tax_amount = non_positive(line.tax_amount)
			line.price = abs(line.price)
			if line.price_inclusive is not None:
				line.price_inclusive = abs(line.price_inclusive)

		return line

	def _billing_reference(self, record) -> BillingReference:
		reference = self.config.invoice_reference
		number = self._get(record, reference.number_reference)
		if number is None or str(number).strip() == "":
			raise MissingReference(
				"Credit note does not reference an original invoice number",
				field=reference.number_reference
			)
		return BillingReference(
			number=str(number),
			uuid=self._text(record, reference.uuid_reference),
			issue_date=self._date_text(self._get(record, reference.date_reference)),
		)

	def _custom_fields(self, record) -> dict[str, Any]:
		value = self._get(record, self.fields.custom_fields)
		if isinstance(value, Mapping):
			return dict(value)
		return {}

	# =========================================================================
	# Helper Methods
	# =========================================================================

	def _get(self, record, path, default=None):
		return self.resolver.resolve(record, path, default)

	def _text(self, record, path) -> str | None:
		value = self._get(record, path)
		if value is None:
			return None
		value = str(value).strip()
		return value or None

	def _amount(self, record, path, field: str) -> Decimal:
		return self._decimal(self._get(record, path, 0), field)

	def _decimal(self, value, field: str) -> Decimal | None:
		"""Parse a numeric value into a Decimal"""
		if value is None:
			return None
		if isinstance(value, bool):
			raise MappingError(f"Invalid number for {field}: {value!r}", field=field)
		if isinstance(value, Decimal):
			parsed = value
		else:
			try:
				parsed = Decimal(str(value).strip())
			except InvalidOperation:
				raise MappingError(f"Invalid number for {field}: {value!r}", field=field) from None
		# NaN and Infinity parse as Decimal
		if not parsed.is_finite():
			raise MappingError(f"Invalid number for {field}: {value!r}", field=field)
		return parsed

	def _issued_at(self, record) -> datetime:
		"""Issue timestamp in UTC from the issue date and issue time fields"""
		date_value = self._get(record, self.fields.issue_date)
		time_value = self._get(record, self.fields.issue_time)

		issued_on = self._parse_date(date_value)
		if issued_on is None:
			return self.clock().astimezone(timezone.utc).replace(microsecond=0)

		issued_time = self._parse_time(time_value)
		if issued_time is None:
			issued_time = self._parse_time(date_value) or time(0, 0, 0)

		issued_at = datetime.combine(issued_on, issued_time)
		aware = date_value if isinstance(date_value, datetime) and date_value.tzinfo else None
		if aware is not None:
			issued_at = issued_at.replace(tzinfo=aware.tzinfo).astimezone(timezone.utc)
		else:
			issued_at = issued_at.replace(tzinfo=timezone.utc)
		return issued_at.replace(microsecond=0)

	def _parse_date(self, value) -> date | None:
		"""Parse date-like value to date object"""
		if value is None or value == "":
			return None
		if isinstance(value, datetime):
			return value.date()
		if isinstance(value, date):
			return value

		text = str(value).strip()
		try:
			return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
		except ValueError:
			pass

		for fmt in ["%Y-%m-%d", "%Y-%m-%d %H:%M:%S", "%d-%m-%Y", "%Y/%m/%d"]:
			try:
				return datetime.strptime(text, fmt).date()
			except ValueError:
				continue

		raise MappingError(f"Invalid date: {value!r}", field="issue_date")

	def _parse_time(self, value) -> time | None:
		"""Parse time-like value to time object; None when it carries no time"""
		if value is None or value == "":
			return None
		if isinstance(value, datetime):
			return value.time().replace(microsecond=0, tzinfo=None)
		if isinstance(value, time):
			return value.replace(microsecond=0, tzinfo=None)
		if isinstance(value, timedelta):
			# Frappe stores posting_time as a timedelta since midnight
			seconds = int(value.total_seconds()) % 86400
			return time(seconds // 3600, seconds % 3600 // 60, seconds % 60)
		if isinstance(value, date):
			return None

		text = str(value).strip()
		for fmt in ["%H:%M:%S", "%H:%M:%S.%f", "%H:%M"]:
			try:
				return datetime.strptime(text, fmt).time().replace(microsecond=0)
			except ValueError:
				continue
		if "T" in text or " " in text:
			try:
				parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
			except ValueError:
				return None
			return parsed.time().replace(microsecond=0, tzinfo=None)
		return None

	def _date_text(self, value) -> str | None:
		parsed = self._parse_date(value) if value not in (None, "") else None
		return parsed.isoformat() if parsed else None


def non_positive(value: Decimal | None) -> Decimal | None:
	"""Negate positive values; zero and negatives pass through"""
	if value is not None and value > 0:
		return -value
	return value


def get_transformer(config: ZatcaConfig | None = None) -> ZatcaTransformer:
	"""Get ZatcaTransformer instance"""
	return ZatcaTransformer(config)
