# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
ZATCA Document Classifier

Decides whether a record is a credit note. The identification strategy
comes from static configuration and is bound once, at construction.
"""

from typing import Any, Callable

from zatca.exceptions import ClassificationError
from zatca.utils.config import ClassificationStrategy, CreditNoteIdentification
from zatca.utils.fields import get_field_value


class DocumentClassifier:
	"""
	Credit note classifier.

	Strategies:
	- type_field: the record's type field equals a sentinel value
	- model: the record's kind (Frappe doctype or class name) equals a configured kind
	- table: record origin table; not resolvable from the record alone,
	  always raises ClassificationError
	"""

	def __init__(self, identification: CreditNoteIdentification | None = None):
		"""
		Initialize classifier.

		Args:
			identification: Credit note identification settings
		"""
		self.identification = identification or CreditNoteIdentification()
		strategies: dict[ClassificationStrategy, Callable[[Any], bool]] = {
			ClassificationStrategy.TYPE_FIELD: self._by_type_field,
			ClassificationStrategy.MODEL_KIND: self._by_model_kind,
			ClassificationStrategy.TABLE_ORIGIN: self._by_table_origin,
		}
		self._evaluate = strategies[self.identification.method]

	def is_credit_note(self, record) -> bool:
		"""
		Check whether a record is a credit note.

		Args:
			record: Source record

		Returns:
			bool: True for credit notes

		Raises:
			ClassificationError: If the configured strategy is unsupported
		"""
		return self._evaluate(record)

	def _by_type_field(self, record) -> bool:
		value = get_field_value(record, self.identification.type_field)
		if value is None:
			return False
		return str(value) == str(self.identification.type_value)

	def _by_model_kind(self, record) -> bool:
		kind = self.identification.model_kind
		if not kind:
			return False
		return kind in record_kinds(record)

	def _by_table_origin(self, record) -> bool:
		raise ClassificationError(
			"Table-origin credit note identification is not supported",
			strategy=ClassificationStrategy.TABLE_ORIGIN.value
		)


def record_kinds(record) -> set[str]:
	"""Names a record's kind can be matched against"""
	cls = type(record)
	kinds = {cls.__name__, f"{cls.__module__}.{cls.__qualname__}"}
	doctype = get_field_value(record, "doctype")
	if isinstance(doctype, str):
		kinds.add(doctype)
	return kinds


def get_classifier(identification: CreditNoteIdentification | None = None) -> DocumentClassifier:
	"""Get classifier instance"""
	return DocumentClassifier(identification)
