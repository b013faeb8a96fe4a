# -*- coding: utf-8 -*-
# Copyright (c) 2024, Digital Consulting Service LLC (Mongolia)
# License: GNU General Public License v3

"""
Field Resolver for ZATCA

Reads dotted paths ("customer.address.city", "items.0.name") out of
arbitrary records: Frappe documents, plain objects, dataclasses, dicts
and lists. Each path segment is tried against an ordered list of
accessors; the first one that yields a value wins. A segment nobody can
resolve (or that resolves to None) ends the walk with the caller's
default.
"""

import inspect
from collections.abc import Mapping, Sequence, Set
from typing import Any


MISSING = object()

# Builtin containers never expose record fields through methods
_CONTAINERS = (Mapping, Sequence, Set)
_VARIADIC = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)


class Accessor:
    """One way of stepping from a value to its child named by a segment."""

    name = "accessor"

    def lookup(self, value: Any, segment: str) -> Any:
        """Return the child value, or MISSING when this accessor does not apply."""
        raise NotImplementedError


class KeyAccessor(Accessor):
    """Direct key access on mappings"""

    name = "key"

    def lookup(self, value, segment):
        if isinstance(value, Mapping) and segment in value:
            return value[segment]
        return MISSING


class AttributeAccessor(Accessor):
    """Direct (non-callable) attribute access"""

    name = "attribute"

    def lookup(self, value, segment):
        if isinstance(value, Mapping) or segment.startswith("_"):
            return MISSING
        attr = getattr(value, segment, MISSING)
        if attr is MISSING or callable(attr):
            return MISSING
        return attr


class MethodAccessor(Accessor):
    """Zero-argument method named exactly as the segment"""

    name = "method"

    def lookup(self, value, segment):
        if segment.startswith("_") or isinstance(value, _CONTAINERS):
            return MISSING
        return _call(getattr(value, segment, None))


class GetterAccessor(Accessor):
    """Getter method: getNumber() or get_number()"""

    name = "getter"

    def lookup(self, value, segment):
        if not segment or segment.startswith("_") or isinstance(value, _CONTAINERS):
            return MISSING
        for method_name in ("get" + segment[0].upper() + segment[1:], f"get_{segment}"):
            result = _call(getattr(value, method_name, None))
            if result is not MISSING:
                return result
        return MISSING


class IndexAccessor(Accessor):
    """Positional index into sequences, or subscript on other keyed containers"""

    name = "index"

    def lookup(self, value, segment):
        if isinstance(value, (str, bytes)):
            return MISSING
        if isinstance(value, Sequence):
            try:
                return value[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        if isinstance(value, Mapping) or not hasattr(value, "__getitem__"):
            return MISSING
        try:
            return value[segment]
        except (KeyError, IndexError, TypeError):
            return MISSING


def _call(method) -> Any:
    if not callable(method) or isinstance(method, type):
        return MISSING
    try:
        signature = inspect.signature(method)
    except (TypeError, ValueError):
        return MISSING
    for parameter in signature.parameters.values():
        if parameter.default is parameter.empty and parameter.kind not in _VARIADIC:
            return MISSING
    return method()


DEFAULT_ACCESSORS: tuple[Accessor, ...] = (
    KeyAccessor(),
    AttributeAccessor(),
    MethodAccessor(),
    GetterAccessor(),
    IndexAccessor(),
)


class FieldResolver:
    """
    Resolves dotted paths against nested records.

    Args:
        accessors: Ordered accessors tried for every segment
    """

    def __init__(self, accessors: Sequence[Accessor] = DEFAULT_ACCESSORS):
        self.accessors = tuple(accessors)

    def resolve(self, root: Any, path: str | None, default: Any = None) -> Any:
        """
        Resolve a dotted path.

        Args:
            root: Record to read from
            path: Dot-separated path; empty or None yields the default
            default: Returned when any segment cannot be resolved

        Returns:
            The resolved value or ``default``
        """
        if not path or root is None:
            return default

        value = root
        for segment in path.split("."):
            value = self._step(value, segment)
            if value is MISSING or value is None:
                return default
        return value

    def _step(self, value: Any, segment: str) -> Any:
        for accessor in self.accessors:
            result = accessor.lookup(value, segment)
            if result is not MISSING:
                return result
        return MISSING


resolver = FieldResolver()


def resolve(root: Any, path: str | None, default: Any = None) -> Any:
    return resolver.resolve(root, path, default)


def get_field_value(record: Any, path: str | None, default: Any = None) -> Any:
    """Collaborator query: value at ``path`` on ``record`` or ``default``"""
    return resolver.resolve(record, path, default)
