"""Recursive query structure understood by the element index.

A :class:`QueryNode` filters elements by category, by attribute, and by a
relation whose target must itself satisfy a full :class:`QueryNode`, which
allows traversal to any depth (element -> IsDefinedBy -> property set ->
HasProperties -> property).
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from bimbridge.errors import MalformedInputError
from bimbridge.query.patterns import Pattern, pattern_to_text

_SCALARS = (str, bool, int, float, re.Pattern)


def _check_pattern(value: Any, where: str) -> Pattern:
    if not isinstance(value, (str, re.Pattern)):
        raise MalformedInputError(f"{where} must be a string pattern, got {value!r}")
    return value


@dataclass
class AttributeQuery:
    """Match one attribute by name and, optionally, by value."""

    name: Pattern
    value: Any = None
    """Pattern, scalar, or *None* when only the attribute's presence matters."""

    @classmethod
    def from_dict(cls, data: Any) -> AttributeQuery:
        if not isinstance(data, Mapping):
            raise MalformedInputError(f"Attribute query must be an object, got {data!r}")
        if "name" not in data:
            raise MalformedInputError("Attribute query is missing 'name'")
        name = _check_pattern(data["name"], "Attribute name")
        value = data.get("value")
        if value is not None and not isinstance(value, _SCALARS):
            raise MalformedInputError(f"Attribute value must be a scalar, got {value!r}")
        return cls(name=name, value=value)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"name": pattern_to_text(self.name)}
        if self.value is not None:
            out["value"] = pattern_to_text(self.value)
        return out


@dataclass
class Relation:
    """Follow relation *name* and require a related item to satisfy *query*."""

    name: str
    query: QueryNode

    @classmethod
    def from_dict(cls, data: Any) -> Relation:
        if not isinstance(data, Mapping):
            raise MalformedInputError(f"Relation must be an object, got {data!r}")
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise MalformedInputError("Relation is missing a 'name'")
        if "query" not in data:
            raise MalformedInputError(f"Relation '{name}' is missing 'query'")
        return cls(name=name, query=QueryNode.from_dict(data["query"]))

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "query": self.query.to_dict()}


@dataclass
class QueryNode:
    """One level of a query.  Absent fields impose no constraint."""

    categories: list[Pattern] | None = None
    attributes: list[AttributeQuery] | None = None
    relation: Relation | None = None

    @classmethod
    def from_dict(cls, data: Any) -> QueryNode:
        """Parse the wire form, raising :class:`MalformedInputError` on bad shape."""
        if isinstance(data, QueryNode):
            return data
        if not isinstance(data, Mapping):
            raise MalformedInputError(f"Query node must be an object, got {data!r}")

        categories = None
        raw_categories = data.get("categories")
        if raw_categories is not None:
            if not isinstance(raw_categories, list):
                raise MalformedInputError("'categories' must be a list")
            categories = [_check_pattern(c, "Category") for c in raw_categories]

        attributes = None
        raw_attributes = data.get("attributes")
        if raw_attributes is not None:
            if not isinstance(raw_attributes, Mapping) or not isinstance(
                raw_attributes.get("queries"), list
            ):
                raise MalformedInputError("'attributes' must be an object with a 'queries' list")
            attributes = [AttributeQuery.from_dict(q) for q in raw_attributes["queries"]]

        relation = None
        if data.get("relation") is not None:
            relation = Relation.from_dict(data["relation"])

        return cls(categories=categories, attributes=attributes, relation=relation)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.categories is not None:
            out["categories"] = [pattern_to_text(c) for c in self.categories]
        if self.attributes is not None:
            out["attributes"] = {"queries": [a.to_dict() for a in self.attributes]}
        if self.relation is not None:
            out["relation"] = self.relation.to_dict()
        return out

    def depth(self) -> int:
        """Number of nested levels, counting this one."""
        return 1 + (self.relation.query.depth() if self.relation else 0)


def parse_nodes(data: Any) -> list[QueryNode]:
    """Parse a list of wire-form nodes (a single node is accepted as well)."""
    if isinstance(data, (Mapping, QueryNode)):
        data = [data]
    if not isinstance(data, list):
        raise MalformedInputError(f"Query parameters must be a list, got {type(data).__name__}")
    return [QueryNode.from_dict(node) for node in data]
