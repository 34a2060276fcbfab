"""Compile declarative searches into index queries, and decode them on arrival.

The controller builds queries from a friendly input form::

    build_query(
        categories=["WALL"],
        relation={
            "name": "IsDefinedBy",
            "query": {
                "categories": ["IFCPROPERTYSET"],
                "attributes": [{"name": "Name", "value": "Pset_WallCommon"}],
                "relation": {
                    "name": "HasProperties",
                    "query": {"attributes": [{"name": "NominalValue", "value": "2HR"}]},
                },
            },
        },
    )

Every textual criterion is encoded as a case-insensitive ``/body/i`` pattern.
The viewer decodes the same structure back into compiled patterns at every
nesting level before handing it to the index.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from bimbridge.errors import MalformedInputError
from bimbridge.query.patterns import decode_pattern, encode_pattern
from bimbridge.query.schema import AttributeQuery, QueryNode, Relation, parse_nodes

logger = logging.getLogger(__name__)


def _build_attributes(attributes: Sequence[Any]) -> list[AttributeQuery]:
    queries: list[AttributeQuery] = []
    for attr in attributes:
        if not isinstance(attr, Mapping) or not isinstance(attr.get("name"), str):
            raise MalformedInputError(f"Attribute criterion needs a string 'name': {attr!r}")
        value = attr.get("value")
        if isinstance(value, str):
            value = encode_pattern(value)
        elif value is not None and not isinstance(value, (bool, int, float)):
            raise MalformedInputError(f"Attribute value must be a scalar: {value!r}")
        queries.append(AttributeQuery(name=encode_pattern(attr["name"]), value=value))
    return queries


def _build_relation(relation: Any) -> Relation:
    if not isinstance(relation, Mapping) or not isinstance(relation.get("name"), str):
        raise MalformedInputError(f"Relation needs a string 'name': {relation!r}")
    query = relation.get("query")
    if not isinstance(query, Mapping):
        raise MalformedInputError(f"Relation '{relation['name']}' needs a 'query' object")
    return Relation(
        name=relation["name"],
        query=build_node(
            categories=query.get("categories"),
            attributes=query.get("attributes"),
            relation=query.get("relation"),
        ),
    )


def build_node(
    categories: Sequence[str] | None = None,
    attributes: Sequence[Mapping[str, Any]] | None = None,
    relation: Mapping[str, Any] | None = None,
) -> QueryNode:
    """Build one encoded :class:`QueryNode`; relations are built recursively."""
    node = QueryNode()
    if categories:
        if isinstance(categories, str) or not isinstance(categories, Sequence):
            raise MalformedInputError("'categories' must be a list of strings")
        node.categories = [encode_pattern(str(cat)) for cat in categories]
    if attributes:
        node.attributes = _build_attributes(attributes)
    if relation:
        node.relation = _build_relation(relation)
    return node


def build_query(
    categories: Sequence[str] | None = None,
    attributes: Sequence[Mapping[str, Any]] | None = None,
    relation: Mapping[str, Any] | None = None,
) -> list[QueryNode]:
    """Return a single-element list holding the encoded root node."""
    return [build_node(categories, attributes, relation)]


def decode_node(node: QueryNode | Mapping[str, Any]) -> QueryNode:
    """Turn every textual pattern in *node* into a live matcher, at every depth."""
    node = QueryNode.from_dict(node)
    decoded = QueryNode()
    if node.categories is not None:
        decoded.categories = [decode_pattern(c) for c in node.categories]
    if node.attributes is not None:
        decoded.attributes = [
            AttributeQuery(
                name=decode_pattern(a.name),
                value=decode_pattern(a.value) if isinstance(a.value, str) else a.value,
            )
            for a in node.attributes
        ]
    if node.relation is not None:
        decoded.relation = Relation(
            name=node.relation.name,
            query=decode_node(node.relation.query),
        )
    return decoded


def decode_query(nodes: Any) -> list[QueryNode]:
    """Decode a list of wire-form (or already parsed) nodes."""
    return [decode_node(node) for node in parse_nodes(nodes)]


def describe_search(relation: Mapping[str, Any] | None) -> str:
    """Short label for the kind of search a relation describes."""
    if not relation:
        return "Simple"
    query = relation.get("query") or {}
    if query.get("relation"):
        return "Property set (nested relations)"
    return "Relational"
