"""Declarative element queries: pattern codec, translator, and registry."""

from bimbridge.query.patterns import (
    decode_pattern,
    encode_pattern,
    is_encoded_pattern,
    match_pattern,
    pattern_to_text,
)
from bimbridge.query.registry import QueryRegistry
from bimbridge.query.schema import AttributeQuery, QueryNode, Relation
from bimbridge.query.translator import build_query, decode_node, decode_query

__all__ = [
    "AttributeQuery",
    "QueryNode",
    "QueryRegistry",
    "Relation",
    "build_query",
    "decode_node",
    "decode_pattern",
    "decode_query",
    "encode_pattern",
    "is_encoded_pattern",
    "match_pattern",
    "pattern_to_text",
]
