"""Query registry: named, decoded queries owned by one viewer session.

Names are unique; registering an existing name replaces it.  The registry is
exportable as JSON so a session can hand its queries to the next one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from bimbridge.errors import MalformedInputError, NotFoundError
from bimbridge.query.schema import QueryNode
from bimbridge.query.translator import decode_query

if TYPE_CHECKING:
    from bimbridge.viewer.index import ElementIndex

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1"


class QueryRegistry:
    """In-memory mapping of query name -> root nodes, in insertion order."""

    def __init__(self) -> None:
        self._queries: dict[str, list[QueryNode]] = {}

    # -- CRUD helpers ---------------------------------------------------------

    def register(self, name: str, nodes: Any) -> list[QueryNode]:
        """Decode *nodes* and store them under *name*, replacing any previous query."""
        if not isinstance(name, str) or not name:
            raise MalformedInputError("Query name must be a non-empty string")
        decoded = decode_query(nodes)
        if name in self._queries:
            logger.debug("Overwriting query %r", name)
        self._queries[name] = decoded
        return decoded

    def get(self, name: str) -> list[QueryNode] | None:
        return self._queries.get(name)

    def remove(self, name: str) -> bool:
        """Delete *name*; returns *False* when it was not registered."""
        return self._queries.pop(name, None) is not None

    def list_names(self) -> list[str]:
        return list(self._queries)

    def __contains__(self, name: object) -> bool:
        return name in self._queries

    def __len__(self) -> int:
        return len(self._queries)

    # -- evaluation -----------------------------------------------------------

    def execute(self, name: str, index: ElementIndex) -> dict[str, set[int]]:
        """Evaluate query *name* against *index*.

        Raises
        ------
        NotFoundError
            If no query is registered under *name*.
        """
        nodes = self._queries.get(name)
        if nodes is None:
            raise NotFoundError(f"Query '{name}' does not exist")
        return index.find(nodes)

    # -- bulk transfer --------------------------------------------------------

    def export_all(self) -> dict[str, Any]:
        """Return every query in a JSON-serialisable form."""
        return {
            "version": EXPORT_VERSION,
            "queries": [
                {"name": name, "query": [node.to_dict() for node in nodes]}
                for name, nodes in self._queries.items()
            ],
        }

    def import_all(self, data: Any) -> int:
        """Load queries exported by :meth:`export_all` (or a ``{name: nodes}`` map).

        Colliding names are overwritten.  Returns the number of queries
        imported.  Nothing is stored unless every entry parses.
        """
        if not isinstance(data, Mapping):
            raise MalformedInputError("Query import data must be an object")

        if "queries" in data:
            entries = data["queries"]
            if not isinstance(entries, list):
                raise MalformedInputError("'queries' must be a list")
            pairs = []
            for entry in entries:
                if not isinstance(entry, Mapping) or "name" not in entry or "query" not in entry:
                    raise MalformedInputError(f"Invalid query entry: {entry!r}")
                pairs.append((entry["name"], entry["query"]))
        else:
            pairs = list(data.items())

        staged: dict[str, list[QueryNode]] = {}
        for name, nodes in pairs:
            if not isinstance(name, str) or not name:
                raise MalformedInputError(f"Invalid query name: {name!r}")
            staged[name] = decode_query(nodes)

        self._queries.update(staged)
        logger.info("Imported %d queries", len(staged))
        return len(staged)
