"""Abstract element index interface.

The index is owned by the viewer and is an external collaborator: concrete
subclasses adapt a model library (see :mod:`bimbridge.viewer.ifc_index`) by
implementing a handful of primitives.  Query evaluation and the raw item-data
shape consumed by the measurement pipeline are defined once, here.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterable, Sequence
from typing import Any

from bimbridge.query.patterns import match_pattern
from bimbridge.query.schema import QueryNode

logger = logging.getLogger(__name__)

# Relation chain followed by items_data: element -> property sets -> properties
DATA_RELATIONS: tuple[str, ...] = ("IsDefinedBy", "HasProperties")


class ElementIndex(abc.ABC):
    """Base class for element indexes.

    Implementations must override the primitives :meth:`model_ids`,
    :meth:`load_model`, :meth:`item_ids`, :meth:`category_of`,
    :meth:`attributes_of` and :meth:`related`.
    """

    # -- primitives -----------------------------------------------------------

    @abc.abstractmethod
    def model_ids(self) -> list[str]:
        """Ids of every loaded model."""

    @abc.abstractmethod
    def load_model(self, model_id: str, data: bytes) -> None:
        """Load (or replace) model *model_id* from raw bytes."""

    @abc.abstractmethod
    def item_ids(self, model_id: str) -> Iterable[int]:
        """Local ids of every searchable item in *model_id*."""

    @abc.abstractmethod
    def category_of(self, model_id: str, local_id: int) -> str | None:
        """Category of an item, or *None* if it does not exist."""

    @abc.abstractmethod
    def attributes_of(self, model_id: str, local_id: int) -> dict[str, Any]:
        """Scalar attributes of an item, with values already unwrapped."""

    @abc.abstractmethod
    def related(self, model_id: str, local_id: int, relation: str) -> list[int]:
        """Local ids reached from an item by following *relation*."""

    # -- derived operations ---------------------------------------------------

    def has_model(self, model_id: str) -> bool:
        return model_id in self.model_ids()

    def items_of_categories(
        self, model_id: str, patterns: Sequence[Any]
    ) -> dict[str, list[int]]:
        """Group the items of *model_id* whose category matches any pattern."""
        result: dict[str, list[int]] = {}
        for local_id in self.item_ids(model_id):
            category = self.category_of(model_id, local_id)
            if category is None:
                continue
            if any(match_pattern(p, category) for p in patterns):
                result.setdefault(category, []).append(local_id)
        return result

    def find(self, nodes: Sequence[QueryNode]) -> dict[str, set[int]]:
        """Evaluate decoded *nodes* across every model.

        An item matches when it satisfies any of the root nodes.  Models
        without matches are left out of the result.
        """
        results: dict[str, set[int]] = {}
        for model_id in self.model_ids():
            matched = {
                local_id
                for local_id in self.item_ids(model_id)
                if any(self._matches(model_id, local_id, node) for node in nodes)
            }
            if matched:
                results[model_id] = matched
        return results

    def _matches(self, model_id: str, local_id: int, node: QueryNode) -> bool:
        if node.categories:
            category = self.category_of(model_id, local_id)
            if not any(match_pattern(p, category) for p in node.categories):
                return False

        if node.attributes:
            attrs = self.attributes_of(model_id, local_id)
            for query in node.attributes:
                if not any(
                    match_pattern(query.name, attr_name)
                    and (query.value is None or match_pattern(query.value, attr_value))
                    for attr_name, attr_value in attrs.items()
                ):
                    return False

        if node.relation is not None:
            return any(
                self._matches(model_id, related_id, node.relation.query)
                for related_id in self.related(model_id, local_id, node.relation.name)
            )
        return True

    def items_data(
        self,
        model_id: str,
        local_ids: Sequence[int],
        relations: Sequence[str] = DATA_RELATIONS,
    ) -> list[dict[str, Any] | None]:
        """Raw data for each id, aligned with *local_ids* (*None* when unknown).

        Each item is ``{"type": category, <attr>: {"value": v}, ...}`` and,
        following *relations* in order, nested lists of related items in the
        same shape, e.g. ``item["IsDefinedBy"][0]["HasProperties"]``.
        """
        return [self._item_data(model_id, local_id, tuple(relations)) for local_id in local_ids]

    def _item_data(
        self, model_id: str, local_id: int, relations: tuple[str, ...]
    ) -> dict[str, Any] | None:
        category = self.category_of(model_id, local_id)
        if category is None:
            return None
        data: dict[str, Any] = {"type": category}
        for key, value in self.attributes_of(model_id, local_id).items():
            data[key] = {"value": value}
        if relations:
            head, rest = relations[0], relations[1:]
            related = self.related(model_id, local_id, head)
            if related:
                data[head] = [
                    item
                    for item in (self._item_data(model_id, rid, rest) for rid in related)
                    if item is not None
                ]
        return data
