"""Shared fixtures: an in-memory element index with property sets."""

from __future__ import annotations

import itertools
from collections.abc import Sequence
from typing import Any

import pytest

from bimbridge.viewer.index import DATA_RELATIONS, ElementIndex


class FakeIndex(ElementIndex):
    """Dict-backed index.

    Each item is ``{"category", "attributes", "relations"}``.  ``fail_on``
    lists local ids that make any ``items_data`` call containing them raise.
    """

    def __init__(self) -> None:
        self.models: dict[str, dict[int, dict[str, Any]]] = {}
        self.fail_on: set[int] = set()
        self.loaded: list[tuple[str, bytes]] = []
        self._ids = itertools.count(1000)

    # -- building -------------------------------------------------------------

    def add_item(
        self,
        model_id: str,
        local_id: int,
        category: str,
        attributes: dict[str, Any] | None = None,
        relations: dict[str, list[int]] | None = None,
    ) -> int:
        self.models.setdefault(model_id, {})[local_id] = {
            "category": category,
            "attributes": dict(attributes or {}),
            "relations": {k: list(v) for k, v in (relations or {}).items()},
        }
        return local_id

    def add_element(
        self,
        model_id: str,
        local_id: int,
        category: str,
        name: str | None = None,
        psets: dict[str, dict[str, Any]] | None = None,
        **attributes: Any,
    ) -> int:
        """Add an element plus one property-set item and one property item per entry."""
        if name is not None:
            attributes["Name"] = name
        pset_ids = []
        for pset_name, props in (psets or {}).items():
            prop_ids = [
                self.add_item(
                    model_id,
                    next(self._ids),
                    "IFCPROPERTYSINGLEVALUE",
                    {"Name": prop_name, "NominalValue": value},
                )
                for prop_name, value in props.items()
            ]
            pset_ids.append(
                self.add_item(
                    model_id,
                    next(self._ids),
                    "IFCPROPERTYSET",
                    {"Name": pset_name},
                    {"HasProperties": prop_ids},
                )
            )
        return self.add_item(
            model_id, local_id, category, attributes, {"IsDefinedBy": pset_ids}
        )

    # -- ElementIndex primitives ---------------------------------------------

    def model_ids(self) -> list[str]:
        return list(self.models)

    def load_model(self, model_id: str, data: bytes) -> None:
        self.models.setdefault(model_id, {})
        self.loaded.append((model_id, data))

    def item_ids(self, model_id: str) -> list[int]:
        return list(self.models.get(model_id, {}))

    def category_of(self, model_id: str, local_id: int) -> str | None:
        item = self.models.get(model_id, {}).get(local_id)
        return item["category"] if item else None

    def attributes_of(self, model_id: str, local_id: int) -> dict[str, Any]:
        item = self.models.get(model_id, {}).get(local_id)
        return dict(item["attributes"]) if item else {}

    def related(self, model_id: str, local_id: int, relation: str) -> list[int]:
        item = self.models.get(model_id, {}).get(local_id)
        return list(item["relations"].get(relation, [])) if item else []

    def items_data(
        self,
        model_id: str,
        local_ids: Sequence[int],
        relations: Sequence[str] = DATA_RELATIONS,
    ) -> list[dict[str, Any] | None]:
        if self.fail_on.intersection(local_ids):
            raise RuntimeError("forced batch failure")
        return super().items_data(model_id, local_ids, relations)


def build_sample_index() -> FakeIndex:
    """Model ``mcp``: two walls, a door and a slab without property sets."""
    index = FakeIndex()
    index.add_element(
        "mcp", 1, "IFCWALL", "Wall A",
        psets={
            "Qto_WallBaseQuantities": {"NetVolume": 12.5, "NetSideArea": 30.0, "Length": 6.0},
            "Pset_WallCommon": {"IsExternal": True, "FireRating": "2HR"},
        },
        GlobalId="2O2Fr$t4X7Zf8NOew3FLOH",
        ObjectType="Basic Wall",
    )
    index.add_element(
        "mcp", 2, "IFCWALL", "Wall B",
        psets={"Qto_WallBaseQuantities": {"GrossVolume": 3.0, "Thickness": 0.2}},
        GlobalId="1hOSvn6df7F8_7GcBWlRGQ",
    )
    index.add_element(
        "mcp", 3, "IFCDOOR", "Door",
        psets={"Pset_DoorCommon": {"OverallHeight": 2.1, "OverallWidth": 0.9, "FireRating": "EI30"}},
    )
    index.add_element("mcp", 4, "IFCSLAB", "Slab")
    return index


@pytest.fixture()
def fake_index() -> FakeIndex:
    return FakeIndex()


@pytest.fixture()
def sample_index() -> FakeIndex:
    return build_sample_index()
