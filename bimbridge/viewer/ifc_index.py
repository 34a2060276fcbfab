"""Element index over IFC models, backed by ifcopenshell.

Local ids are STEP instance ids (``#42`` -> 42), categories are upper-cased
entity classes (``IFCWALL``), and relation names are the IFC attribute names
(``IsDefinedBy``, ``HasProperties``, ``ContainedInStructure``...).  Objectified
relationships are transparent: following ``IsDefinedBy`` from a wall lands on
its property sets, not on the ``IfcRelDefinesByProperties`` in between.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import ifcopenshell

from bimbridge.errors import MalformedInputError
from bimbridge.viewer.index import ElementIndex

logger = logging.getLogger(__name__)

# Entity families that are addressable items; everything else (geometry,
# owner history, relationships) is plumbing.
SEARCHABLE_CLASSES: tuple[str, ...] = (
    "IfcObjectDefinition",
    "IfcPropertyDefinition",
    "IfcProperty",
    "IfcPhysicalQuantity",
)

# Quantity sets list their members under a different attribute
_RELATION_ALIASES: dict[tuple[str, str], str] = {
    ("IfcElementQuantity", "HasProperties"): "Quantities",
}

# IfcQuantityLength(Name, Description, Unit, LengthValue, ...) and siblings
_QUANTITY_VALUE_INDEX = 3

_SCALARS = (str, int, float, bool)


def _unwrap(value: Any) -> Any:
    if isinstance(value, ifcopenshell.entity_instance):
        return getattr(value, "wrappedValue", None)
    return value


def _as_list(value: Any) -> list[ifcopenshell.entity_instance]:
    if isinstance(value, ifcopenshell.entity_instance):
        return [value]
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, ifcopenshell.entity_instance)]
    return []


class IfcIndex(ElementIndex):
    """Index over one or more loaded ``ifcopenshell.file`` models."""

    def __init__(self) -> None:
        self._models: dict[str, ifcopenshell.file] = {}
        self._items: dict[str, dict[int, None]] = {}

    # -- loading --------------------------------------------------------------

    def model_ids(self) -> list[str]:
        return list(self._models)

    def load_model(self, model_id: str, data: bytes) -> None:
        """Parse IFC STEP text and register it as *model_id*."""
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            text = data.decode("latin-1")
        try:
            model = ifcopenshell.file.from_string(text)
        except Exception as exc:
            raise MalformedInputError(f"Could not parse IFC data for '{model_id}': {exc}") from exc
        self.add_file(model_id, model)

    def open_model(self, model_id: str, path: str | Path) -> None:
        """Open an IFC file from disk as *model_id*."""
        self.add_file(model_id, ifcopenshell.open(str(path)))

    def add_file(self, model_id: str, model: ifcopenshell.file) -> None:
        """Register an already opened model, replacing any model with the same id."""
        items: dict[int, None] = {}
        for ifc_class in SEARCHABLE_CLASSES:
            try:
                entities = model.by_type(ifc_class)
            except RuntimeError:
                logger.debug("%s not in schema %s", ifc_class, model.schema)
                continue
            for entity in entities:
                items[entity.id()] = None
        self._models[model_id] = model
        self._items[model_id] = dict.fromkeys(sorted(items))
        logger.info("Loaded model '%s' (%s, %d items)", model_id, model.schema, len(items))

    def file(self, model_id: str) -> ifcopenshell.file | None:
        return self._models.get(model_id)

    # -- primitives -----------------------------------------------------------

    def _entity(self, model_id: str, local_id: int) -> ifcopenshell.entity_instance | None:
        if local_id not in self._items.get(model_id, {}):
            return None
        return self._models[model_id].by_id(local_id)

    def item_ids(self, model_id: str) -> list[int]:
        return list(self._items.get(model_id, {}))

    def category_of(self, model_id: str, local_id: int) -> str | None:
        entity = self._entity(model_id, local_id)
        return entity.is_a().upper() if entity is not None else None

    def attributes_of(self, model_id: str, local_id: int) -> dict[str, Any]:
        entity = self._entity(model_id, local_id)
        if entity is None:
            return {}
        attributes: dict[str, Any] = {}
        for name, value in entity.get_info(include_identifier=False, recursive=False).items():
            if name == "type":
                continue
            value = _unwrap(value)
            if isinstance(value, _SCALARS):
                attributes[name] = value
        if entity.is_a("IfcPhysicalSimpleQuantity"):
            attributes["NominalValue"] = entity[_QUANTITY_VALUE_INDEX]
        return attributes

    def related(self, model_id: str, local_id: int, relation: str) -> list[int]:
        entity = self._entity(model_id, local_id)
        if entity is None:
            return []
        attribute = _RELATION_ALIASES.get((entity.is_a(), relation), relation)
        try:
            targets = _as_list(getattr(entity, attribute))
        except AttributeError:
            return []

        items = self._items[model_id]
        found: dict[int, None] = {}
        for target in targets:
            if target.is_a("IfcRelationship"):
                candidates = self._opposite_side(target, entity)
            else:
                candidates = [target]
            for candidate in candidates:
                if candidate.id() in items:
                    found[candidate.id()] = None
        return list(found)

    @staticmethod
    def _opposite_side(
        relationship: ifcopenshell.entity_instance, source: ifcopenshell.entity_instance
    ) -> list[ifcopenshell.entity_instance]:
        """Entities a relationship links *source* to, skipping the side it sits on."""
        result: list[ifcopenshell.entity_instance] = []
        for name, value in relationship.get_info(recursive=False).items():
            if name == "OwnerHistory":
                continue
            members = _as_list(value)
            if not members or any(member == source for member in members):
                continue
            result.extend(members)
        return result
