"""Per-element measurement classification.

Input is the raw item data produced by :meth:`ElementIndex.items_data`:
property sets under ``IsDefinedBy``, each with ``Name`` and a
``HasProperties`` list whose entries carry ``Name`` and ``NominalValue``,
with every scalar wrapped as ``{"value": ...}``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from bimbridge.errors import MalformedInputError
from bimbridge.measurement.catalog import (
    ALL_KINDS,
    EXTRACTION_CATALOG,
    MEASUREMENT_KINDS,
    catalog_kind,
    infer_unit,
    looks_like_measurement,
)
from bimbridge.models.measurement import ElementMeasurements, Measurement

logger = logging.getLogger(__name__)


def unwrap_value(attr: Any) -> Any:
    """Return ``attr["value"]`` for wrapped attributes, otherwise *attr* itself."""
    if isinstance(attr, Mapping) and "value" in attr:
        return attr["value"]
    return attr


def element_identity(data: Mapping[str, Any]) -> dict[str, Any]:
    """Name, GlobalId, category and ObjectType of one raw item."""
    return {
        "name": unwrap_value(data.get("Name")),
        "global_id": unwrap_value(data.get("GlobalId")),
        "category": data.get("type") or None,
        "object_type": unwrap_value(data.get("ObjectType")),
    }


def raw_property_sets(data: Mapping[str, Any]) -> list[Any]:
    """The ``IsDefinedBy`` list of a raw item (empty when absent or not a list)."""
    psets = data.get("IsDefinedBy")
    return psets if isinstance(psets, list) else []


def iter_property_sets(raw_psets: Iterable[Any]) -> Iterator[tuple[str, list[Any]]]:
    """Yield ``(pset_name, properties)`` for every named set with a property list."""
    for pset in raw_psets:
        if not isinstance(pset, Mapping):
            continue
        pset_name = unwrap_value(pset.get("Name"))
        if not pset_name:
            continue
        properties = pset.get("HasProperties")
        if not isinstance(properties, list):
            logger.debug("Property set %r has no HasProperties list", pset_name)
            continue
        yield pset_name, properties


def iter_properties(raw_psets: Iterable[Any]) -> Iterator[tuple[str, str, Any]]:
    """Yield ``(pset_name, prop_name, value)``, skipping unnamed or valueless properties."""
    for pset_name, properties in iter_property_sets(raw_psets):
        for prop in properties:
            if not isinstance(prop, Mapping):
                continue
            prop_name = unwrap_value(prop.get("Name"))
            value = unwrap_value(prop.get("NominalValue"))
            if not prop_name or value is None:
                continue
            yield pset_name, prop_name, value


def format_property_sets(raw_psets: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Flatten raw property sets to ``{pset: {prop: value}}``, dropping empty sets."""
    result: dict[str, dict[str, Any]] = {}
    for pset_name, prop_name, value in iter_properties(raw_psets):
        result.setdefault(pset_name, {})[prop_name] = value
    return result


def resolve_kinds(kinds: Sequence[str] | None) -> tuple[str, ...]:
    """Expand ``"all"`` and validate requested measurement kinds, keeping order."""
    if not kinds:
        return MEASUREMENT_KINDS
    if isinstance(kinds, str) or not isinstance(kinds, Sequence):
        raise MalformedInputError("Measurement types must be a list of strings")
    resolved: list[str] = []
    for kind in kinds:
        if kind == ALL_KINDS:
            expanded: Iterable[str] = MEASUREMENT_KINDS
        elif kind in MEASUREMENT_KINDS:
            expanded = (kind,)
        else:
            raise MalformedInputError(
                f"Unknown measurement type '{kind}'; expected one of "
                f"{', '.join(MEASUREMENT_KINDS + (ALL_KINDS,))}"
            )
        resolved.extend(k for k in expanded if k not in resolved)
    return tuple(resolved)


def classify_properties(
    raw_psets: Iterable[Any],
    kinds: Sequence[str] | None = (ALL_KINDS,),
    include_custom: bool = True,
) -> ElementMeasurements:
    """Classify the properties of one element.

    Each requested kind takes the first catalog match, in property-set order;
    later sets never overwrite it.  Properties outside the catalog are kept as
    custom measurements when *include_custom* is set and they look like a
    measurement (keyword in the name, numeric value).
    """
    requested = resolve_kinds(kinds)
    result = ElementMeasurements()

    for pset_name, prop_name, value in iter_properties(raw_psets):
        kind = catalog_kind(prop_name, EXTRACTION_CATALOG, requested)
        if kind is not None:
            if result.get(kind) is None:
                setattr(
                    result,
                    kind,
                    Measurement(
                        value=value,
                        unit=infer_unit(prop_name, kind),
                        source=pset_name,
                        property=prop_name,
                    ),
                )
            continue

        if include_custom and looks_like_measurement(prop_name, value):
            result.custom[prop_name] = Measurement(
                value=value,
                unit=infer_unit(prop_name),
                source=pset_name,
                property=prop_name,
            )

    return result
