"""Ordered rule tables for measurement classification.

Everything the classifier knows about property names lives here, so new
measurement kinds or units are added by extending a table, not by editing
control flow.  Order matters: the first matching rule wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Real
from typing import Any

MEASUREMENT_KINDS: tuple[str, ...] = ("volume", "area", "length")
ALL_KINDS = "all"
CUSTOM_KIND = "custom"

# Standard IFC quantity/property names per kind, checked in this order
EXTRACTION_CATALOG: dict[str, tuple[str, ...]] = {
    "volume": ("Volume", "GrossVolume", "NetVolume", "NominalVolume"),
    "area": (
        "Area",
        "GrossArea",
        "NetArea",
        "GrossFloorArea",
        "NetFloorArea",
        "GrossSideArea",
        "NetSideArea",
    ),
    "length": (
        "Length",
        "Width",
        "Height",
        "Depth",
        "OverallHeight",
        "OverallWidth",
        "NominalLength",
        "Perimeter",
    ),
}

# Discovery casts a wider net than extraction
DISCOVERY_CATALOG: dict[str, tuple[str, ...]] = {
    "volume": EXTRACTION_CATALOG["volume"],
    "area": EXTRACTION_CATALOG["area"] + ("CrossSectionArea", "OuterSurfaceArea"),
    "length": EXTRACTION_CATALOG["length"] + ("Thickness",),
}

# Substrings that make a numeric property look like a measurement
MEASUREMENT_KEYWORDS: tuple[str, ...] = (
    "area",
    "volume",
    "length",
    "width",
    "height",
    "depth",
    "perimeter",
    "thickness",
    "diameter",
    "radius",
    "weight",
    "mass",
    "density",
    "capacity",
    "flow",
    "size",
)


@dataclass(frozen=True)
class UnitRule:
    """Assign *unit* when the kind equals *kind* or the name contains a keyword."""

    unit: str
    keywords: tuple[str, ...]
    kind: str | None = None

    def matches(self, name: str, kind: str | None) -> bool:
        if self.kind is not None and kind == self.kind:
            return True
        lowered = name.lower()
        return any(keyword in lowered for keyword in self.keywords)


UNIT_RULES: tuple[UnitRule, ...] = (
    UnitRule("m³", ("volume",), kind="volume"),
    UnitRule("m²", ("area",), kind="area"),
    UnitRule("m", ("length", "width", "height", "depth", "perimeter"), kind="length"),
    UnitRule("kg", ("weight", "mass")),
)
FALLBACK_UNIT = "units"

UNIT_NOTE = (
    "Units are inferred from property names (volume -> m³, area -> m², "
    "length/width/height/depth/perimeter -> m, weight/mass -> kg, otherwise "
    "'units'); they are not read from the model."
)


def infer_unit(name: str, kind: str | None = None) -> str:
    """Unit for property *name* classified as *kind*, by the first matching rule."""
    for rule in UNIT_RULES:
        if rule.matches(name, kind):
            return rule.unit
    return FALLBACK_UNIT


def is_numeric(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def looks_like_measurement(name: str, value: Any) -> bool:
    """True for numeric values whose property name contains a measurement keyword."""
    if not is_numeric(value):
        return False
    lowered = name.lower()
    return any(keyword in lowered for keyword in MEASUREMENT_KEYWORDS)


def catalog_kind(
    name: str,
    catalog: dict[str, tuple[str, ...]] = EXTRACTION_CATALOG,
    kinds: tuple[str, ...] | None = None,
) -> str | None:
    """First kind (in *kinds* order, default catalog order) listing *name*."""
    for kind in kinds if kinds is not None else tuple(catalog):
        if name in catalog.get(kind, ()):
            return kind
    return None
