"""Classified measurements.

Per element the classifier fills at most one slot per measurement kind
(volume, area, length) plus any number of custom measurements recognised by
name heuristics.  Units are inferred from property names, never read from the
source data.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from bimbridge.models.base import WireModel


class Measurement(WireModel):
    """One measurement value with its unit and provenance."""

    value: Any
    unit: str
    source: str
    """Name of the property set the value was read from."""

    property: str
    """Name of the property within that set."""


class ElementMeasurements(WireModel):
    """All measurements classified for a single element."""

    volume: Measurement | None = None
    area: Measurement | None = None
    length: Measurement | None = None
    custom: dict[str, Measurement] = Field(default_factory=dict)

    def get(self, kind: str) -> Measurement | None:
        return getattr(self, kind)

    def has_any(self) -> bool:
        return bool(self.volume or self.area or self.length or self.custom)


class MeasuredElement(WireModel):
    """Element identity plus its classified measurements."""

    local_id: int
    name: Any = None
    global_id: Any = None
    category: str | None = None
    object_type: Any = None
    measurements: ElementMeasurements = Field(default_factory=ElementMeasurements)


class MeasurementSummary(WireModel):
    """Aggregated totals, formatted to two decimals."""

    elements_with_measurements: int = 0
    total_volume: str = "0.00"
    total_area: str = "0.00"
    total_length: str = "0.00"
