"""Data models: element references, measurements, and wire payloads."""

from bimbridge.models.element import (
    ElementInfo,
    ElementRef,
    ModelIdMap,
    count_elements,
    normalize_model_map,
)
from bimbridge.models.measurement import (
    ElementMeasurements,
    MeasuredElement,
    Measurement,
    MeasurementSummary,
)
from bimbridge.models.messages import Envelope, RESULT_COMMANDS

__all__ = [
    "ElementInfo",
    "ElementMeasurements",
    "ElementRef",
    "Envelope",
    "MeasuredElement",
    "Measurement",
    "MeasurementSummary",
    "ModelIdMap",
    "RESULT_COMMANDS",
    "count_elements",
    "normalize_model_map",
]
