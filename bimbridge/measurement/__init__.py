"""Measurement classification, batched extraction and discovery."""

from bimbridge.measurement.catalog import (
    DISCOVERY_CATALOG,
    EXTRACTION_CATALOG,
    MEASUREMENT_KEYWORDS,
    MEASUREMENT_KINDS,
    UNIT_NOTE,
    UNIT_RULES,
    infer_unit,
    looks_like_measurement,
)
from bimbridge.measurement.classifier import (
    classify_properties,
    format_property_sets,
    iter_properties,
    unwrap_value,
)
from bimbridge.measurement.discovery import discover_measurement_properties
from bimbridge.measurement.extractor import extract_measurements, parse_leading_float

__all__ = [
    "DISCOVERY_CATALOG",
    "EXTRACTION_CATALOG",
    "MEASUREMENT_KEYWORDS",
    "MEASUREMENT_KINDS",
    "UNIT_NOTE",
    "UNIT_RULES",
    "classify_properties",
    "discover_measurement_properties",
    "extract_measurements",
    "format_property_sets",
    "infer_unit",
    "iter_properties",
    "looks_like_measurement",
    "parse_leading_float",
    "unwrap_value",
]
