"""Measurement-property discovery.

Samples a few elements per category and reports which property sets carry
measurement-like properties, so callers can learn where a model keeps its
quantities before running a bulk extraction.  Read-only.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from bimbridge.config import DEFAULT_MODEL_ID, DEFAULT_SAMPLE_SIZE
from bimbridge.errors import MalformedInputError
from bimbridge.measurement.catalog import (
    CUSTOM_KIND,
    DISCOVERY_CATALOG,
    MEASUREMENT_KINDS,
    catalog_kind,
    looks_like_measurement,
)
from bimbridge.measurement.classifier import (
    iter_property_sets,
    raw_property_sets,
    unwrap_value,
)
from bimbridge.measurement.extractor import format_elapsed
from bimbridge.models.messages import CategoryInfo, DiscoveryResult, PropertyObservation

if TYPE_CHECKING:
    from bimbridge.viewer.index import ElementIndex

logger = logging.getLogger(__name__)

_ANY_CATEGORY = re.compile(".*")


def classify_for_discovery(name: str, value: Any) -> tuple[str, str] | None:
    """``(measurement_type, confidence)`` for one property, or *None* if not a measurement."""
    kind = catalog_kind(name, DISCOVERY_CATALOG)
    if kind is not None:
        return kind, "high"
    if looks_like_measurement(name, value):
        return CUSTOM_KIND, "medium"
    return None


def _analyze_element(
    index: ElementIndex, model_id: str, local_id: int, info: CategoryInfo
) -> None:
    data = index.items_data(model_id, [local_id])[0]
    if not data:
        return
    for pset_name, properties in iter_property_sets(raw_property_sets(data)):
        info.property_set_count += 1
        for prop in properties:
            if not isinstance(prop, dict):
                continue
            prop_name = unwrap_value(prop.get("Name"))
            if not prop_name:
                continue
            value = unwrap_value(prop.get("NominalValue"))
            classified = classify_for_discovery(prop_name, value)
            if classified is None:
                continue
            kind, confidence = classified

            observed = info.measurement_property_sets.setdefault(pset_name, {})
            if prop_name in observed:
                observed[prop_name].frequency += 1
            else:
                observed[prop_name] = PropertyObservation(
                    measurement_type=kind,
                    sample_value=value,
                    confidence=confidence,
                )
            if prop_name not in info.measurement_properties:
                info.measurement_properties.append(prop_name)


def _analyze_category(
    index: ElementIndex, model_id: str, category: str, sample_size: int
) -> CategoryInfo:
    matched = index.items_of_categories(model_id, [re.compile(category, re.IGNORECASE)])
    element_ids = [local_id for ids in matched.values() for local_id in ids]
    if not element_ids:
        logger.info("No elements found for category %s", category)
        return CategoryInfo()

    sample = element_ids[:sample_size]
    logger.debug("Sampling %d of %d elements of %s", len(sample), len(element_ids), category)
    info = CategoryInfo(elements_analyzed=len(sample))
    for local_id in sample:
        try:
            _analyze_element(index, model_id, local_id, info)
        except Exception:
            logger.warning(
                "Could not analyse element %d of %s", local_id, category, exc_info=True
            )
    return info


def discover_measurement_properties(
    index: ElementIndex,
    model_id: str = DEFAULT_MODEL_ID,
    categories: Sequence[str] | None = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
) -> DiscoveryResult:
    """Sample up to *sample_size* elements per category of *model_id*.

    *categories* defaults to every category present in the model.  Errors in
    one element or category are logged and recorded in the result; they never
    abort the run.
    """
    started = time.perf_counter()
    if sample_size < 1:
        raise MalformedInputError(f"Sample size must be positive, got {sample_size}")
    if not index.has_model(model_id):
        return DiscoveryResult(
            success=False,
            message=f"Model '{model_id}' not found",
            processing_time=format_elapsed(started),
        )

    if categories is None:
        categories = list(index.items_of_categories(model_id, [_ANY_CATEGORY]))
    logger.info("Discovering measurement properties of %d categories in '%s'", len(categories), model_id)

    category_map: dict[str, CategoryInfo] = {}
    measurement_map: dict[str, dict[str, dict[str, Any]]] = {
        kind: {} for kind in MEASUREMENT_KINDS + (CUSTOM_KIND,)
    }
    processed = 0

    for category in categories:
        try:
            info = _analyze_category(index, model_id, category, sample_size)
        except Exception as exc:
            logger.error("Failed to analyse category %s: %s", category, exc, exc_info=True)
            category_map[category] = CategoryInfo(error=str(exc))
            continue

        category_map[category] = info
        if info.elements_analyzed == 0:
            continue
        processed += 1
        for pset_name, observed in info.measurement_property_sets.items():
            for prop_name, observation in observed.items():
                measurement_map[observation.measurement_type].setdefault(category, {})[
                    prop_name
                ] = {"propertySet": pset_name, **observation.to_wire()}
        logger.debug(
            "%s: %d measurement properties", category, len(info.measurement_properties)
        )

    total_properties = sum(len(info.measurement_properties) for info in category_map.values())
    processing_time = format_elapsed(started)
    message = (
        f"Discovery complete: {processed} categories, "
        f"{total_properties} measurement properties found"
    )
    logger.info("%s in %s", message, processing_time)

    return DiscoveryResult(
        success=True,
        message=message,
        total_categories=processed,
        category_map=category_map,
        measurement_map=measurement_map,
        processing_time=processing_time,
    )
