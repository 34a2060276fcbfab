"""Batched measurement extraction and aggregation."""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from bimbridge.config import DEFAULT_BATCH_SIZE
from bimbridge.errors import MalformedInputError, PartialFailureError
from bimbridge.measurement.catalog import ALL_KINDS
from bimbridge.measurement.classifier import (
    classify_properties,
    element_identity,
    raw_property_sets,
    resolve_kinds,
)
from bimbridge.models.element import count_elements, normalize_model_map
from bimbridge.models.measurement import (
    ElementMeasurements,
    MeasuredElement,
    MeasurementSummary,
)
from bimbridge.models.messages import MeasurementsResult

if TYPE_CHECKING:
    from bimbridge.viewer.index import ElementIndex

logger = logging.getLogger(__name__)

_LEADING_FLOAT = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_leading_float(value: Any) -> float:
    """Parse the leading number of *value*; anything unparsable counts as 0.

    ``"12.5 m3"`` gives 12.5 and ``"abc"`` gives 0.0.  Booleans are not numbers.
    """
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        match = _LEADING_FLOAT.match(str(value))
        if match is None:
            return 0.0
        number = float(match.group(1))
    return number if math.isfinite(number) else 0.0


def format_elapsed(started: float) -> str:
    return f"{time.perf_counter() - started:.2f}s"


def iter_batches(ids: Sequence[int], batch_size: int):
    """Yield consecutive slices of *ids* of at most *batch_size* items."""
    for start in range(0, len(ids), batch_size):
        yield ids[start:start + batch_size]


class _Totals:
    def __init__(self) -> None:
        self.volume = 0.0
        self.area = 0.0
        self.length = 0.0
        self.elements_with_measurements = 0

    def add(self, measurements: ElementMeasurements) -> None:
        if measurements.volume is not None:
            self.volume += parse_leading_float(measurements.volume.value)
        if measurements.area is not None:
            self.area += parse_leading_float(measurements.area.value)
        if measurements.length is not None:
            self.length += parse_leading_float(measurements.length.value)
        if measurements.has_any():
            self.elements_with_measurements += 1

    def summary(self) -> MeasurementSummary:
        return MeasurementSummary(
            elements_with_measurements=self.elements_with_measurements,
            total_volume=f"{self.volume:.2f}",
            total_area=f"{self.area:.2f}",
            total_length=f"{self.length:.2f}",
        )


def _fetch_batch(
    index: ElementIndex, model_id: str, batch: Sequence[int], number: int, count: int
) -> list[dict[str, Any] | None]:
    try:
        return index.items_data(model_id, batch)
    except Exception as exc:
        raise PartialFailureError(
            f"Batch {number}/{count} of model '{model_id}' failed: {exc}"
        ) from exc


def extract_measurements(
    index: ElementIndex,
    model_map: Mapping[str, Sequence[int]],
    kinds: Sequence[str] | None = (ALL_KINDS,),
    include_custom: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> MeasurementsResult:
    """Classify and total the measurements of every element in *model_map*.

    Elements are fetched from *index* in sequential batches of *batch_size*.
    A failing batch is logged and skipped; the result covers the elements that
    were actually processed and counts the failed batches.
    """
    started = time.perf_counter()
    model_map = normalize_model_map(model_map)
    requested = resolve_kinds(kinds)
    if batch_size < 1:
        raise MalformedInputError(f"Batch size must be positive, got {batch_size}")

    logger.info(
        "Extracting %s from %d model(s), batch size %d",
        ", ".join(requested),
        len(model_map),
        batch_size,
    )

    measurements: dict[str, list[MeasuredElement]] = {}
    totals = _Totals()
    processed = 0
    failed_batches = 0

    for model_id, local_ids in model_map.items():
        if not index.has_model(model_id):
            logger.warning("Model '%s' not found, skipping", model_id)
            continue

        elements = measurements.setdefault(model_id, [])
        batch_count = math.ceil(len(local_ids) / batch_size)
        for number, batch in enumerate(iter_batches(local_ids, batch_size), start=1):
            logger.debug("Model '%s': batch %d/%d (%d ids)", model_id, number, batch_count, len(batch))
            try:
                batch_data = _fetch_batch(index, model_id, batch, number, batch_count)
            except PartialFailureError as exc:
                logger.warning("%s", exc, exc_info=exc.__cause__)
                failed_batches += 1
                continue

            for local_id, data in zip(batch, batch_data):
                if not data:
                    logger.warning("No data for element %d in model '%s'", local_id, model_id)
                    continue
                element_measurements = classify_properties(
                    raw_property_sets(data), requested, include_custom
                )
                totals.add(element_measurements)
                elements.append(
                    MeasuredElement(
                        local_id=local_id,
                        measurements=element_measurements,
                        **element_identity(data),
                    )
                )
                processed += 1

        logger.info("Model '%s': %d elements processed", model_id, len(elements))

    processing_time = format_elapsed(started)
    requested_elements = count_elements(model_map)

    if processed == 0:
        logger.warning("No element information could be retrieved")
        return MeasurementsResult(
            success=False,
            message="No element information could be retrieved",
            requested_elements=requested_elements,
            failed_batches=failed_batches,
            processing_time=processing_time,
        )

    message = f"Measurements extracted from {processed} elements"
    if failed_batches:
        message += f" ({failed_batches} batch(es) failed)"
    logger.info("%s in %s", message, processing_time)

    return MeasurementsResult(
        success=True,
        message=message,
        total_elements=processed,
        requested_elements=requested_elements,
        failed_batches=failed_batches,
        measurements=measurements,
        summary=totals.summary(),
        processing_time=processing_time,
    )
