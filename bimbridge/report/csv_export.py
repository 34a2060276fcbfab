"""CSV rendering of measurement, discovery, element and selection results.

Every renderer returns the CSV text; :func:`write_csv` puts it on disk.
Numbers always use ``.`` as the decimal separator regardless of the locale
the source model was authored in, and absent values are empty fields.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import math
import re
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from pathlib import Path
from typing import Any

from bimbridge.config import DEFAULT_EXPORTS_DIR
from bimbridge.models.element import ElementInfo, ModelIdMap
from bimbridge.models.measurement import MeasuredElement
from bimbridge.models.messages import CategoryInfo

logger = logging.getLogger(__name__)

# "1.234,56", "15,5", "-1.000.000,25"
_COMMA_DECIMAL = re.compile(r"^-?\d{1,3}(?:\.\d{3})*(?:,\d+)?$|^-?\d+,\d+$")
_PLAIN_NUMBER = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)$")

MEASUREMENT_HEADERS: list[str] = [
    "ModelId",
    "LocalId",
    "Name",
    "Category",
    *(
        f"{kind}_{field}"
        for kind in ("Volume", "Area", "Length")
        for field in ("Value", "Unit", "Source", "Property")
    ),
    "Custom_Measurements",
]

DISCOVERY_HEADERS: list[str] = [
    "Category",
    "Elements_Analyzed",
    "PropertySet_Count",
    "PropertySet_Name",
    "Measurement_Type",
    "Property_Name",
    "Sample_Value",
    "Frequency",
    "Confidence",
]

ELEMENT_BASE_HEADERS: tuple[str, ...] = (
    "ModelId",
    "LocalId",
    "Name",
    "GlobalId",
    "Category",
    "ObjectType",
)

SELECTION_HEADERS: list[str] = ["ModelID", "LocalID"]
SELECTION_ATTRIBUTE_HEADERS: list[str] = ["Name", "GlobalId", "Category", "ObjectType"]


def _format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ""
        if value.is_integer():
            return str(int(value))
        value = Decimal(repr(value))
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def normalize_number(value: Any) -> str:
    """Render *value* as a CSV field with a ``.`` decimal separator.

    >>> normalize_number("1.234,56")
    '1234.56'
    >>> normalize_number(15.5)
    '15.5'
    >>> normalize_number(None)
    ''
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)

    text = str(value).strip()
    if not text:
        return ""
    if "," in text and _COMMA_DECIMAL.match(text):
        return text.replace(".", "").replace(",", ".")
    if text.count(",") == 1 and "." not in text:
        whole, fraction = text.split(",")
        if _PLAIN_NUMBER.match(whole) and fraction.isdigit():
            return f"{whole}.{fraction}"
    return text


def render_rows(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Write *headers* and *rows* as CSV text (minimal quoting, ``\\n`` line ends)."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if cell is None else cell for cell in row])
    return buf.getvalue()


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def measurements_csv(measurements: Mapping[str, Sequence[MeasuredElement]]) -> str:
    """One row per element: identity, the three kind slots, custom as JSON."""
    rows = []
    for model_id, elements in measurements.items():
        for element in elements:
            row: list[Any] = [model_id, element.local_id, _text(element.name), _text(element.category)]
            for kind in ("volume", "area", "length"):
                m = element.measurements.get(kind)
                if m is None:
                    row.extend(["", "", "", ""])
                else:
                    row.extend([normalize_number(m.value), m.unit, m.source, m.property])
            custom = {name: m.to_wire() for name, m in element.measurements.custom.items()}
            row.append(json.dumps(custom, ensure_ascii=False, default=str))
            rows.append(row)
    logger.debug("Rendered %d measurement rows", len(rows))
    return render_rows(MEASUREMENT_HEADERS, rows)


def discovery_csv(category_map: Mapping[str, CategoryInfo]) -> str:
    """One row per discovered property; categories with none get an N/A row."""
    rows = []
    for category, info in category_map.items():
        if not info.measurement_property_sets:
            rows.append([
                category, info.elements_analyzed, info.property_set_count,
                "N/A", "N/A", "N/A", "N/A", 0, "none",
            ])
            continue
        for pset_name, observed in info.measurement_property_sets.items():
            for prop_name, observation in observed.items():
                rows.append([
                    category,
                    info.elements_analyzed,
                    info.property_set_count,
                    pset_name,
                    observation.measurement_type,
                    prop_name,
                    normalize_number(observation.sample_value),
                    observation.frequency,
                    observation.confidence,
                ])
    return render_rows(DISCOVERY_HEADERS, rows)


def flatten_element(model_id: str, element: ElementInfo, include_metadata: bool = True) -> dict[str, Any]:
    """Identity columns plus one ``<pset>_<prop>`` column per property."""
    flat: dict[str, Any] = {
        "ModelId": model_id,
        "LocalId": element.local_id,
        "Name": element.name,
        "GlobalId": element.global_id,
        "Category": element.category,
        "ObjectType": element.object_type,
    }
    if include_metadata:
        for pset_name, properties in element.property_sets.items():
            for prop_name, value in properties.items():
                flat[f"{pset_name}_{prop_name}"] = value
    return flat


def elements_csv(
    elements: Mapping[str, Sequence[ElementInfo]], include_metadata: bool = True
) -> str:
    """Flattened element table with a sorted header covering every column seen."""
    flat_rows = [
        flatten_element(model_id, element, include_metadata)
        for model_id, items in elements.items()
        for element in items
    ]
    headers = sorted(set(ELEMENT_BASE_HEADERS).union(*(row.keys() for row in flat_rows)))
    rows = [[normalize_number(row.get(header)) for header in headers] for row in flat_rows]
    logger.debug("Rendered %d element rows with %d columns", len(rows), len(headers))
    return render_rows(headers, rows)


def selection_csv(
    models: ModelIdMap,
    elements: Mapping[str, Sequence[ElementInfo]] | None = None,
) -> str:
    """Selected ids, optionally joined with element attributes."""
    headers = list(SELECTION_HEADERS)
    lookup: dict[tuple[str, int], ElementInfo] = {}
    if elements is not None:
        headers += SELECTION_ATTRIBUTE_HEADERS
        lookup = {
            (model_id, info.local_id): info
            for model_id, items in elements.items()
            for info in items
        }

    rows = []
    for model_id, local_ids in models.items():
        for local_id in local_ids:
            row: list[Any] = [model_id, local_id]
            if elements is not None:
                info = lookup.get((model_id, local_id))
                if info is None:
                    row += ["", "", "", ""]
                else:
                    row += [_text(info.name), _text(info.global_id), _text(info.category), _text(info.object_type)]
            rows.append(row)
    return render_rows(headers, rows)


def resolve_export_path(filename: str | Path, exports_dir: str | Path = DEFAULT_EXPORTS_DIR) -> Path:
    """Absolute paths are used as given; relative ones land under *exports_dir*.

    Parent directories are created either way.
    """
    path = Path(filename)
    if not path.is_absolute():
        path = Path(exports_dir) / path
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def write_csv(text: str, filename: str | Path, exports_dir: str | Path = DEFAULT_EXPORTS_DIR) -> Path:
    path = resolve_export_path(filename, exports_dir)
    path.write_text(text, encoding="utf-8")
    logger.info("CSV written to %s", path)
    return path
