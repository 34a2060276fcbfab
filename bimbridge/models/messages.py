"""Wire envelope, command tags, and result payloads.

Every text frame is a JSON envelope ``{"command": str, "payload": object}``.
Binary frames carry model data and are handled outside the envelope.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from bimbridge.errors import MalformedInputError
from bimbridge.models.base import WireModel
from bimbridge.models.element import ElementInfo, ModelIdMap
from bimbridge.models.measurement import MeasuredElement, MeasurementSummary

# Controller -> viewer
HIGHLIGHT = "highlight"
LOAD_IFC = "loadIfc"
CREATE_QUERY = "createQuery"
EXECUTE_QUERY = "executeQuery"
LIST_QUERIES = "listQueries"
DELETE_QUERY = "deleteQuery"
EXPORT_QUERIES = "exportQueries"
IMPORT_QUERIES = "importQueries"
GET_SELECTED_ELEMENTS = "getSelectedElements"
GET_ELEMENTS_INFO = "getElementsInfo"
GET_ELEMENTS_MEASUREMENTS = "getElementsMeasurements"
DISCOVER_MEASUREMENT_PROPERTIES = "discoverMeasurementProperties"

# Viewer -> controller
SELECTED_ELEMENTS_RESULT = "selectedElementsResult"
SELECTED_ELEMENTS_METADATA_RESULT = "selectedElementsMetadataResult"
ELEMENTS_INFO_RESULT = "elementsInfoResult"
ELEMENTS_MEASUREMENTS_RESULT = "elementsMeasurementsResult"
DISCOVERY_RESULT = "discoveryResult"

# Tags that resolve a pending correlated request
RESULT_COMMANDS: frozenset[str] = frozenset({
    SELECTED_ELEMENTS_RESULT,
    SELECTED_ELEMENTS_METADATA_RESULT,
    ELEMENTS_INFO_RESULT,
    ELEMENTS_MEASUREMENTS_RESULT,
    DISCOVERY_RESULT,
})

# Request command -> the result tag the viewer answers with
REPLY_COMMANDS: dict[str, str] = {
    GET_SELECTED_ELEMENTS: SELECTED_ELEMENTS_RESULT,
    GET_ELEMENTS_INFO: ELEMENTS_INFO_RESULT,
    GET_ELEMENTS_MEASUREMENTS: ELEMENTS_MEASUREMENTS_RESULT,
    DISCOVER_MEASUREMENT_PROPERTIES: DISCOVERY_RESULT,
}


class Envelope(BaseModel):
    """One text frame on the channel."""

    command: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def parse(cls, raw: str | bytes) -> Envelope:
        """Decode a text frame, raising :class:`MalformedInputError` on any defect."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedInputError(f"Unparseable envelope: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedInputError("Envelope must be a JSON object")
        if data.get("payload") is None:
            data["payload"] = {}
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise MalformedInputError(f"Invalid envelope: {exc}") from exc

    def to_json(self) -> str:
        return json.dumps({"command": self.command, "payload": self.payload}, default=str)


# ---------------------------------------------------------------------------
# Result payloads
# ---------------------------------------------------------------------------


class ResultPayload(WireModel):
    """Common fields of every structured result."""

    success: bool
    message: str = ""


class SelectionResult(ResultPayload):
    total_elements: int = 0
    models: ModelIdMap = Field(default_factory=dict)


class ElementsInfoResult(ResultPayload):
    total_elements: int = 0
    elements: dict[str, list[ElementInfo]] = Field(default_factory=dict)


class MeasurementsResult(ResultPayload):
    total_elements: int = 0
    requested_elements: int = 0
    failed_batches: int = 0
    measurements: dict[str, list[MeasuredElement]] = Field(default_factory=dict)
    summary: MeasurementSummary = Field(default_factory=MeasurementSummary)
    processing_time: str = "0s"


class PropertyObservation(WireModel):
    """What discovery learned about one property in one property set."""

    measurement_type: str
    sample_value: Any = None
    frequency: int = 1
    confidence: str = "medium"


class CategoryInfo(WireModel):
    elements_analyzed: int = 0
    property_set_count: int = 0
    measurement_properties: list[str] = Field(default_factory=list)
    measurement_property_sets: dict[str, dict[str, PropertyObservation]] = Field(
        default_factory=dict
    )
    error: str | None = None


class DiscoveryResult(ResultPayload):
    total_categories: int = 0
    category_map: dict[str, CategoryInfo] = Field(default_factory=dict)
    measurement_map: dict[str, dict[str, dict[str, Any]]] = Field(default_factory=dict)
    processing_time: str = "0s"


class QueryExecution(ResultPayload):
    query_name: str = ""
    total_elements: int = 0
    results: ModelIdMap = Field(default_factory=dict)
