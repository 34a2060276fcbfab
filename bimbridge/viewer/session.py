"""Viewer-side state and command handlers.

A session owns the element index, the named-query registry and the current
selection.  Every handler returns the wire form (camelCase dict) of its
result; structural problems raise :class:`BridgeError` subclasses, which the
dispatcher turns into ``success: false`` replies.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from bimbridge.config import DEFAULT_BATCH_SIZE, DEFAULT_MODEL_ID, DEFAULT_SAMPLE_SIZE
from bimbridge.measurement.catalog import ALL_KINDS
from bimbridge.measurement.classifier import (
    element_identity,
    format_property_sets,
    raw_property_sets,
)
from bimbridge.measurement.discovery import discover_measurement_properties
from bimbridge.measurement.extractor import extract_measurements
from bimbridge.models.element import (
    ElementInfo,
    ModelIdMap,
    count_elements,
    normalize_model_map,
    to_serializable_map,
)
from bimbridge.models.messages import ElementsInfoResult, QueryExecution, SelectionResult
from bimbridge.query.registry import QueryRegistry
from bimbridge.viewer.index import ElementIndex

logger = logging.getLogger(__name__)


class ViewerSession:
    """Everything one connected viewer knows: models, queries and selection."""

    def __init__(
        self,
        index: ElementIndex,
        registry: QueryRegistry | None = None,
        default_model_id: str = DEFAULT_MODEL_ID,
    ) -> None:
        self.index = index
        self.registry = registry if registry is not None else QueryRegistry()
        self.default_model_id = default_model_id
        self._selection: dict[str, set[int]] = {}

    @property
    def selection(self) -> ModelIdMap:
        return to_serializable_map(self._selection)

    # -- models and selection -------------------------------------------------

    def load_model(self, model_id: str | None, data: bytes) -> dict[str, Any]:
        model_id = model_id or self.default_model_id
        self.index.load_model(model_id, data)
        return {"success": True, "message": f"Model '{model_id}' loaded", "modelId": model_id}

    def highlight(self, model_map: Any) -> dict[str, Any]:
        """Replace the selection with *model_map*."""
        clean = normalize_model_map(model_map)
        self._selection = {model_id: set(ids) for model_id, ids in clean.items()}
        total = count_elements(self._selection)
        logger.debug("Highlighted %d elements", total)
        return {"success": True, "message": f"{total} elements highlighted", "totalElements": total}

    def get_selected_elements(self) -> dict[str, Any]:
        models = self.selection
        total = count_elements(models)
        if total == 0:
            return SelectionResult(
                success=True, message="No elements are currently selected"
            ).to_wire()
        return SelectionResult(
            success=True,
            message=f"Found {total} selected elements",
            total_elements=total,
            models=models,
        ).to_wire()

    # -- named queries --------------------------------------------------------

    def create_query(self, query_name: str, query_params: Any) -> dict[str, Any]:
        self.registry.register(query_name, query_params)
        return {
            "success": True,
            "message": f"Query '{query_name}' created",
            "queryName": query_name,
        }

    def execute_query(self, query_name: str, highlight_results: bool = True) -> dict[str, Any]:
        """Run a registered query; raises :class:`NotFoundError` for unknown names."""
        results = self.registry.execute(query_name, self.index)
        total = count_elements(results)
        if highlight_results and total > 0:
            self._selection = {model_id: set(ids) for model_id, ids in results.items()}
        logger.info("Query '%s' matched %d elements", query_name, total)
        return QueryExecution(
            success=True,
            message=f"Query '{query_name}' matched {total} elements",
            query_name=query_name,
            total_elements=total,
            results=to_serializable_map(results),
        ).to_wire()

    def list_queries(self) -> dict[str, Any]:
        names = self.registry.list_names()
        return {"success": True, "totalQueries": len(names), "queries": names}

    def delete_query(self, query_name: str) -> dict[str, Any]:
        existed = self.registry.remove(query_name)
        message = (
            f"Query '{query_name}' deleted" if existed else f"Query '{query_name}' does not exist"
        )
        return {"success": existed, "message": message}

    def export_queries(self) -> dict[str, Any]:
        return {"success": True, "data": self.registry.export_all()}

    def import_queries(self, data: Any) -> dict[str, Any]:
        count = self.registry.import_all(data)
        return {"success": True, "message": f"{count} queries imported", "totalQueries": count}

    # -- bulk reads -----------------------------------------------------------

    def get_elements_info(self, model_map: Any, format_psets: bool = True) -> dict[str, Any]:
        """Attributes and property sets of every element in *model_map*."""
        clean = normalize_model_map(model_map)
        elements: dict[str, list[ElementInfo]] = {}
        total = 0

        for model_id, local_ids in clean.items():
            if not self.index.has_model(model_id):
                logger.warning("Model '%s' not found", model_id)
                continue
            infos = elements.setdefault(model_id, [])
            for local_id in local_ids:
                try:
                    data = self.index.items_data(model_id, [local_id])[0]
                except Exception:
                    logger.error("Failed to read element %d of '%s'", local_id, model_id, exc_info=True)
                    continue
                if not data:
                    logger.warning("No data for element %d of '%s'", local_id, model_id)
                    continue
                psets = raw_property_sets(data)
                info = ElementInfo(local_id=local_id, **element_identity(data))
                if format_psets:
                    info.property_sets = format_property_sets(psets)
                else:
                    info.property_sets_raw = psets
                infos.append(info)
                total += 1

        if total == 0:
            return ElementsInfoResult(
                success=False, message="No element information could be retrieved"
            ).to_wire()
        return ElementsInfoResult(
            success=True,
            message=f"Information retrieved for {total} elements",
            total_elements=total,
            elements=elements,
        ).to_wire()

    def get_elements_measurements(
        self,
        model_map: Any,
        measurement_types: Sequence[str] | None = (ALL_KINDS,),
        include_custom: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> dict[str, Any]:
        return extract_measurements(
            self.index, model_map, measurement_types, include_custom, batch_size
        ).to_wire()

    def discover_measurement_properties(
        self,
        model_id: str | None = None,
        categories: Sequence[str] | None = None,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> dict[str, Any]:
        return discover_measurement_properties(
            self.index, model_id or self.default_model_id, categories, sample_size
        ).to_wire()
