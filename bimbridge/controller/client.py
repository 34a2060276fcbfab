"""BimController: controller-side operations over the viewer channel.

Every public coroutine returns a :class:`ToolResult`.  Errors raised while
talking to the viewer, validating input or writing exports are converted to
``ToolResult(success=False, ...)`` here; nothing above this layer needs to
catch :class:`BridgeError`.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from bimbridge.channel.base import Channel
from bimbridge.channel.correlator import Correlator
from bimbridge.config import BINARY_FOLLOWUP_DELAY, Settings
from bimbridge.errors import BridgeError, MalformedInputError, NoPeerConnectedError, NotFoundError
from bimbridge.measurement.catalog import ALL_KINDS, UNIT_NOTE
from bimbridge.measurement.classifier import resolve_kinds
from bimbridge.models import messages as msg
from bimbridge.models.element import count_elements, normalize_model_map
from bimbridge.models.messages import (
    DiscoveryResult,
    ElementsInfoResult,
    MeasurementsResult,
    ResultPayload,
    SelectionResult,
)
from bimbridge.query.translator import build_query, describe_search
from bimbridge.report.csv_export import (
    discovery_csv,
    elements_csv,
    measurements_csv,
    selection_csv,
    write_csv,
)

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("detailed", "summary", "csv")

R = TypeVar("R", bound=ResultPayload)


@dataclass
class ToolResult:
    """Outcome of one controller operation."""

    success: bool
    message: str
    data: Any = None
    file_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": self.data,
            "file_path": str(self.file_path) if self.file_path else None,
        }

    def render(self) -> str:
        """Message followed by the data as indented JSON, for text-only callers."""
        if self.data is None:
            return self.message
        return f"{self.message}\n\n{json.dumps(self.data, indent=2, ensure_ascii=False, default=str)}"


def _boundary(action: str):
    """Convert bridge and file-system errors raised by *func* into failed results."""

    def decorate(func):
        @functools.wraps(func)
        async def wrapper(self: BimController, *args: Any, **kwargs: Any) -> ToolResult:
            try:
                return await func(self, *args, **kwargs)
            except BridgeError as exc:
                logger.warning("%s failed: %s", action, exc)
                return ToolResult(False, f"Error {action}: {exc}")
            except OSError as exc:
                logger.error("%s failed: %s", action, exc, exc_info=True)
                return ToolResult(False, f"Error {action}: {exc}")

        return wrapper

    return decorate


class BimController:
    """Drives a viewer through *channel*.

    Parameters
    ----------
    channel:
        Outbound side of the viewer channel.  Inbound text frames must be fed
        to :meth:`handle_text`.
    settings:
        Timeouts, export directory and defaults.
    """

    def __init__(self, channel: Channel, settings: Settings | None = None) -> None:
        self.channel = channel
        self.settings = settings or Settings()
        self.correlator = Correlator(channel)

    def handle_text(self, raw: str | bytes) -> bool:
        """Inbound frame hook; resolves the pending request when it is a result."""
        return self.correlator.handle_text(raw)

    # -- transport helpers ----------------------------------------------------

    def _require_peer(self) -> None:
        if not self.channel.is_connected():
            raise NoPeerConnectedError("No viewer is connected; open the viewer first")

    async def _notify(self, command: str, payload: dict[str, Any] | None = None) -> None:
        self._require_peer()
        await self.channel.send(command, payload)

    async def _request(
        self, command: str, payload: dict[str, Any], timeout: float, result_type: type[R]
    ) -> R:
        raw = await self.correlator.request(command, payload, timeout)
        if not isinstance(raw, Mapping):
            raise MalformedInputError(f"Reply to {command} is not an object")
        try:
            return result_type.model_validate(raw)
        except ValidationError as exc:
            raise MalformedInputError(f"Invalid reply to {command}: {exc}") from exc

    def _export(self, text: str, filename: str | Path) -> Path:
        return write_csv(text, filename, self.settings.exports_dir)

    # -- models ---------------------------------------------------------------

    @_boundary("loading model")
    async def load_model(self, path: str | Path) -> ToolResult:
        """Send a model file to the viewer, which loads it as the default model."""
        self._require_peer()
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"File does not exist: {path}")
        data = path.read_bytes()
        await self.channel.send_bytes(data)
        return ToolResult(True, f"Loaded and sent model data from {path}", {"bytes": len(data)})

    @_boundary("loading IFC file")
    async def load_ifc(self, path: str | Path, model_id: str | None = None) -> ToolResult:
        """Announce an IFC file with ``loadIfc`` and send its bytes right after."""
        self._require_peer()
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"File does not exist: {path}")
        if path.suffix.lower() != ".ifc":
            raise MalformedInputError(f"File must have an .ifc extension, got: {path.name}")

        data = path.read_bytes()
        model_id = model_id or self.settings.default_model_id
        file_size = f"{len(data) / (1024 * 1024):.2f}"
        await self.channel.send(
            msg.LOAD_IFC, {"modelId": model_id, "fileName": path.name, "fileSize": file_size}
        )
        await asyncio.sleep(BINARY_FOLLOWUP_DELAY)
        await self.channel.send_bytes(data)
        logger.info("Sent %s (%s MB) as model '%s'", path.name, file_size, model_id)
        return ToolResult(
            True,
            f"IFC file sent to the viewer\n\nFile: {path.name}\nSize: {file_size} MB\nModel id: {model_id}",
            {"modelId": model_id, "fileName": path.name, "fileSize": file_size},
        )

    @_boundary("highlighting elements")
    async def highlight(self, model_map: Any) -> ToolResult:
        clean = normalize_model_map(model_map)
        await self._notify(msg.HIGHLIGHT, {"modelIdMap": clean})
        return ToolResult(True, f"Sent a request to highlight {count_elements(clean)} elements")

    # -- named queries --------------------------------------------------------

    @_boundary("creating query")
    async def find_elements(
        self,
        query_name: str,
        categories: Sequence[str] | None = None,
        attributes: Sequence[Mapping[str, Any]] | None = None,
        relation: Mapping[str, Any] | None = None,
        execute: bool = True,
    ) -> ToolResult:
        """Register a query on the viewer and, by default, run and highlight it."""
        if not query_name:
            raise MalformedInputError("Query name must be a non-empty string")
        self._require_peer()
        query_params = [node.to_dict() for node in build_query(categories, attributes, relation)]
        await self.channel.send(
            msg.CREATE_QUERY, {"queryName": query_name, "queryParams": query_params}
        )
        if execute:
            await asyncio.sleep(self.settings.query_settle_delay)
            await self.channel.send(
                msg.EXECUTE_QUERY, {"queryName": query_name, "highlightResults": True}
            )

        search_type = describe_search(relation)
        lines = [
            "Query created",
            "",
            f"- Name: \"{query_name}\"",
            f"- Search type: {search_type}",
            f"- Categories: {', '.join(categories) if categories else 'All'}",
            f"- Direct attributes: {len(attributes) if attributes else 0}",
            f"- Main relation: {relation['name'] if relation else 'None'}",
            f"- Status: {'Executed and highlighted' if execute else 'Saved without executing'}",
        ]
        return ToolResult(
            True,
            "\n".join(lines),
            {
                "queryName": query_name,
                "queryParams": query_params,
                "searchType": search_type,
                "executed": execute,
            },
        )

    @_boundary("executing query")
    async def execute_query(self, query_name: str, highlight_results: bool = True) -> ToolResult:
        await self._notify(
            msg.EXECUTE_QUERY, {"queryName": query_name, "highlightResults": highlight_results}
        )
        suffix = "results are highlighted" if highlight_results else "results are not highlighted"
        return ToolResult(True, f"Query \"{query_name}\" sent for execution; {suffix}")

    @_boundary("listing queries")
    async def list_queries(self) -> ToolResult:
        await self._notify(msg.LIST_QUERIES)
        return ToolResult(True, "Requested the query list from the viewer")

    @_boundary("deleting query")
    async def delete_query(self, query_name: str) -> ToolResult:
        await self._notify(msg.DELETE_QUERY, {"queryName": query_name})
        return ToolResult(True, f"Requested deletion of query \"{query_name}\"")

    @_boundary("exporting queries")
    async def export_queries(self) -> ToolResult:
        await self._notify(msg.EXPORT_QUERIES)
        return ToolResult(True, "Requested a query export from the viewer")

    @_boundary("importing queries")
    async def import_queries(self, data: Any) -> ToolResult:
        if isinstance(data, str):
            try:
                data = json.loads(data)
            except json.JSONDecodeError as exc:
                raise MalformedInputError(f"Query data is not valid JSON: {exc}") from exc
        if not isinstance(data, Mapping):
            raise MalformedInputError("Query data must be a JSON object")
        await self._notify(msg.IMPORT_QUERIES, {"data": data})
        return ToolResult(True, "Sent queries to the viewer for import")

    # -- correlated reads -----------------------------------------------------

    @_boundary("getting selected elements")
    async def get_selected_elements(
        self,
        export_to_csv: bool = False,
        output_path: str = "selected_elements.csv",
        include_attributes: bool = False,
    ) -> ToolResult:
        """Current viewer selection, optionally with attributes and a CSV export."""
        selection = await self._request(
            msg.GET_SELECTED_ELEMENTS, {}, self.settings.selection_timeout, SelectionResult
        )
        if not selection.success:
            return ToolResult(False, selection.message or "The viewer could not read the selection")
        if selection.total_elements == 0:
            return ToolResult(True, selection.message or "No elements are currently selected", {})

        elements = None
        if include_attributes:
            info = await self._request(
                msg.GET_ELEMENTS_INFO,
                {"modelIdMap": selection.models, "formatPsets": True},
                self.settings.elements_info_timeout,
                ElementsInfoResult,
            )
            if info.success:
                elements = info.elements
            else:
                logger.warning("Could not fetch attributes of the selection: %s", info.message)

        data: dict[str, Any] = {"models": selection.models}
        if elements is not None:
            data["elements"] = {
                model_id: [e.to_wire() for e in items] for model_id, items in elements.items()
            }

        message = f"{selection.total_elements} selected elements in {len(selection.models)} model(s)"
        file_path = None
        if export_to_csv:
            file_path = self._export(selection_csv(selection.models, elements), output_path)
            message += f"\nExported to: {file_path}"
        return ToolResult(True, message, data, file_path)

    @_boundary("getting element information")
    async def get_elements_info(self, model_map: Any, format_psets: bool = True) -> ToolResult:
        clean = normalize_model_map(model_map)
        self._require_peer()
        info = await self._request(
            msg.GET_ELEMENTS_INFO,
            {"modelIdMap": clean, "formatPsets": format_psets},
            self.settings.elements_info_timeout,
            ElementsInfoResult,
        )
        if not info.success:
            return ToolResult(False, info.message)

        with_psets = 0
        total_psets = 0
        for items in info.elements.values():
            for element in items:
                if element.property_sets:
                    with_psets += 1
                    total_psets += len(element.property_sets)

        message = "\n".join([
            "Element information retrieved",
            "",
            f"- Total elements: {info.total_elements}",
            f"- Models: {len(info.elements)}",
            f"- Elements with property sets: {with_psets}",
            f"- Property sets found: {total_psets}",
        ])
        data = {model_id: [e.to_wire() for e in items] for model_id, items in info.elements.items()}
        return ToolResult(True, message, data)

    @_boundary("exporting elements to CSV")
    async def export_elements_csv(
        self,
        model_map: Any,
        output_path: str = "elements_export.csv",
        format_psets: bool = True,
        include_metadata: bool = True,
    ) -> ToolResult:
        clean = normalize_model_map(model_map)
        self._require_peer()
        info = await self._request(
            msg.GET_ELEMENTS_INFO,
            {"modelIdMap": clean, "formatPsets": format_psets},
            self.settings.elements_export_timeout,
            ElementsInfoResult,
        )
        if not info.success:
            return ToolResult(False, info.message)
        if not any(info.elements.values()):
            return ToolResult(False, "No elements were returned by the viewer")

        text = elements_csv(info.elements, include_metadata)
        file_path = self._export(text, output_path)
        columns = len(text.split("\n", 1)[0].split(","))
        return ToolResult(
            True,
            f"CSV export complete\n\n- Elements: {info.total_elements}\n- Columns: {columns}\n"
            f"- File: {file_path}",
            {"totalElements": info.total_elements, "columns": columns},
            file_path,
        )

    @_boundary("extracting measurements")
    async def get_elements_measurements(
        self,
        model_map: Any,
        measurement_types: Sequence[str] = (ALL_KINDS,),
        include_custom: bool = True,
        output_format: str = "detailed",
        batch_size: int | None = None,
        export_path: str | None = None,
    ) -> ToolResult:
        """Volume, area and length (plus custom) measurements of *model_map*."""
        clean = normalize_model_map(model_map)
        kinds = resolve_kinds(measurement_types)
        if output_format not in OUTPUT_FORMATS:
            raise MalformedInputError(
                f"Unknown output format '{output_format}'; expected one of {', '.join(OUTPUT_FORMATS)}"
            )
        self._require_peer()

        result = await self._request(
            msg.GET_ELEMENTS_MEASUREMENTS,
            {
                "modelIdMap": clean,
                "measurementTypes": list(kinds),
                "includeCustom": include_custom,
                "batchSize": batch_size or self.settings.batch_size,
            },
            self.settings.measurements_timeout,
            MeasurementsResult,
        )
        if not result.success:
            return ToolResult(False, f"Error getting measurements: {result.message}")

        summary = result.summary
        lines = [
            "Measurements extracted",
            "",
            f"- Elements processed: {result.total_elements}",
            f"- Elements requested: {result.requested_elements}",
            f"- Elements with measurements: {summary.elements_with_measurements}",
            f"- Processing time: {result.processing_time}",
            f"- Total volume: {summary.total_volume} m³",
            f"- Total area: {summary.total_area} m²",
            f"- Total length: {summary.total_length} m",
        ]
        if result.failed_batches:
            lines.append(f"- Failed batches: {result.failed_batches}")
        lines += ["", UNIT_NOTE]

        if output_format == "csv":
            file_path = self._export(
                measurements_csv(result.measurements), export_path or "measurements_export.csv"
            )
            lines.append(f"\nSaved to: {file_path}")
            return ToolResult(True, "\n".join(lines), summary.to_wire(), file_path)
        if output_format == "summary":
            return ToolResult(True, "\n".join(lines), summary.to_wire())
        return ToolResult(
            True,
            "\n".join(lines),
            {
                model_id: [e.to_wire() for e in items]
                for model_id, items in result.measurements.items()
            },
        )

    @_boundary("discovering measurement properties")
    async def discover_measurement_properties(
        self,
        model_id: str | None = None,
        categories: Sequence[str] | None = None,
        sample_size: int | None = None,
        output_format: str = "detailed",
        export_path: str | None = None,
    ) -> ToolResult:
        """Ask the viewer which property sets carry measurements, per category."""
        if output_format not in OUTPUT_FORMATS:
            raise MalformedInputError(
                f"Unknown output format '{output_format}'; expected one of {', '.join(OUTPUT_FORMATS)}"
            )
        self._require_peer()
        result = await self._request(
            msg.DISCOVER_MEASUREMENT_PROPERTIES,
            {
                "modelId": model_id or self.settings.default_model_id,
                "categories": list(categories) if categories else None,
                "sampleSize": sample_size or self.settings.sample_size,
            },
            self.settings.discovery_timeout,
            DiscoveryResult,
        )
        if not result.success:
            return ToolResult(False, f"Error discovering properties: {result.message}")

        lines = [result.message, "", f"- Processing time: {result.processing_time}"]
        for category, info in result.category_map.items():
            found = ", ".join(info.measurement_properties) or "none"
            lines.append(f"- {category} ({info.elements_analyzed} sampled): {found}")

        if output_format == "csv":
            file_path = self._export(
                discovery_csv(result.category_map), export_path or "measurement_discovery.csv"
            )
            lines.append(f"\nSaved to: {file_path}")
            return ToolResult(True, "\n".join(lines), None, file_path)
        if output_format == "summary":
            return ToolResult(True, "\n".join(lines))
        return ToolResult(
            True,
            "\n".join(lines),
            {
                "categoryMap": {k: v.to_wire() for k, v in result.category_map.items()},
                "measurementMap": result.measurement_map,
            },
        )
