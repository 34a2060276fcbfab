"""Process entry point: MCP tools on stdio plus the viewer websocket hub.

Both run in one asyncio loop.  All logging goes to stderr because stdout
carries the MCP stdio protocol.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import uvicorn
from mcp.server.fastmcp import FastMCP

from bimbridge import __version__
from bimbridge.channel.websocket import ViewerHub, create_app
from bimbridge.config import Settings, load_settings
from bimbridge.controller.client import BimController

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(stream=sys.stderr, level=level.upper(), format=LOG_FORMAT, force=True)


def build_mcp_server(controller: BimController) -> FastMCP:
    """FastMCP server whose tools delegate to *controller*."""
    mcp = FastMCP("bimbridge")

    @mcp.tool(name="load-model")
    async def load_model(path: str) -> str:
        """Send a model file to the viewer; it is loaded as the default model."""
        return (await controller.load_model(path)).render()

    @mcp.tool(name="load-ifc")
    async def load_ifc(path: str, model_id: str = "mcp") -> str:
        """Load an .ifc file into the viewer under model_id."""
        return (await controller.load_ifc(path, model_id)).render()

    @mcp.tool(name="highlight")
    async def highlight(model_id_map: dict[str, list[int]]) -> str:
        """Highlight elements, given as {modelId: [localId, ...]}."""
        return (await controller.highlight(model_id_map)).render()

    @mcp.tool(name="fast-find-elements")
    async def fast_find_elements(
        query_name: str,
        categories: list[str] | None = None,
        attributes: list[dict[str, Any]] | None = None,
        relation: dict[str, Any] | None = None,
        execute: bool = True,
    ) -> str:
        """Create a named query and optionally run and highlight it.

        categories match IFC classes case-insensitively (e.g. ["WALL", "DOOR"]).
        attributes are [{"name": ..., "value": ...}] criteria on direct attributes.
        relation is {"name": "IsDefinedBy", "query": {...same shape...}}; nest a
        "HasProperties" relation inside it to search property set values.
        """
        result = await controller.find_elements(
            query_name, categories, attributes, relation, execute
        )
        return result.render()

    @mcp.tool(name="execute-query")
    async def execute_query(query_name: str, highlight_results: bool = True) -> str:
        """Run a previously created query."""
        return (await controller.execute_query(query_name, highlight_results)).render()

    @mcp.tool(name="list-queries")
    async def list_queries() -> str:
        """Ask the viewer to list its named queries."""
        return (await controller.list_queries()).render()

    @mcp.tool(name="delete-query")
    async def delete_query(query_name: str) -> str:
        """Delete a named query."""
        return (await controller.delete_query(query_name)).render()

    @mcp.tool(name="export-queries")
    async def export_queries() -> str:
        """Ask the viewer to export its named queries."""
        return (await controller.export_queries()).render()

    @mcp.tool(name="import-queries")
    async def import_queries(data: str) -> str:
        """Import queries from JSON produced by export-queries."""
        return (await controller.import_queries(data)).render()

    @mcp.tool(name="get-selected-elements")
    async def get_selected_elements(
        export_to_csv: bool = False,
        output_path: str = "selected_elements.csv",
        include_attributes: bool = False,
    ) -> str:
        """Elements currently selected in the viewer."""
        result = await controller.get_selected_elements(
            export_to_csv, output_path, include_attributes
        )
        return result.render()

    @mcp.tool(name="get-elements-info")
    async def get_elements_info(
        model_id_map: dict[str, list[int]], format_psets: bool = True
    ) -> str:
        """Attributes and property sets of specific elements."""
        return (await controller.get_elements_info(model_id_map, format_psets)).render()

    @mcp.tool(name="export-elements-csv")
    async def export_elements_csv(
        model_id_map: dict[str, list[int]],
        output_path: str = "elements_export.csv",
        format_psets: bool = True,
        include_metadata: bool = True,
    ) -> str:
        """Export element attributes and property sets to CSV (relative paths go to the exports directory)."""
        result = await controller.export_elements_csv(
            model_id_map, output_path, format_psets, include_metadata
        )
        return result.render()

    @mcp.tool(name="get-elements-measurements")
    async def get_elements_measurements(
        model_id_map: dict[str, list[int]],
        measurement_types: list[str] | None = None,
        include_custom: bool = True,
        output_format: str = "detailed",
        batch_size: int = 100,
        export_path: str | None = None,
    ) -> str:
        """Volume, area and length of elements; output_format is detailed, summary or csv."""
        result = await controller.get_elements_measurements(
            model_id_map,
            measurement_types or ["all"],
            include_custom,
            output_format,
            batch_size,
            export_path,
        )
        return result.render()

    @mcp.tool(name="discover-measurement-properties")
    async def discover_measurement_properties(
        model_id: str = "mcp",
        categories: list[str] | None = None,
        sample_size: int = 3,
        output_format: str = "detailed",
        export_path: str | None = None,
    ) -> str:
        """Sample elements per category to find which property sets hold measurements."""
        result = await controller.discover_measurement_properties(
            model_id, categories, sample_size, output_format, export_path
        )
        return result.render()

    return mcp


async def serve(settings: Settings) -> None:
    """Run the websocket hub and the MCP stdio server until stdin closes."""
    hub = ViewerHub()
    controller = BimController(hub, settings)
    hub.on_text = controller.handle_text

    config = uvicorn.Config(
        create_app(hub),
        host=settings.host,
        port=settings.port,
        log_config=None,
        access_log=False,
        log_level=settings.log_level.lower(),
    )
    web = uvicorn.Server(config)
    web_task = asyncio.create_task(web.serve(), name="viewer-hub")
    logger.info("bimbridge %s: viewer hub on ws://%s:%d/", __version__, settings.host, settings.port)

    try:
        await build_mcp_server(controller).run_stdio_async()
    finally:
        web.should_exit = True
        await web_task


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="bimbridge", description=__doc__)
    parser.add_argument("--host", help="websocket host (default from BIMBRIDGE_HOST)")
    parser.add_argument("--port", type=int, help="websocket port (default from BIMBRIDGE_PORT)")
    parser.add_argument("--exports-dir", help="directory for relative CSV exports")
    parser.add_argument("--log-level", help="logging level, e.g. DEBUG")
    args = parser.parse_args(argv)

    settings = load_settings()
    overrides = {
        key: value
        for key, value in {
            "host": args.host,
            "port": args.port,
            "exports_dir": Path(args.exports_dir) if args.exports_dir else None,
            "log_level": args.log_level,
        }.items()
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings.log_level)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
