"""End-to-end tests: BimController driving a ViewerSession over an in-process link."""

from __future__ import annotations

import asyncio
import csv
import io
import json
from pathlib import Path

import pytest

from bimbridge.channel.local import LocalLink
from bimbridge.config import Settings
from bimbridge.controller.client import BimController, ToolResult
from bimbridge.viewer.dispatcher import ViewerDispatcher
from bimbridge.viewer.session import ViewerSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(tmp_path: Path, **overrides) -> Settings:
    return Settings(exports_dir=tmp_path / "exports", query_settle_delay=0, **overrides)


def _run_bridge(index, settings: Settings, body, viewer_attached: bool = True):
    """Run ``body(controller, session, link)`` with both sides wired over a LocalLink."""

    async def scenario():
        async with LocalLink() as link:
            controller = BimController(link.controller, settings)
            session = ViewerSession(index)
            dispatcher = ViewerDispatcher(session, link.viewer)
            link.controller.handler = controller.handle_text
            if viewer_attached:
                link.viewer.handler = dispatcher.handle_frame
            result = await body(controller, session, link)
            await link.drain()
            return result

    return asyncio.run(scenario())


def _read_csv(path: Path) -> list[list[str]]:
    return list(csv.reader(io.StringIO(path.read_text(encoding="utf-8"))))


# ---------------------------------------------------------------------------
# ToolResult
# ---------------------------------------------------------------------------


class TestToolResult:
    def test_render(self):
        assert ToolResult(True, "done").render() == "done"
        rendered = ToolResult(True, "done", {"volume": "m³"}).render()
        assert rendered.startswith("done\n\n")
        assert json.loads(rendered.split("\n\n", 1)[1]) == {"volume": "m³"}

    def test_to_dict(self, tmp_path):
        out = ToolResult(False, "nope", file_path=tmp_path / "x.csv").to_dict()
        assert out["success"] is False
        assert out["file_path"].endswith("x.csv")


# ---------------------------------------------------------------------------
# Connection problems
# ---------------------------------------------------------------------------


class TestConnection:
    def test_no_viewer(self, tmp_path):
        async def scenario():
            link = LocalLink()
            controller = BimController(link.controller, _make_settings(tmp_path))
            return [
                await controller.get_selected_elements(),
                await controller.highlight({"mcp": [1]}),
                await controller.find_elements("walls", ["WALL"]),
            ]

        for result in asyncio.run(scenario()):
            assert result.success is False
            assert "No viewer is connected" in result.message

    def test_timeout_when_viewer_silent(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_selected_elements()

        settings = _make_settings(tmp_path, selection_timeout=0.05)
        result = _run_bridge(sample_index, settings, body, viewer_attached=False)
        assert result.success is False
        assert "Timed out" in result.message


# ---------------------------------------------------------------------------
# Models and selection
# ---------------------------------------------------------------------------


class TestModels:
    def test_load_ifc(self, sample_index, tmp_path):
        ifc = tmp_path / "Tower.IFC"
        ifc.write_bytes(b"ISO-10303-21;")

        async def body(controller, session, link):
            return await controller.load_ifc(ifc, "tower")

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert result.data["fileName"] == "Tower.IFC"
        assert sample_index.loaded == [("tower", b"ISO-10303-21;")]

    def test_load_ifc_rejects_bad_files(self, sample_index, tmp_path):
        other = tmp_path / "model.frag"
        other.write_bytes(b"x")

        async def body(controller, session, link):
            return [
                await controller.load_ifc(tmp_path / "missing.ifc"),
                await controller.load_ifc(other),
            ]

        missing, wrong = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not missing.success and "does not exist" in missing.message
        assert not wrong.success and ".ifc" in wrong.message
        assert sample_index.loaded == []

    def test_load_model_uses_default_id(self, sample_index, tmp_path):
        frag = tmp_path / "model.frag"
        frag.write_bytes(b"FRAG")

        async def body(controller, session, link):
            return await controller.load_model(frag)

        assert _run_bridge(sample_index, _make_settings(tmp_path), body).success
        assert sample_index.loaded == [("mcp", b"FRAG")]


class TestSelection:
    def test_empty_selection(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_selected_elements()

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert result.message == "No elements are currently selected"

    def test_highlight_then_export_with_attributes(self, sample_index, tmp_path):
        async def body(controller, session, link):
            await controller.highlight({"mcp": [2, 1]})
            return await controller.get_selected_elements(
                export_to_csv=True, output_path="sel.csv", include_attributes=True
            )

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert result.data["models"] == {"mcp": [1, 2]}
        assert result.data["elements"]["mcp"][0]["name"] == "Wall A"
        assert result.file_path == tmp_path / "exports" / "sel.csv"
        rows = _read_csv(result.file_path)
        assert rows[0] == ["ModelID", "LocalID", "Name", "GlobalId", "Category", "ObjectType"]
        assert rows[2][:3] == ["mcp", "2", "Wall B"]

    def test_highlight_rejects_bad_map(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.highlight({"mcp": "1,2"})

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert result.message.startswith("Error highlighting elements:")


# ---------------------------------------------------------------------------
# Named queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_find_elements_executes_and_highlights(self, sample_index, tmp_path):
        async def body(controller, session, link):
            result = await controller.find_elements("walls", ["WALL"])
            await link.drain()
            return result, session.selection

        result, selection = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert result.data["searchType"] == "Simple"
        assert result.data["queryParams"] == [{"categories": ["/WALL/i"]}]
        assert selection == {"mcp": [1, 2]}

    def test_find_by_property_value(self, sample_index, tmp_path):
        relation = {
            "name": "IsDefinedBy",
            "query": {
                "categories": ["IFCPROPERTYSET"],
                "relation": {
                    "name": "HasProperties",
                    "query": {"attributes": [{"name": "NominalValue", "value": "2HR"}]},
                },
            },
        }

        async def body(controller, session, link):
            result = await controller.find_elements("fire", relation=relation)
            await link.drain()
            return result, session.selection

        result, selection = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.data["searchType"] == "Property set (nested relations)"
        assert selection == {"mcp": [1]}

    def test_saved_without_executing(self, sample_index, tmp_path):
        async def body(controller, session, link):
            result = await controller.find_elements("doors", ["DOOR"], execute=False)
            await link.drain()
            return result, session.registry.list_names(), session.selection

        result, names, selection = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert "Saved without executing" in result.message
        assert names == ["doors"]
        assert selection == {}

    def test_query_management(self, sample_index, tmp_path):
        exported = {"version": "1", "queries": [{"name": "slabs", "query": [{"categories": ["/SLAB/i"]}]}]}

        async def body(controller, session, link):
            results = [
                await controller.import_queries(json.dumps(exported)),
                await controller.execute_query("slabs"),
                await controller.list_queries(),
                await controller.export_queries(),
            ]
            await link.drain()
            selection = session.selection
            results.append(await controller.delete_query("slabs"))
            await link.drain()
            return results, selection, session.registry.list_names()

        results, selection, names = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert all(r.success for r in results)
        assert selection == {"mcp": [4]}
        assert names == []

    def test_import_rejects_invalid_json(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return [await controller.import_queries("{oops"), await controller.import_queries("[1]")]

        bad_json, not_object = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not bad_json.success and "not valid JSON" in bad_json.message
        assert not not_object.success

    def test_empty_query_name(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.find_elements("", ["WALL"])

        assert not _run_bridge(sample_index, _make_settings(tmp_path), body).success

    def test_non_list_categories_rejected(self, sample_index, tmp_path):
        async def body(controller, session, link):
            result = await controller.find_elements("q", categories=5)
            await link.drain()
            return result, session.registry.list_names()

        result, names = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert "categories" in result.message
        assert names == []


# ---------------------------------------------------------------------------
# Element information
# ---------------------------------------------------------------------------


class TestElementsInfo:
    def test_info(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_info({"mcp": [1, 3]})

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert "- Total elements: 2" in result.message
        assert "- Property sets found: 3" in result.message
        assert result.data["mcp"][1]["propertySets"]["Pset_DoorCommon"]["FireRating"] == "EI30"

    def test_viewer_failure_is_reported(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_info({"ghost": [1]})

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert result.message == "No element information could be retrieved"

    def test_export_csv(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.export_elements_csv({"mcp": [1, 2]}, "walls.csv")

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        rows = _read_csv(result.file_path)
        header = rows[0]
        assert result.data == {"totalElements": 2, "columns": len(header)}
        assert "Qto_WallBaseQuantities_NetVolume" in header
        assert len(rows) == 3


# ---------------------------------------------------------------------------
# Measurements
# ---------------------------------------------------------------------------


class TestMeasurements:
    def test_detailed(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_measurements({"mcp": [1, 2, 3]})

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert "- Total volume: 15.50 m³" in result.message
        assert "Units are inferred" in result.message
        assert [e["localId"] for e in result.data["mcp"]] == [1, 2, 3]

    def test_partial_failure_summary(self, sample_index, tmp_path):
        sample_index.fail_on.add(1)

        async def body(controller, session, link):
            return await controller.get_elements_measurements(
                {"mcp": [1, 2, 3]}, output_format="summary", batch_size=2
            )

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert "- Elements processed: 1" in result.message
        assert "- Elements requested: 3" in result.message
        assert "- Failed batches: 1" in result.message
        assert result.data["totalLength"] == "2.10"

    def test_csv_export(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_measurements({"mcp": [1]}, output_format="csv")

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.file_path == tmp_path / "exports" / "measurements_export.csv"
        rows = _read_csv(result.file_path)
        assert rows[1][4] == "12.5"

    def test_total_failure(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_measurements({"ghost": [1]})

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert result.message == "Error getting measurements: No element information could be retrieved"

    def test_invalid_arguments_not_sent(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return [
                await controller.get_elements_measurements({"mcp": [1]}, output_format="xml"),
                await controller.get_elements_measurements({"mcp": [1]}, ["weight"]),
            ]

        for result in _run_bridge(sample_index, _make_settings(tmp_path), body):
            assert not result.success

    def test_none_types_means_all(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_measurements(
                {"mcp": [1]}, measurement_types=None, output_format="summary"
            )

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert "- Total volume: 12.50 m³" in result.message
        assert "- Total length: 6.00 m" in result.message

    def test_non_list_types_rejected(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.get_elements_measurements({"mcp": [1]}, measurement_types=5)

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert result.message.startswith("Error extracting measurements:")

    def test_discovery_csv(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.discover_measurement_properties(
                categories=["IFCWALL"], output_format="csv", export_path=str(tmp_path / "d.csv")
            )

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert result.success
        assert result.file_path == tmp_path / "d.csv"
        assert {row[5] for row in _read_csv(result.file_path)[1:]} == {
            "NetVolume", "NetSideArea", "Length", "GrossVolume", "Thickness",
        }

    def test_discovery_detailed(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.discover_measurement_properties("mcp", ["IFCDOOR"])

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert "- IFCDOOR (1 sampled): OverallHeight, OverallWidth" in result.message
        assert "OverallHeight" in result.data["measurementMap"]["length"]["IFCDOOR"]

    def test_discovery_unknown_model(self, sample_index, tmp_path):
        async def body(controller, session, link):
            return await controller.discover_measurement_properties("ghost")

        result = _run_bridge(sample_index, _make_settings(tmp_path), body)
        assert not result.success
        assert "Model 'ghost' not found" in result.message


@pytest.mark.parametrize("fmt", ["detailed", "summary"])
def test_measurement_formats_do_not_write_files(sample_index, tmp_path, fmt):
    async def body(controller, session, link):
        return await controller.get_elements_measurements({"mcp": [1]}, output_format=fmt)

    result = _run_bridge(sample_index, _make_settings(tmp_path), body)
    assert result.file_path is None
    assert not (tmp_path / "exports").exists()
