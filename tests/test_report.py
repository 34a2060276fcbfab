"""Tests for CSV rendering and locale-independent number normalisation."""

from __future__ import annotations

import csv
import io
import json
from decimal import Decimal

import pytest

from bimbridge.measurement.discovery import discover_measurement_properties
from bimbridge.measurement.extractor import extract_measurements
from bimbridge.models.element import ElementInfo
from bimbridge.report.csv_export import (
    DISCOVERY_HEADERS,
    MEASUREMENT_HEADERS,
    discovery_csv,
    elements_csv,
    measurements_csv,
    normalize_number,
    resolve_export_path,
    selection_csv,
    write_csv,
)


def _rows(text: str) -> list[list[str]]:
    return list(csv.reader(io.StringIO(text)))


def _make_elements() -> dict[str, list[ElementInfo]]:
    return {
        "mcp": [
            ElementInfo(
                local_id=1,
                name="Wall, exterior",
                global_id="g1",
                category="IFCWALL",
                property_sets={"Pset_WallCommon": {"FireRating": "2HR", "ThermalTransmittance": "0,35"}},
            ),
            ElementInfo(
                local_id=2,
                name="Door",
                category="IFCDOOR",
                property_sets={"Pset_DoorCommon": {"IsExternal": True}},
            ),
        ]
    }


# ---------------------------------------------------------------------------
# normalize_number
# ---------------------------------------------------------------------------


class TestNormalizeNumber:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("1.234,56", "1234.56"),
            ("15,5", "15.5"),
            ("-1.000.000,25", "-1000000.25"),
            ("1.234", "1.234"),
            ("12.5", "12.5"),
            (15.5, "15.5"),
            (12.0, "12"),
            (7, "7"),
            (0.1, "0.1"),
            (1e-7, "0.0000001"),
            (Decimal("2.500"), "2.5"),
            (float("inf"), ""),
            (None, ""),
            ("", ""),
            ("   ", ""),
            (True, "true"),
            ("2HR", "2HR"),
            ("a,b", "a,b"),
            ("1,2,3", "1,2,3"),
            ({"a": 1}, '{"a": 1}'),
        ],
    )
    def test_values(self, value, expected):
        assert normalize_number(value) == expected


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


class TestMeasurementsCsv:
    def test_rows(self, sample_index):
        result = extract_measurements(sample_index, {"mcp": [1, 2, 4]})
        rows = _rows(measurements_csv(result.measurements))
        assert rows[0] == MEASUREMENT_HEADERS
        assert len(rows) == 4

        wall = dict(zip(rows[0], rows[1]))
        assert wall["ModelId"] == "mcp"
        assert wall["LocalId"] == "1"
        assert wall["Volume_Value"] == "12.5"
        assert wall["Volume_Unit"] == "m³"
        assert wall["Area_Source"] == "Qto_WallBaseQuantities"
        assert wall["Length_Property"] == "Length"
        assert json.loads(wall["Custom_Measurements"]) == {}

        second = dict(zip(rows[0], rows[2]))
        assert json.loads(second["Custom_Measurements"])["Thickness"]["unit"] == "units"
        assert second["Area_Value"] == ""

        slab = dict(zip(rows[0], rows[3]))
        assert slab["Name"] == "Slab"
        assert slab["Volume_Value"] == ""

    def test_european_value_normalised(self, fake_index):
        fake_index.add_element("mcp", 1, "IFCSLAB", "S", psets={"Q": {"NetArea": "1.234,56"}})
        result = extract_measurements(fake_index, {"mcp": [1]})
        row = dict(zip(*_rows(measurements_csv(result.measurements))))
        assert row["Area_Value"] == "1234.56"


class TestDiscoveryCsv:
    def test_rows_and_empty_category(self, sample_index):
        result = discover_measurement_properties(sample_index, "mcp", ["IFCDOOR", "IFCSLAB"])
        rows = _rows(discovery_csv(result.category_map))
        assert rows[0] == DISCOVERY_HEADERS
        door = [r for r in rows[1:] if r[0] == "IFCDOOR"]
        assert [r[5] for r in door] == ["OverallHeight", "OverallWidth"]
        assert door[0][6] == "2.1"
        assert door[0][8] == "high"
        slab = [r for r in rows[1:] if r[0] == "IFCSLAB"]
        assert slab == [["IFCSLAB", "1", "0", "N/A", "N/A", "N/A", "N/A", "0", "none"]]


class TestElementsCsv:
    def test_flattened_sorted_header(self):
        rows = _rows(elements_csv(_make_elements()))
        header = rows[0]
        assert header == sorted(header)
        assert "Pset_WallCommon_FireRating" in header
        assert "Pset_DoorCommon_IsExternal" in header
        wall = dict(zip(header, rows[1]))
        assert wall["Name"] == "Wall, exterior"
        assert wall["Pset_WallCommon_ThermalTransmittance"] == "0.35"
        door = dict(zip(header, rows[2]))
        assert door["Pset_DoorCommon_IsExternal"] == "true"
        assert door["Pset_WallCommon_FireRating"] == ""
        assert door["GlobalId"] == ""

    def test_without_metadata(self):
        header = _rows(elements_csv(_make_elements(), include_metadata=False))[0]
        assert header == sorted(["ModelId", "LocalId", "Name", "GlobalId", "Category", "ObjectType"])

    def test_comma_in_name_is_quoted(self):
        text = elements_csv(_make_elements())
        assert '"Wall, exterior"' in text


class TestSelectionCsv:
    def test_ids_only(self):
        rows = _rows(selection_csv({"mcp": [1, 2], "site": [7]}))
        assert rows == [["ModelID", "LocalID"], ["mcp", "1"], ["mcp", "2"], ["site", "7"]]

    def test_with_attributes(self):
        rows = _rows(selection_csv({"mcp": [1, 3]}, _make_elements()))
        assert rows[0] == ["ModelID", "LocalID", "Name", "GlobalId", "Category", "ObjectType"]
        assert rows[1] == ["mcp", "1", "Wall, exterior", "g1", "IFCWALL", ""]
        assert rows[2] == ["mcp", "3", "", "", "", ""]


class TestWriteCsv:
    def test_relative_path_goes_to_exports_dir(self, tmp_path):
        path = write_csv("a,b\n", "out/report.csv", tmp_path / "exports")
        assert path == tmp_path / "exports" / "out" / "report.csv"
        assert path.read_text(encoding="utf-8") == "a,b\n"

    def test_absolute_path_used_as_given(self, tmp_path):
        target = tmp_path / "nested" / "abs.csv"
        assert resolve_export_path(target, tmp_path / "ignored") == target
        assert target.parent.is_dir()
        assert not (tmp_path / "ignored").exists()
