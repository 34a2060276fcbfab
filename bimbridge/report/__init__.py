"""CSV reports."""

from bimbridge.report.csv_export import (
    discovery_csv,
    elements_csv,
    measurements_csv,
    normalize_number,
    resolve_export_path,
    selection_csv,
    write_csv,
)

__all__ = [
    "discovery_csv",
    "elements_csv",
    "measurements_csv",
    "normalize_number",
    "resolve_export_path",
    "selection_csv",
    "write_csv",
]
