"""bimbridge: drive a BIM model viewer from an external controller over one duplex channel."""

__version__ = "1.0.0"

from bimbridge.channel.correlator import Correlator, RequestState
from bimbridge.channel.local import LocalLink
from bimbridge.config import Settings, load_settings
from bimbridge.controller.client import BimController, ToolResult
from bimbridge.errors import (
    BridgeError,
    MalformedInputError,
    NoPeerConnectedError,
    NotFoundError,
    PartialFailureError,
    RequestPendingError,
    RequestTimeoutError,
)
from bimbridge.measurement import (
    classify_properties,
    discover_measurement_properties,
    extract_measurements,
)
from bimbridge.query import QueryRegistry, build_query, decode_query
from bimbridge.report import normalize_number
from bimbridge.viewer import ElementIndex, ViewerDispatcher, ViewerSession

__all__ = [
    "BimController",
    "BridgeError",
    "Correlator",
    "ElementIndex",
    "LocalLink",
    "MalformedInputError",
    "NoPeerConnectedError",
    "NotFoundError",
    "PartialFailureError",
    "QueryRegistry",
    "RequestPendingError",
    "RequestState",
    "RequestTimeoutError",
    "Settings",
    "ToolResult",
    "ViewerDispatcher",
    "ViewerSession",
    "build_query",
    "classify_properties",
    "decode_query",
    "discover_measurement_properties",
    "extract_measurements",
    "load_settings",
    "normalize_number",
]
