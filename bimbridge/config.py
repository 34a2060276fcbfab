"""Global configuration: defaults, timeouts, and environment-driven settings."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

# Model id used when the viewer receives a model without an explicit name
DEFAULT_MODEL_ID = "mcp"

# Elements fetched from the index per request during measurement extraction
DEFAULT_BATCH_SIZE = 100

# Elements sampled per category in discovery mode
DEFAULT_SAMPLE_SIZE = 3

# Correlated request timeouts, in seconds
SELECTION_TIMEOUT = 5.0
ELEMENTS_INFO_TIMEOUT = 10.0
ELEMENTS_EXPORT_TIMEOUT = 15.0
DISCOVERY_TIMEOUT = 20.0
MEASUREMENTS_TIMEOUT = 30.0

# Pause between createQuery and executeQuery so the viewer registers first
QUERY_SETTLE_DELAY = 0.1

# Delay between a loadIfc command and its binary payload
BINARY_FOLLOWUP_DELAY = 0.05

# Websocket endpoint the viewer connects to
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3001

# Relative CSV exports land here
DEFAULT_EXPORTS_DIR = Path("exports")

# Environment variable prefix for Settings overrides
ENV_PREFIX = "BIMBRIDGE_"


class Settings(BaseModel):
    """Runtime settings for one controller/viewer session pairing."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    exports_dir: Path = DEFAULT_EXPORTS_DIR
    log_level: str = "INFO"
    default_model_id: str = DEFAULT_MODEL_ID
    batch_size: int = DEFAULT_BATCH_SIZE
    sample_size: int = DEFAULT_SAMPLE_SIZE
    selection_timeout: float = SELECTION_TIMEOUT
    elements_info_timeout: float = ELEMENTS_INFO_TIMEOUT
    elements_export_timeout: float = ELEMENTS_EXPORT_TIMEOUT
    measurements_timeout: float = MEASUREMENTS_TIMEOUT
    discovery_timeout: float = DISCOVERY_TIMEOUT
    query_settle_delay: float = QUERY_SETTLE_DELAY


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from defaults overlaid with ``BIMBRIDGE_*`` variables.

    ``BIMBRIDGE_PORT=4000`` sets ``port``, ``BIMBRIDGE_EXPORTS_DIR`` sets
    ``exports_dir`` and so on.  Unknown variables are ignored; a value that
    fails validation is logged and the default is kept.
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, str] = {}
    for field_name in Settings.model_fields:
        value = env.get(f"{ENV_PREFIX}{field_name.upper()}")
        if value is not None:
            overrides[field_name] = value

    try:
        return Settings(**overrides)
    except ValidationError as exc:
        bad = {err["loc"][0] for err in exc.errors() if err.get("loc")}
        logger.warning("Ignoring invalid settings %s: %s", sorted(bad), exc)
        return Settings(**{k: v for k, v in overrides.items() if k not in bad})
