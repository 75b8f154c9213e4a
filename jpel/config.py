# JPEL Configuration Module
# Settings for the JPEL runner, read from environment variables at call time

import os
import logging
from typing import List

# Storage backend for definitions and instances: "memory" or "rdf"
DEFAULT_STORAGE_BACKEND = "memory"

# Directory where the RDF backend persists its Turtle files
DEFAULT_STORAGE_PATH = "data/jpel_rdf"

# Timeout applied to RestAPI activities that do not declare one
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

# Upper bound on While iterations before the loop is failed
DEFAULT_MAX_LOOP_ITERATIONS = 1000

DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def storage_backend() -> str:
    """Return the configured storage backend name."""
    backend = os.environ.get("JPEL_STORAGE_BACKEND", DEFAULT_STORAGE_BACKEND)
    backend = backend.strip().lower()
    if backend not in ("memory", "rdf"):
        return DEFAULT_STORAGE_BACKEND
    return backend


def storage_path() -> str:
    """Return the directory used by the RDF storage backend."""
    return os.environ.get("JPEL_STORAGE_PATH", DEFAULT_STORAGE_PATH)


def http_timeout_seconds() -> float:
    """Return the default RestAPI timeout, falling back on invalid values."""
    raw = os.environ.get("JPEL_HTTP_TIMEOUT_SECONDS")
    if raw is None:
        return DEFAULT_HTTP_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_HTTP_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_HTTP_TIMEOUT_SECONDS


def max_loop_iterations() -> int:
    """Return the While iteration guard, falling back on invalid values."""
    raw = os.environ.get("JPEL_MAX_LOOP_ITERATIONS")
    if raw is None:
        return DEFAULT_MAX_LOOP_ITERATIONS
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_LOOP_ITERATIONS
    return value if value > 0 else DEFAULT_MAX_LOOP_ITERATIONS


def scripts_enabled() -> bool:
    """Compute scripts run unless JPEL_SCRIPTS_ENABLED is explicitly false."""
    return os.environ.get("JPEL_SCRIPTS_ENABLED", "true").strip().lower() != "false"


def allowed_origins() -> List[str]:
    """Parse the comma separated CORS origin list."""
    raw = os.environ.get("JPEL_ALLOWED_ORIGINS", "*")
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


def configure_logging() -> None:
    """Configure root logging from JPEL_LOG_LEVEL."""
    level_name = os.environ.get("JPEL_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("jpel").setLevel(level)
