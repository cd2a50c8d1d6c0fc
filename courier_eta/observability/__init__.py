"""Observability helpers: logging, metrics, and health checks."""

from .logging_config import configure_logging, ensure_request_id
from .metrics import MetricsRegistry
from .health import check_database_health, check_directions_provider

__all__ = [
    "configure_logging",
    "ensure_request_id",
    "MetricsRegistry",
    "check_database_health",
    "check_directions_provider",
]
