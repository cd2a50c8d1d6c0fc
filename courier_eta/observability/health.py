from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from courier_eta.config import CalculatorSettings


def check_database_health(engine: Engine) -> Dict[str, Any]:
    """Attempt a lightweight DB query to ensure connectivity."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
        }
    except SQLAlchemyError as exc:
        return {"status": "unhealthy", "detail": str(exc)}


def check_directions_provider(settings: CalculatorSettings) -> Dict[str, Any]:
    """Configuration-only check; the provider is not contacted from health probes."""
    missing = settings.missing()
    if missing:
        return {"status": "unhealthy", "missing": missing}
    return {"status": "healthy"}
