# courier_eta/main.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import requests
from flask import Flask, g, jsonify, request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from courier_eta import __version__
from courier_eta.blueprints import eta_bp
from courier_eta.config import CalculatorSettings, Config
from courier_eta.database import build_engine, build_session_factory, init_database
from courier_eta.observability import (
    MetricsRegistry,
    check_database_health,
    check_directions_provider,
    configure_logging,
    ensure_request_id,
)
from courier_eta.services import (
    EtaCalculatorService,
    EtaTracker,
    HttpCalculatorClient,
    HttpStoredEtaReader,
    InProcessCalculatorClient,
    MapboxDirectionsClient,
    OrderChangeFeed,
    OrderStore,
)

logger = logging.getLogger(__name__)

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@dataclass
class EtaServices:
    """Everything the ETA pipeline needs, built once and torn down explicitly."""

    config: Any
    engine: Engine
    session_factory: sessionmaker
    metrics: MetricsRegistry
    change_feed: OrderChangeFeed
    order_store: OrderStore
    directions_client: MapboxDirectionsClient
    calculator: EtaCalculatorService

    @property
    def settings(self) -> CalculatorSettings:
        return self.calculator.settings

    def build_tracker(self, order_id: Optional[str], **kwargs: Any) -> EtaTracker:
        """A tracker wired to the in-process calculator and store."""
        kwargs.setdefault("poll_interval", self.config.ETA_POLL_INTERVAL_SECONDS)
        kwargs.setdefault("metrics", self.metrics)
        return EtaTracker(
            order_id,
            calculator=InProcessCalculatorClient(self.calculator),
            order_reader=self.order_store,
            change_feed=self.change_feed,
            **kwargs,
        )

    def shutdown(self) -> None:
        self.change_feed.shutdown()
        self.engine.dispose()
        logger.info("ETA services shut down")


def build_remote_tracker(
    order_id: Optional[str],
    config: Any = Config,
    change_feed: Optional[OrderChangeFeed] = None,
    http: Optional[requests.Session] = None,
    **kwargs: Any,
) -> EtaTracker:
    """
    A tracker for a process that does not host the calculator.

    Calculations go to CALCULATOR_FUNCTION_URL and the fallback reads the
    stored ETA from ORDER_API_BASE_URL, both with the service role key.
    Without a shared change feed the tracker relies on polling.
    """
    http = http or requests.Session()
    kwargs.setdefault("poll_interval", config.ETA_POLL_INTERVAL_SECONDS)
    return EtaTracker(
        order_id,
        calculator=HttpCalculatorClient(
            config.CALCULATOR_FUNCTION_URL,
            config.SERVICE_ROLE_KEY,
            timeout=config.CALCULATOR_TIMEOUT_SECONDS,
            http=http,
        ),
        order_reader=HttpStoredEtaReader(
            config.ORDER_API_BASE_URL,
            config.SERVICE_ROLE_KEY,
            timeout=config.CALCULATOR_TIMEOUT_SECONDS,
            http=http,
        ),
        change_feed=change_feed or OrderChangeFeed(metrics=kwargs.get("metrics")),
        **kwargs,
    )


def build_services(
    config: Any = Config,
    directions_client: Optional[MapboxDirectionsClient] = None,
    metrics: Optional[MetricsRegistry] = None,
) -> EtaServices:
    metrics = metrics or MetricsRegistry()
    engine = build_engine(
        config.DATABASE_URL,
        echo=config.SQL_ECHO,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
    )
    try:
        init_database(engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)

    session_factory = build_session_factory(engine)
    change_feed = OrderChangeFeed(metrics=metrics)
    order_store = OrderStore(
        session_factory,
        change_feed=change_feed,
        monotonic_guard=config.ETA_MONOTONIC_GUARD,
    )
    directions_client = directions_client or MapboxDirectionsClient(
        access_token=config.MAPBOX_ACCESS_TOKEN,
        base_url=config.MAPBOX_API_BASE_URL,
        profile=config.MAPBOX_PROFILE,
        timeout=config.MAPBOX_TIMEOUT_SECONDS,
    )
    calculator = EtaCalculatorService(
        order_store,
        directions_client,
        CalculatorSettings.from_config(config),
        metrics=metrics,
    )
    return EtaServices(
        config=config,
        engine=engine,
        session_factory=session_factory,
        metrics=metrics,
        change_feed=change_feed,
        order_store=order_store,
        directions_client=directions_client,
        calculator=calculator,
    )


def create_app(config: Any = Config, services: Optional[EtaServices] = None) -> Flask:
    app = Flask(__name__)
    config.configure_app(app)
    configure_logging(app, config)

    services = services or build_services(config)
    app.extensions["courier_eta"] = services
    app.register_blueprint(eta_bp)

    @app.before_request
    def before_request_logging():
        g.request_started_at = time.perf_counter()
        g.request_id = ensure_request_id(config.REQUEST_ID_HEADER)
        services.metrics.increment_counter(
            "http_requests_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
            },
        )

    @app.after_request
    def after_request_logging(response):
        started = getattr(g, "request_started_at", None)
        labels = {
            "method": request.method,
            "endpoint": request.endpoint or request.path,
            "status": str(response.status_code),
        }
        if started is not None:
            services.metrics.observe_latency(
                "http_request_latency_ms",
                (time.perf_counter() - started) * 1000,
                labels=labels,
            )
        response.headers[config.REQUEST_ID_HEADER] = g.get("request_id", "")
        if response.status_code >= 500:
            services.metrics.increment_counter("http_errors_total", labels=labels)
            logger.error("Request finished with error status %s", response.status_code)
        else:
            logger.info("Request finished", extra={"status_code": response.status_code})
        return response

    @app.route("/health", methods=["GET"])
    def health():
        started = time.perf_counter()
        checks = {
            "database": check_database_health(services.engine),
            "directions": check_directions_provider(services.settings),
        }
        all_healthy = all(check["status"] == "healthy" for check in checks.values())
        body = {
            "status": "healthy" if all_healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "version": __version__,
            "environment": config.APP_ENV,
            "checks": checks,
        }
        return jsonify(body), (200 if all_healthy else 503), _NO_CACHE_HEADERS

    @app.route("/metrics", methods=["GET"])
    def metrics():
        return jsonify(services.metrics.snapshot())

    return app
