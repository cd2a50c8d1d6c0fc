# tests/conftest.py
"""
Pytest configuration and fixtures for the ETA pipeline.
Every test gets its own in-memory database, change feed and metrics registry.
"""

import os
import sys

# Keep Config from creating the on-disk SQLite fallback during imports
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from courier_eta.config import CalculatorSettings, Config
from courier_eta.database import build_engine, build_session_factory, init_database
from courier_eta.main import build_services, create_app
from courier_eta.observability import MetricsRegistry
from courier_eta.services.change_feed import OrderChangeFeed
from courier_eta.services.directions_client import DirectionsRoute
from courier_eta.services.eta_calculator import EtaCalculatorService
from courier_eta.services.order_store import OrderStore

ROUTE_GEOMETRY = {
    "type": "LineString",
    "coordinates": [[-74.01, 40.71], [-74.00, 40.72], [-73.98, 40.75]],
}


class StubDirectionsClient:
    """Test double for the directions provider; records every call."""

    def __init__(self, duration=600.0, distance=3218.0, geometry=None, error=None):
        self.duration = duration
        self.distance = distance
        self.geometry = geometry if geometry is not None else ROUTE_GEOMETRY
        self.error = error
        self.calls = []

    def get_route(self, points):
        self.calls.append(list(points))
        if self.error is not None:
            raise self.error
        return DirectionsRoute(
            duration_seconds=self.duration,
            distance_meters=self.distance,
            geometry=self.geometry,
        )


class FakeTimer:
    def __init__(self, registry, interval, callback):
        self.registry = registry
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True
        self.registry.active.append(self)

    def cancel(self):
        self.cancelled = True
        if self in self.registry.active:
            self.registry.active.remove(self)

    def fire(self):
        self.callback()


class FakeTimerRegistry:
    """Stands in for IntervalTimer so tests can count and fire pending timers."""

    def __init__(self):
        self.created = []
        self.active = []

    def __call__(self, interval, callback):
        timer = FakeTimer(self, interval, callback)
        self.created.append(timer)
        return timer


class TestConfig(Config):
    __test__ = False

    DATABASE_URL = "sqlite:///:memory:"
    SQL_ECHO = False
    TESTING = True
    SERVICE_ROLE_KEY = "service-role-test-key"
    MAPBOX_ACCESS_TOKEN = "pk.test-token"
    ETA_MONOTONIC_GUARD = False
    ETA_POLL_INTERVAL_SECONDS = 300
    STRUCTURED_LOGS_ENABLED = False


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:", echo=False)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def change_feed(metrics):
    feed = OrderChangeFeed(metrics=metrics)
    yield feed
    feed.shutdown()


@pytest.fixture
def order_store(session_factory, change_feed):
    return OrderStore(session_factory, change_feed=change_feed)


@pytest.fixture
def settings():
    return CalculatorSettings(
        database_url="sqlite:///:memory:",
        service_key="service-role-test-key",
        mapbox_token="pk.test-token",
    )


@pytest.fixture
def directions():
    return StubDirectionsClient()


@pytest.fixture
def calculator(order_store, directions, settings, metrics):
    return EtaCalculatorService(order_store, directions, settings, metrics=metrics)


@pytest.fixture
def timers():
    return FakeTimerRegistry()


@pytest.fixture
def sample_order(order_store):
    """Order O1 from the end-to-end scenario."""
    return order_store.create_order(
        id="O1",
        pickup_lat=40.72,
        pickup_lng=-74.00,
        dropoff_lat=40.75,
        dropoff_lng=-73.98,
    )


@pytest.fixture
def services(directions):
    services = build_services(TestConfig, directions_client=directions)
    yield services
    services.shutdown()


@pytest.fixture
def test_client(services):
    app = create_app(TestConfig, services=services)
    with app.test_client() as client:
        yield client
