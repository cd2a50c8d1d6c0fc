from __future__ import annotations

import pytest
import requests

from courier_eta.services.directions_client import (
    DirectionsAPIError,
    MapboxDirectionsClient,
    NoRouteFoundError,
)

POINTS = [(40.71, -74.01), (40.72, -74.00), (40.75, -73.98)]


class _FakeResponse:
    def __init__(self, status_code=200, payload=None, raise_on_json=False):
        self.status_code = status_code
        self._payload = payload
        self._raise_on_json = raise_on_json

    def json(self):
        if self._raise_on_json:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class _FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def _client(session):
    return MapboxDirectionsClient(
        access_token="pk.test",
        base_url="https://api.mapbox.test/",
        timeout=3,
        http=session,
    )


def test_coordinates_are_sent_as_lng_lat_pairs():
    assert MapboxDirectionsClient.format_coordinates(POINTS) == "-74.01,40.71;-74.0,40.72;-73.98,40.75"


def test_route_request_and_parsing():
    geometry = {"type": "LineString", "coordinates": [[-74.01, 40.71], [-73.98, 40.75]]}
    session = _FakeSession(
        _FakeResponse(payload={"code": "Ok", "routes": [{"duration": 600, "distance": 3218, "geometry": geometry}]})
    )

    route = _client(session).get_route(POINTS)

    assert route.duration_seconds == 600
    assert route.distance_meters == 3218
    assert route.geometry == geometry

    sent = session.requests[0]
    assert sent["url"] == (
        "https://api.mapbox.test/directions/v5/mapbox/driving/-74.01,40.71;-74.0,40.72;-73.98,40.75"
    )
    assert sent["params"] == {"access_token": "pk.test", "geometries": "geojson", "overview": "full"}
    assert sent["timeout"] == 3


def test_first_route_wins():
    session = _FakeSession(
        _FakeResponse(
            payload={
                "code": "Ok",
                "routes": [
                    {"duration": 100, "distance": 1000, "geometry": None},
                    {"duration": 50, "distance": 500, "geometry": None},
                ],
            }
        )
    )
    assert _client(session).get_route(POINTS).duration_seconds == 100


def test_empty_routes_means_no_route():
    session = _FakeSession(_FakeResponse(payload={"code": "Ok", "routes": []}))
    with pytest.raises(NoRouteFoundError):
        _client(session).get_route(POINTS)


def test_no_route_code():
    session = _FakeSession(_FakeResponse(status_code=200, payload={"code": "NoRoute", "message": "No route"}))
    with pytest.raises(NoRouteFoundError):
        _client(session).get_route(POINTS)


def test_http_error_status():
    session = _FakeSession(_FakeResponse(status_code=401, payload={"message": "Not Authorized - Invalid Token"}))
    with pytest.raises(DirectionsAPIError, match="Invalid Token"):
        _client(session).get_route(POINTS)


def test_transport_error():
    session = _FakeSession(error=requests.ConnectionError("connection refused"))
    with pytest.raises(DirectionsAPIError, match="connection refused"):
        _client(session).get_route(POINTS)


def test_undecodable_body():
    session = _FakeSession(_FakeResponse(status_code=502, raise_on_json=True))
    with pytest.raises(DirectionsAPIError, match="502"):
        _client(session).get_route(POINTS)


def test_malformed_route():
    session = _FakeSession(_FakeResponse(payload={"code": "Ok", "routes": [{"geometry": None}]}))
    with pytest.raises(DirectionsAPIError, match="malformed"):
        _client(session).get_route(POINTS)


def test_needs_two_points():
    with pytest.raises(ValueError):
        _client(_FakeSession()).get_route(POINTS[:1])
