"""
Mapbox Directions adapter.

Sole responsibility: talk to the directions provider over HTTP and return a
normalized route. Internal coordinates are (lat, lng); the provider wants
lng,lat pairs joined by semicolons.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

LatLng = Tuple[float, float]


class DirectionsAPIError(Exception):
    """The provider rejected the request or answered with something unusable."""


class NoRouteFoundError(DirectionsAPIError):
    """The provider answered successfully but found no path."""


@dataclass(frozen=True)
class DirectionsRoute:
    duration_seconds: float
    distance_meters: float
    geometry: Optional[Dict[str, Any]]


class MapboxDirectionsClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.mapbox.com",
        profile: str = "driving",
        timeout: float = 10,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.http = http or requests.Session()
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def format_coordinates(points: Sequence[LatLng]) -> str:
        """Convert [(lat, lng), ...] to 'lng,lat;lng,lat;...'."""
        return ";".join(f"{lng},{lat}" for lat, lng in points)

    def route_url(self, points: Sequence[LatLng]) -> str:
        coordinates = self.format_coordinates(points)
        return f"{self.base_url}/directions/v5/mapbox/{self.profile}/{coordinates}"

    def get_route(self, points: Sequence[LatLng]) -> DirectionsRoute:
        """
        Request a driving route through the points in order and return the
        provider's first (best) route with full GeoJSON geometry.
        """
        if len(points) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        try:
            response = self.http.get(
                self.route_url(points),
                params={
                    "access_token": self.access_token,
                    "geometries": "geojson",
                    "overview": "full",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise DirectionsAPIError(f"Directions request failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise DirectionsAPIError(
                f"Directions API returned an undecodable body (status {response.status_code})"
            ) from exc

        if not isinstance(data, dict):
            raise DirectionsAPIError("Directions API returned an unexpected payload")

        code = data.get("code")
        if code == "NoRoute":
            raise NoRouteFoundError(data.get("message") or "No route found")
        if response.status_code >= 400:
            message = data.get("message") or f"HTTP {response.status_code}"
            raise DirectionsAPIError(f"Directions API error: {message}")

        routes: List[Dict[str, Any]] = data.get("routes") or []
        if not routes:
            raise NoRouteFoundError("No route found")

        route = routes[0]
        try:
            duration = float(route["duration"])
            distance = float(route["distance"])
        except (KeyError, TypeError, ValueError) as exc:
            raise DirectionsAPIError("Directions API returned a malformed route") from exc

        return DirectionsRoute(
            duration_seconds=duration,
            distance_meters=distance,
            geometry=route.get("geometry"),
        )
