from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from courier_eta.config import CalculatorSettings
from courier_eta.models import ETAErrorCode, utcnow
from courier_eta.observability import MetricsRegistry
from courier_eta.services.directions_client import (
    DirectionsAPIError,
    MapboxDirectionsClient,
    NoRouteFoundError,
)
from courier_eta.services.order_store import OrderStore, OrderStoreError

METERS_TO_MILES = 0.000621371


def minutes_from_seconds(duration_seconds: float) -> int:
    """Whole minutes, always rounded up: 901s is 16 minutes."""
    return int(math.ceil(duration_seconds / 60))


def miles_from_meters(distance_meters: float) -> float:
    """Miles rounded to two places the way they are stored."""
    return float(f"{distance_meters * METERS_TO_MILES:.2f}")


@dataclass(frozen=True)
class CalculationResult:
    success: bool
    eta_minutes: Optional[int] = None
    distance_miles: Optional[float] = None
    route: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[ETAErrorCode] = None

    @classmethod
    def failure(cls, code: ETAErrorCode, error: str) -> "CalculationResult":
        return cls(success=False, error=error, code=code)

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {
                "success": True,
                "eta_minutes": self.eta_minutes,
                "distance_miles": self.distance_miles,
                "route": self.route,
            }
        return {
            "success": False,
            "error": self.error,
            "code": self.code.value if self.code else ETAErrorCode.UNKNOWN_ERROR.value,
        }


class _CalculationFailed(Exception):
    def __init__(self, code: ETAErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code


def _coerce_coordinate(value: Any, name: str) -> float:
    if value is None:
        raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, f"{name} is required")
    if isinstance(value, bool):
        raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, f"{name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, f"{name} must be a number") from None
    if math.isnan(number) or math.isinf(number):
        raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, f"{name} must be a finite number")
    return number


class EtaCalculatorService:
    """
    Computes a fresh ETA for one order from the courier's position and
    persists it as the order's new source of truth.

    Stateless between calls. Every failure becomes a coded CalculationResult;
    nothing raises past calculate().
    """

    def __init__(
        self,
        order_store: OrderStore,
        directions_client: MapboxDirectionsClient,
        settings: CalculatorSettings,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.order_store = order_store
        self.directions_client = directions_client
        self.settings = settings
        self.metrics = metrics or MetricsRegistry()
        self.logger = logging.getLogger(__name__)

    def handle_request(self, payload: Any) -> CalculationResult:
        """Entry point for a decoded JSON request body (None when undecodable)."""
        order_id = payload.get("orderId") if isinstance(payload, dict) else None
        return self._run(order_id, lambda: self._calculate_from_body(payload))

    def calculate(self, order_id: Any, courier_lat: Any, courier_lng: Any) -> CalculationResult:
        return self._run(order_id, lambda: self._calculate(order_id, courier_lat, courier_lng))

    def _run(self, order_id: Any, step: Callable[[], CalculationResult]) -> CalculationResult:
        try:
            result = step()
        except _CalculationFailed as exc:
            result = CalculationResult.failure(exc.code, str(exc))
        except Exception as exc:
            self.logger.exception(
                "Unexpected error calculating ETA for order %s",
                order_id,
                extra={"order_id": order_id},
            )
            result = CalculationResult.failure(ETAErrorCode.UNKNOWN_ERROR, str(exc) or "Unknown error")
        return self._finish(order_id, result)

    def _require_configuration(self) -> None:
        missing = self.settings.missing()
        if missing:
            raise _CalculationFailed(
                ETAErrorCode.CONFIG_ERROR,
                f"Missing required configuration: {', '.join(missing)}",
            )

    def _calculate_from_body(self, payload: Any) -> CalculationResult:
        self._require_configuration()
        if not isinstance(payload, dict):
            raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, "Request body must be a JSON object")
        return self._calculate(
            payload.get("orderId"),
            payload.get("courierLat"),
            payload.get("courierLng"),
        )

    def _calculate(self, order_id: Any, courier_lat: Any, courier_lng: Any) -> CalculationResult:
        self._require_configuration()

        if order_id is None or (isinstance(order_id, str) and not order_id.strip()):
            raise _CalculationFailed(ETAErrorCode.INVALID_REQUEST, "orderId is required")
        order_id = str(order_id)

        courier = (
            _coerce_coordinate(courier_lat, "courierLat"),
            _coerce_coordinate(courier_lng, "courierLng"),
        )

        try:
            order = self.order_store.get_route_points(order_id)
        except OrderStoreError as exc:
            raise _CalculationFailed(ETAErrorCode.ORDER_FETCH_ERROR, str(exc)) from exc
        if order is None:
            raise _CalculationFailed(ETAErrorCode.ORDER_NOT_FOUND, "Order not found")
        if not order.has_route_coordinates():
            raise _CalculationFailed(
                ETAErrorCode.MISSING_COORDINATES,
                "Order is missing pickup or dropoff coordinates",
            )

        points: Tuple[Tuple[float, float], ...] = (
            courier,
            (order.pickup_lat, order.pickup_lng),
            (order.dropoff_lat, order.dropoff_lng),
        )
        try:
            with self.metrics.time_block("directions_request_latency_ms"):
                route = self.directions_client.get_route(points)
        except NoRouteFoundError as exc:
            raise _CalculationFailed(ETAErrorCode.NO_ROUTE_FOUND, str(exc)) from exc
        except DirectionsAPIError as exc:
            raise _CalculationFailed(ETAErrorCode.MAPBOX_API_ERROR, str(exc)) from exc

        eta_minutes = minutes_from_seconds(route.duration_seconds)
        distance_miles = miles_from_meters(route.distance_meters)

        try:
            self.order_store.update_eta(order_id, eta_minutes, distance_miles, utcnow())
        except OrderStoreError as exc:
            raise _CalculationFailed(ETAErrorCode.UPDATE_ERROR, str(exc)) from exc

        return CalculationResult(
            success=True,
            eta_minutes=eta_minutes,
            distance_miles=distance_miles,
            route=route.geometry,
        )

    def _finish(self, order_id: Any, result: CalculationResult) -> CalculationResult:
        outcome = "OK" if result.success else result.code.value
        self.metrics.increment_counter("eta_calculations_total", labels={"outcome": outcome})
        if result.success:
            self.metrics.record_event(
                "eta_calculated",
                {
                    "order_id": order_id,
                    "eta_minutes": result.eta_minutes,
                    "distance_miles": result.distance_miles,
                },
            )
            self.logger.info(
                "ETA calculated for order %s: %s min, %s mi",
                order_id,
                result.eta_minutes,
                result.distance_miles,
                extra={"order_id": order_id},
            )
        elif result.code == ETAErrorCode.CONFIG_ERROR:
            self.logger.error(
                "ETA calculator misconfigured: %s",
                result.error,
                extra={"code": outcome},
            )
        else:
            self.logger.warning(
                "ETA calculation failed for order %s: %s",
                order_id,
                result.error,
                extra={"order_id": order_id, "code": outcome},
            )
        return result
