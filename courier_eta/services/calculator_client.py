from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

import requests

from courier_eta.services.eta_calculator import EtaCalculatorService
from courier_eta.services.order_store import OrderNotFoundError, OrderStoreError, StoredETA


class CalculatorInvocationError(Exception):
    """The calculator could not be reached or did not answer with JSON."""


class HttpCalculatorClient:
    """Invokes the calculate-eta function over HTTP, the way a remote tracker does."""

    def __init__(
        self,
        function_url: str,
        service_key: str,
        timeout: float = 15,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.function_url = function_url
        self.service_key = service_key
        self.timeout = timeout
        self.http = http or requests.Session()

    def invoke(self, order_id: str, courier_lat: float, courier_lng: float) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": "application/json",
        }
        try:
            response = self.http.post(
                self.function_url,
                json={"orderId": order_id, "courierLat": courier_lat, "courierLng": courier_lng},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CalculatorInvocationError(f"Calculator request failed: {exc}") from exc

        if response.status_code >= 400:
            raise CalculatorInvocationError(f"Calculator returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise CalculatorInvocationError("Calculator returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise CalculatorInvocationError("Calculator returned an unexpected payload")
        return data


class HttpStoredEtaReader:
    """Reads the stored ETA fields through the service's order endpoint."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 15,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self.http = http or requests.Session()

    def get_stored_eta(self, order_id: str) -> StoredETA:
        try:
            response = self.http.get(
                f"{self.base_url}/api/orders/{order_id}/eta",
                headers={"Authorization": f"Bearer {self.service_key}", "apikey": self.service_key},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise OrderStoreError(f"ETA lookup failed: {exc}") from exc

        if response.status_code == 404:
            raise OrderNotFoundError(order_id)
        if response.status_code >= 400:
            raise OrderStoreError(f"ETA lookup returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise OrderStoreError("ETA lookup returned a non-JSON body") from exc

        updated_at = data.get("eta_updated_at")
        return StoredETA(
            eta_minutes=data.get("eta_minutes"),
            distance_miles=data.get("distance_miles"),
            eta_updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


class InProcessCalculatorClient:
    """Same interface as HttpCalculatorClient, backed by a local service."""

    def __init__(self, service: EtaCalculatorService) -> None:
        self.service = service

    def invoke(self, order_id: str, courier_lat: float, courier_lng: float) -> Dict[str, Any]:
        return self.service.calculate(order_id, courier_lat, courier_lng).to_dict()
