from __future__ import annotations

from typing import Any

from flask import Blueprint, Response, current_app, jsonify, request

from courier_eta.services.order_store import OrderNotFoundError, OrderStoreError

eta_bp = Blueprint("eta", __name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def _services() -> Any:
    return current_app.extensions["courier_eta"]


@eta_bp.after_request
def apply_cors_headers(response: Response) -> Response:
    for header, value in CORS_HEADERS.items():
        response.headers[header] = value
    return response


@eta_bp.route("/functions/v1/calculate-eta", methods=["POST", "OPTIONS"])
def calculate_eta():
    if request.method == "OPTIONS":
        return Response(status=200)

    # Failures are reported in the body; the transport status stays 200
    payload = request.get_json(silent=True)
    result = _services().calculator.handle_request(payload)
    return jsonify(result.to_dict()), 200


@eta_bp.route("/api/orders/<order_id>/eta", methods=["GET"])
def get_stored_eta(order_id: str):
    try:
        stored = _services().order_store.get_stored_eta(order_id)
    except OrderNotFoundError:
        return jsonify({"error": "Order not found"}), 404
    except OrderStoreError as exc:
        current_app.logger.error("Stored ETA lookup failed: %s", exc, extra={"order_id": order_id})
        return jsonify({"error": "Database query failed"}), 503

    return jsonify(
        {
            "order_id": order_id,
            "eta_minutes": stored.eta_minutes,
            "distance_miles": stored.distance_miles,
            "eta_updated_at": stored.eta_updated_at.isoformat() if stored.eta_updated_at else None,
        }
    )
