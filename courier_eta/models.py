# courier_eta/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import Column, DateTime, Float, Integer, String

from courier_eta.database import Base


class ETAErrorCode(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    ORDER_FETCH_ERROR = "ORDER_FETCH_ERROR"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    MISSING_COORDINATES = "MISSING_COORDINATES"
    MAPBOX_API_ERROR = "MAPBOX_API_ERROR"
    NO_ROUTE_FOUND = "NO_ROUTE_FOUND"
    UPDATE_ERROR = "UPDATE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Order(Base):
    """The slice of the orders table the ETA pipeline reads and writes."""

    __tablename__ = 'orders'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    status = Column(String(50), nullable=False, default='pending')

    # Set at order creation, immutable thereafter
    pickup_lat = Column(Float)
    pickup_lng = Column(Float)
    dropoff_lat = Column(Float)
    dropoff_lng = Column(Float)

    # Written together by the calculator; all null until the first calculation
    eta_minutes = Column(Integer)
    distance_miles = Column(Float)
    eta_updated_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utcnow)

    def has_route_coordinates(self) -> bool:
        return None not in (self.pickup_lat, self.pickup_lng, self.dropoff_lat, self.dropoff_lng)

    def to_change_payload(self) -> Dict[str, Any]:
        updated_at = as_utc(self.eta_updated_at)
        return {
            "id": self.id,
            "status": self.status,
            "pickup_lat": self.pickup_lat,
            "pickup_lng": self.pickup_lng,
            "dropoff_lat": self.dropoff_lat,
            "dropoff_lng": self.dropoff_lng,
            "eta_minutes": self.eta_minutes,
            "distance_miles": self.distance_miles,
            "eta_updated_at": updated_at.isoformat() if updated_at else None,
        }

    def __repr__(self):
        return f"<Order(id={self.id}, eta_minutes={self.eta_minutes}, distance_miles={self.distance_miles})>"


@dataclass
class ETASnapshot:
    """Client-held last-known ETA for one order."""

    eta_minutes: int
    distance_miles: float
    last_updated: str
    route: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "eta_minutes": self.eta_minutes,
            "distance_miles": self.distance_miles,
            "last_updated": self.last_updated,
        }
        if self.route is not None:
            payload["route"] = self.route
        return payload
