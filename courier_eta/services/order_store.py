from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from courier_eta.models import Order, as_utc, utcnow
from courier_eta.services.change_feed import OrderChangeFeed

ORDERS_TABLE = Order.__tablename__


class OrderStoreError(Exception):
    """The order record could not be read or written."""


class OrderNotFoundError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


@dataclass(frozen=True)
class StoredETA:
    eta_minutes: Optional[int]
    distance_miles: Optional[float]
    eta_updated_at: Optional[datetime]


class OrderStore:
    """
    Persistence boundary for the ETA fields of the order record.

    Reads are point lookups by id. ETA writes replace all three fields in one
    statement and, once committed, are announced on the change feed so that
    subscribed trackers can adopt the new value without polling.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        change_feed: Optional[OrderChangeFeed] = None,
        monotonic_guard: bool = False,
    ) -> None:
        self.session_factory = session_factory
        self.change_feed = change_feed
        self.monotonic_guard = monotonic_guard
        self.logger = logging.getLogger(__name__)

    def create_order(self, **fields: Any) -> Order:
        session = self.session_factory()
        try:
            order = Order(**fields)
            session.add(order)
            session.commit()
            session.refresh(order)
            session.expunge(order)
            return order
        except SQLAlchemyError as exc:
            session.rollback()
            raise OrderStoreError(f"Could not create order: {exc}") from exc
        finally:
            session.close()

    def get_route_points(self, order_id: str) -> Optional[Order]:
        """Load the order for routing; None when it does not exist."""
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            if order is not None:
                session.expunge(order)
            return order
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"Order lookup failed: {exc}") from exc
        finally:
            session.close()

    def get_stored_eta(self, order_id: str) -> StoredETA:
        session = self.session_factory()
        try:
            row = (
                session.query(Order.eta_minutes, Order.distance_miles, Order.eta_updated_at)
                .filter(Order.id == order_id)
                .one_or_none()
            )
        except SQLAlchemyError as exc:
            raise OrderStoreError(f"ETA lookup failed: {exc}") from exc
        finally:
            session.close()

        if row is None:
            raise OrderNotFoundError(order_id)
        return StoredETA(
            eta_minutes=row[0],
            distance_miles=row[1],
            eta_updated_at=as_utc(row[2]),
        )

    def update_eta(
        self,
        order_id: str,
        eta_minutes: int,
        distance_miles: float,
        updated_at: Optional[datetime] = None,
    ) -> bool:
        """
        Write a freshly computed ETA onto the order.

        Returns False only when the monotonic guard rejected the write as
        older than what is stored. Without the guard the write is a blind
        overwrite and the last writer wins.
        """
        updated_at = as_utc(updated_at) or utcnow()
        session = self.session_factory()
        try:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            old_payload = order.to_change_payload()

            stmt = (
                update(Order)
                .where(Order.id == order_id)
                .values(
                    eta_minutes=eta_minutes,
                    distance_miles=distance_miles,
                    eta_updated_at=updated_at,
                )
                .execution_options(synchronize_session=False)
            )
            if self.monotonic_guard:
                stmt = stmt.where(
                    or_(Order.eta_updated_at.is_(None), Order.eta_updated_at < updated_at)
                )
            result = session.execute(stmt)
            session.commit()

            if result.rowcount == 0:
                self.logger.info(
                    "Skipped stale ETA write for order %s",
                    order_id,
                    extra={"order_id": order_id},
                )
                return False

            session.refresh(order)
            new_payload = order.to_change_payload()
        except SQLAlchemyError as exc:
            session.rollback()
            raise OrderStoreError(f"ETA update failed: {exc}") from exc
        finally:
            session.close()

        if self.change_feed is not None:
            self.change_feed.publish(ORDERS_TABLE, "UPDATE", new=new_payload, old=old_payload)
        return True
