"""
ETA Tracker

Keeps the freshest available ETA for one order without ever failing its
caller. Three sources feed the snapshot: an explicit calculation (remote
calculator first when the courier position is known, then the stored ETA),
pushed changes on the order's channel, and a poll timer that re-runs the
calculation as a safety net for missed pushes. Whichever lands last wins.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from courier_eta.models import ETASnapshot, Order
from courier_eta.observability import MetricsRegistry
from courier_eta.services.change_feed import (
    CHANNEL_ERROR,
    TIMED_OUT,
    Channel,
    ChangeEvent,
    OrderChangeFeed,
)
from courier_eta.services.fallback import Err, Ok, Result, Strategy, first_ok
from courier_eta.services.order_store import StoredETA

logger = logging.getLogger(__name__)


class CalculatorClient(Protocol):
    def invoke(self, order_id: str, courier_lat: float, courier_lng: float) -> Dict[str, Any]:
        ...


class StoredEtaReader(Protocol):
    def get_stored_eta(self, order_id: str) -> StoredETA:
        ...


class PollTimer(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class IntervalTimer:
    """Calls `callback` every `interval` seconds on a daemon thread until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], Any], name: Optional[str] = None) -> None:
        self.interval = interval
        self.callback = callback
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name or "eta-poll", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def cancel(self) -> None:
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive() and not self._stopped.is_set()

    def _loop(self) -> None:
        # wait() returns True once cancelled, which ends the loop without a final run
        while not self._stopped.wait(self.interval):
            try:
                self.callback()
            except Exception as exc:
                logger.error("Poll callback failed: %s", exc)


class EtaTracker:
    def __init__(
        self,
        order_id: Optional[str],
        calculator: CalculatorClient,
        order_reader: StoredEtaReader,
        change_feed: OrderChangeFeed,
        poll_interval: float = 300,
        timer_factory: Callable[[float, Callable[[], Any]], PollTimer] = IntervalTimer,
        on_change: Optional[Callable[[Optional[ETASnapshot]], None]] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.calculator = calculator
        self.order_reader = order_reader
        self.change_feed = change_feed
        self.poll_interval = poll_interval
        self.timer_factory = timer_factory
        self.on_change = on_change
        self.metrics = metrics or MetricsRegistry()

        self._order_id = order_id
        self._snapshot: Optional[ETASnapshot] = None
        self._loading = False
        self._lock = threading.RLock()
        self._channel: Optional[Channel] = None
        self._timer: Optional[PollTimer] = None
        # Bumped on every unmount; results from an older generation are dropped
        self._generation = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def order_id(self) -> Optional[str]:
        return self._order_id

    @property
    def snapshot(self) -> Optional[ETASnapshot]:
        with self._lock:
            return self._snapshot

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def is_mounted(self) -> bool:
        return self._channel is not None or self._timer is not None

    def _set_snapshot(self, snapshot: Optional[ETASnapshot], source: str) -> None:
        with self._lock:
            self._snapshot = snapshot
        self.metrics.increment_counter("eta_tracker_updates_total", labels={"source": source})
        if self.on_change is not None:
            try:
                self.on_change(snapshot)
            except Exception as exc:
                logger.error("ETA change listener failed: %s", exc, extra={"order_id": self._order_id})

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_eta(
        self,
        courier_lat: Optional[float] = None,
        courier_lng: Optional[float] = None,
    ) -> Optional[ETASnapshot]:
        """
        Refresh the snapshot and return it.

        Without an order id this does nothing. The remote calculator is only
        tried when both courier coordinates are given; the stored ETA is the
        fallback. When every source fails the snapshot becomes None and the
        failure is logged, never raised.
        """
        order_id = self._order_id
        if not order_id:
            return None
        generation = self._generation

        self._loading = True
        try:
            strategies = []
            if courier_lat is not None and courier_lng is not None:
                strategies.append(
                    Strategy("remote", lambda: self._remote_calculation(order_id, courier_lat, courier_lng))
                )
            strategies.append(Strategy("database", lambda: self._database_read(order_id)))

            outcome = first_ok(strategies)
            if generation != self._generation:
                # Unmounted or pointed at another order while this one was in flight
                return self.snapshot

            if isinstance(outcome, Ok):
                if outcome.value is not None:
                    self._set_snapshot(outcome.value, outcome.source)
            else:
                logger.error(
                    "ETA calculation error for order %s: %s",
                    order_id,
                    outcome.reason,
                    extra={"order_id": order_id, "reason": outcome.reason},
                )
                self._set_snapshot(None, "none")
        except Exception as exc:
            logger.error(
                "ETA calculation error for order %s: %s",
                order_id,
                exc,
                extra={"order_id": order_id},
            )
            if generation == self._generation:
                self._set_snapshot(None, "none")
        finally:
            self._loading = False
        return self.snapshot

    recalculate = calculate_eta

    def _remote_calculation(self, order_id: str, courier_lat: float, courier_lng: float) -> Result:
        try:
            data = self.calculator.invoke(order_id, courier_lat, courier_lng)
            if not data.get("success"):
                raise RuntimeError(data.get("error") or "Calculator reported failure")
            snapshot = ETASnapshot(
                eta_minutes=int(data.get("eta_minutes") or 0),
                distance_miles=float(data.get("distance_miles") or 0),
                last_updated=_now_iso(),
                route=data.get("route"),
            )
        except Exception as exc:
            logger.warning(
                "ETA calculation via calculator failed, trying stored ETA: %s",
                exc,
                extra={"order_id": order_id},
            )
            return Err(str(exc))
        return Ok(snapshot)

    def _database_read(self, order_id: str) -> Result:
        try:
            stored = self.order_reader.get_stored_eta(order_id)
        except Exception as exc:
            logger.error(
                "Failed to fetch stored ETA for order %s: %s",
                order_id,
                exc,
                extra={"order_id": order_id},
            )
            return Err(f"Unable to calculate ETA: {exc}")

        if stored.eta_minutes is None:
            # Never computed; leave whatever the snapshot already holds
            return Ok(None)

        # Distance is not recoverable from this path
        last_updated = stored.eta_updated_at.isoformat() if stored.eta_updated_at else _now_iso()
        return Ok(ETASnapshot(eta_minutes=stored.eta_minutes, distance_miles=0.0, last_updated=last_updated))

    # ------------------------------------------------------------------
    # Push channel
    # ------------------------------------------------------------------

    def _handle_push(self, change: ChangeEvent) -> None:
        updated = change.new
        eta_minutes = updated.get("eta_minutes")
        if eta_minutes is None:
            return
        if change.old and all(
            change.old.get(key) == updated.get(key)
            for key in ("eta_minutes", "distance_miles", "eta_updated_at")
        ):
            return

        with self._lock:
            previous = self._snapshot
            distance = updated.get("distance_miles")
            if distance is None:
                distance = previous.distance_miles if previous else 0.0
            snapshot = ETASnapshot(
                eta_minutes=int(eta_minutes),
                distance_miles=float(distance),
                last_updated=updated.get("eta_updated_at") or _now_iso(),
                route=previous.route if previous else None,
            )
        self._set_snapshot(snapshot, "push")

    def _handle_channel_error(self, payload: Dict[str, Any]) -> None:
        logger.error("ETA tracking channel error: %s", payload.get("error"), extra={"order_id": self._order_id})

    def _handle_timeout(self, payload: Dict[str, Any]) -> None:
        logger.warning("ETA tracking channel timed out, will retry", extra={"order_id": self._order_id})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Subscribe to pushes, run the initial calculation and start polling."""
        order_id = self._order_id
        if not order_id or self.is_mounted:
            return

        self._channel = (
            self.change_feed.channel(f"eta-tracking-{order_id}")
            .on_change(Order.__tablename__, self._handle_push, event="UPDATE", record_id=order_id)
            .on_system(CHANNEL_ERROR, self._handle_channel_error)
            .on_system(TIMED_OUT, self._handle_timeout)
            .subscribe()
        )

        self.calculate_eta()

        self._timer = self.timer_factory(self.poll_interval, self.calculate_eta)
        self._timer.start()
        logger.debug("ETA tracking started for order %s", order_id, extra={"order_id": order_id})

    def stop(self) -> None:
        """Unsubscribe and cancel the poll timer. Safe to call more than once."""
        channel, self._channel = self._channel, None
        timer, self._timer = self._timer, None
        if channel is not None:
            self.change_feed.remove_channel(channel)
        if timer is not None:
            timer.cancel()
        with self._lock:
            self._generation += 1
            self._snapshot = None

    def set_order(self, order_id: Optional[str]) -> None:
        if order_id == self._order_id:
            return
        was_mounted = self.is_mounted
        self.stop()
        self._order_id = order_id
        if was_mounted:
            self.start()

    def __enter__(self) -> "EtaTracker":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
