"""
Order Change Feed

Publish-Subscribe stream of row changes on the order record. The store
publishes after every committed ETA write; trackers and table watchers
subscribe through named channels scoped by table and, optionally, by record id.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from courier_eta.observability import MetricsRegistry

ChangeCallback = Callable[["ChangeEvent"], None]
SystemCallback = Callable[[Dict[str, Any]], None]
StatusCallback = Callable[[str], None]

CHANNEL_ERROR = "CHANNEL_ERROR"
TIMED_OUT = "TIMED_OUT"
SUBSCRIBED = "SUBSCRIBED"
CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeEvent:
    """A single committed change on a table row."""
    table: str
    event_type: str
    new: Dict[str, Any]
    old: Dict[str, Any] = field(default_factory=dict)
    committed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_id(self) -> Optional[str]:
        return self.new.get("id") or self.old.get("id")


@dataclass(frozen=True)
class _ChangeBinding:
    table: str
    event: str
    record_id: Optional[str]
    callback: ChangeCallback

    def matches(self, change: ChangeEvent) -> bool:
        if self.table != change.table:
            return False
        if self.event != "*" and self.event != change.event_type:
            return False
        return self.record_id is None or self.record_id == change.record_id


class Channel:
    """A named subscription; bindings are added before subscribe()."""

    def __init__(self, name: str, feed: "OrderChangeFeed") -> None:
        self.name = name
        self.state = "closed"
        self._feed = feed
        self._bindings: List[_ChangeBinding] = []
        self._system_handlers: Dict[str, List[SystemCallback]] = {}
        self._status_callback: Optional[StatusCallback] = None

    def on_change(
        self,
        table: str,
        callback: ChangeCallback,
        event: str = "*",
        record_id: Optional[str] = None,
    ) -> "Channel":
        self._bindings.append(_ChangeBinding(table, event, record_id, callback))
        return self

    def on_system(self, event: str, callback: SystemCallback) -> "Channel":
        self._system_handlers.setdefault(event, []).append(callback)
        return self

    def subscribe(self, status_callback: Optional[StatusCallback] = None) -> "Channel":
        self._status_callback = status_callback
        self._feed._join(self)
        self.state = "joined"
        self._notify_status(SUBSCRIBED)
        return self

    @property
    def is_joined(self) -> bool:
        return self.state == "joined"

    def _dispatch(self, change: ChangeEvent) -> int:
        delivered = 0
        for binding in self._bindings:
            if not binding.matches(change):
                continue
            binding.callback(change)
            delivered += 1
        return delivered

    def _emit_system(self, event: str, payload: Dict[str, Any]) -> None:
        for handler in self._system_handlers.get(event, []):
            handler(payload)

    def _close(self) -> None:
        self.state = "closed"
        self._notify_status(CLOSED)

    def _notify_status(self, status: str) -> None:
        if self._status_callback is not None:
            self._status_callback(status)


class OrderChangeFeed:
    """
    In-process change notification hub.

    Constructed by the composition root and passed explicitly to the store
    and to subscribers; shutdown() closes every channel still open.
    """

    def __init__(self, metrics: Optional[MetricsRegistry] = None) -> None:
        self._channels: List[Channel] = []
        self._lock = Lock()
        self.metrics = metrics or MetricsRegistry()
        self.logger = logging.getLogger(__name__)

    def channel(self, name: str) -> Channel:
        return Channel(name, self)

    def _join(self, channel: Channel) -> None:
        with self._lock:
            if channel not in self._channels:
                self._channels.append(channel)
            self.metrics.set_gauge("change_feed_active_channels", len(self._channels))
        self.logger.debug("Channel %s subscribed", channel.name)

    def remove_channel(self, channel: Channel) -> None:
        with self._lock:
            if channel in self._channels:
                self._channels.remove(channel)
            self.metrics.set_gauge("change_feed_active_channels", len(self._channels))
        if channel.is_joined:
            channel._close()
            self.logger.debug("Channel %s removed", channel.name)

    def active_channels(self) -> int:
        with self._lock:
            return len(self._channels)

    def publish(
        self,
        table: str,
        event_type: str,
        new: Dict[str, Any],
        old: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Deliver a change to every joined channel with a matching binding.

        Returns the number of callbacks invoked. A failing callback is
        reported on its channel as CHANNEL_ERROR and does not stop delivery
        to other channels.
        """
        change = ChangeEvent(table=table, event_type=event_type, new=dict(new), old=dict(old or {}))
        with self._lock:
            targets = list(self._channels)

        delivered = 0
        for channel in targets:
            try:
                delivered += channel._dispatch(change)
            except Exception as exc:
                self.logger.error(
                    "Change listener on channel %s failed: %s",
                    channel.name,
                    exc,
                    extra={"order_id": change.record_id},
                )
                self.metrics.increment_counter("change_feed_listener_errors_total")
                channel._emit_system(CHANNEL_ERROR, {"channel": channel.name, "error": str(exc)})

        self.metrics.increment_counter(
            "change_feed_events_total",
            labels={"table": table, "event": event_type},
        )
        return delivered

    def report_timeout(self, channel: Channel) -> None:
        """Surface a transport timeout to the channel's TIMED_OUT handlers."""
        self.logger.warning("Channel %s timed out", channel.name)
        channel._emit_system(TIMED_OUT, {"channel": channel.name})

    def shutdown(self) -> None:
        with self._lock:
            channels = list(self._channels)
        for channel in channels:
            self.remove_channel(channel)
