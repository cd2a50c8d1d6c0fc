from __future__ import annotations

import logging
from typing import Callable, Optional

from courier_eta.services.change_feed import CLOSED, SUBSCRIBED, Channel, ChangeEvent, OrderChangeFeed


class TableChangeWatcher:
    """Triggers a refetch whenever any row of `table` changes."""

    def __init__(
        self,
        feed: OrderChangeFeed,
        table: str,
        on_data_change: Callable[[], None],
        enabled: bool = True,
    ) -> None:
        self.feed = feed
        self.table = table
        self.on_data_change = on_data_change
        self.enabled = enabled
        self._channel: Optional[Channel] = None
        self.logger = logging.getLogger(__name__)

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None and self._channel.is_joined

    def start(self) -> None:
        if not self.enabled or self._channel is not None:
            return
        self._channel = (
            self.feed.channel(f"admin-{self.table}")
            .on_change(self.table, self._handle_change)
            .subscribe(self._log_status)
        )

    def stop(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            self.feed.remove_channel(channel)

    def _handle_change(self, change: ChangeEvent) -> None:
        self.logger.debug("[%s] Change detected: %s", self.table, change.event_type)
        self.on_data_change()

    def _log_status(self, status: str) -> None:
        if status == SUBSCRIBED:
            self.logger.info("[%s] Realtime subscription established", self.table)
        elif status == CLOSED:
            self.logger.info("[%s] Realtime subscription closed", self.table)
