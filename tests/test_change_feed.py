from __future__ import annotations

from courier_eta.services.change_feed import CHANNEL_ERROR, CLOSED, SUBSCRIBED
from courier_eta.services.table_watcher import TableChangeWatcher


def test_delivery_respects_table_event_and_record_filters(change_feed):
    seen = []
    change_feed.channel("eta-tracking-O1").on_change(
        "orders", seen.append, event="UPDATE", record_id="O1"
    ).subscribe()

    change_feed.publish("orders", "UPDATE", new={"id": "O1", "eta_minutes": 5})
    change_feed.publish("orders", "UPDATE", new={"id": "O2", "eta_minutes": 6})
    change_feed.publish("orders", "INSERT", new={"id": "O1"})
    change_feed.publish("couriers", "UPDATE", new={"id": "O1"})

    assert [event.new["eta_minutes"] for event in seen] == [5]


def test_unsubscribed_channels_receive_nothing(change_feed):
    seen = []
    channel = change_feed.channel("late").on_change("orders", seen.append)

    change_feed.publish("orders", "UPDATE", new={"id": "O1"})
    channel.subscribe()
    change_feed.remove_channel(channel)
    change_feed.publish("orders", "UPDATE", new={"id": "O1"})

    assert seen == []
    assert change_feed.active_channels() == 0


def test_status_callbacks(change_feed):
    statuses = []
    channel = change_feed.channel("admin-orders").on_change("orders", lambda event: None)
    channel.subscribe(statuses.append)
    change_feed.remove_channel(channel)

    assert statuses == [SUBSCRIBED, CLOSED]


def test_failing_listener_raises_channel_error_and_others_still_receive(change_feed, metrics):
    errors = []
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    (
        change_feed.channel("broken")
        .on_change("orders", broken)
        .on_system(CHANNEL_ERROR, errors.append)
        .subscribe()
    )
    change_feed.channel("healthy").on_change("orders", seen.append).subscribe()

    change_feed.publish("orders", "UPDATE", new={"id": "O1"})

    assert errors[0]["error"] == "listener bug"
    assert len(seen) == 1
    assert metrics.counter_value("change_feed_listener_errors_total") == 1


def test_shutdown_closes_everything(change_feed):
    for name in ("a", "b", "c"):
        change_feed.channel(name).on_change("orders", lambda event: None).subscribe()
    assert change_feed.active_channels() == 3

    change_feed.shutdown()

    assert change_feed.active_channels() == 0


def test_table_watcher_refetches_on_any_change(change_feed):
    refetches = []
    watcher = TableChangeWatcher(change_feed, "orders", lambda: refetches.append(1))

    watcher.start()
    assert watcher.is_subscribed
    change_feed.publish("orders", "INSERT", new={"id": "O9"})
    change_feed.publish("orders", "UPDATE", new={"id": "O1"})
    change_feed.publish("couriers", "UPDATE", new={"id": "C1"})
    watcher.stop()

    assert len(refetches) == 2
    assert not watcher.is_subscribed
    assert change_feed.active_channels() == 0


def test_disabled_table_watcher_does_not_subscribe(change_feed):
    watcher = TableChangeWatcher(change_feed, "orders", lambda: None, enabled=False)
    watcher.start()
    assert not watcher.is_subscribed
    assert change_feed.active_channels() == 0


def test_table_watcher_sees_store_writes(change_feed, order_store, sample_order):
    refetches = []
    watcher = TableChangeWatcher(change_feed, "orders", lambda: refetches.append(1))
    watcher.start()

    order_store.update_eta("O1", 10, 2.0)

    assert refetches == [1]
    watcher.stop()
