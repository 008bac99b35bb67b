"""Tests for SnapshotBroadcaster delivery rules.

- No replay: late subscribers only see later publishes; ``last()`` gives the
  current value.
- Synchronous, ordered delivery on the publishing thread.
- A raising handler is logged and skipped; the others still receive.
- Unsubscribing during dispatch is safe.
"""

from __future__ import annotations

import logging
import threading

import pytest

from packages.coinmarket.broadcaster import SnapshotBroadcaster


class TestSubscription:
    def test_tokens_are_unique_and_start_at_one(self):
        b = SnapshotBroadcaster("t")
        t1 = b.subscribe(lambda v: None)
        t2 = b.subscribe(lambda v: None)
        assert t1 == 1
        assert t2 == 2
        assert b.subscriber_count == 2

    def test_non_callable_handler_rejected(self):
        b = SnapshotBroadcaster("t")
        with pytest.raises(TypeError):
            b.subscribe("not a function")

    def test_unsubscribe_unknown_token_returns_false(self):
        b = SnapshotBroadcaster("t")
        assert b.unsubscribe(99) is False

    def test_unsubscribed_handler_receives_nothing(self):
        b = SnapshotBroadcaster("t")
        seen = []
        token = b.subscribe(seen.append)
        assert b.unsubscribe(token) is True
        b.publish(1)
        assert seen == []

    def test_clear_drops_everyone(self):
        b = SnapshotBroadcaster("t")
        b.subscribe(lambda v: None)
        b.subscribe(lambda v: None)
        b.clear()
        assert b.subscriber_count == 0


class TestDelivery:
    def test_no_replay_for_late_subscriber(self):
        b = SnapshotBroadcaster("t")
        b.publish("first")
        seen = []
        b.subscribe(seen.append)
        assert seen == []
        b.publish("second")
        assert seen == ["second"]

    def test_last_value_available_without_subscribing(self):
        b = SnapshotBroadcaster("t")
        assert b.last() is None
        assert b.has_value is False
        b.publish("a")
        b.publish("b")
        assert b.last() == "b"
        assert b.has_value is True

    def test_handlers_called_in_registration_order(self):
        b = SnapshotBroadcaster("t")
        calls = []
        b.subscribe(lambda v: calls.append(("first", v)))
        b.subscribe(lambda v: calls.append(("second", v)))
        b.publish(7)
        assert calls == [("first", 7), ("second", 7)]

    def test_delivery_runs_on_publishing_thread(self):
        b = SnapshotBroadcaster("t")
        threads = []
        b.subscribe(lambda v: threads.append(threading.current_thread()))
        worker = threading.Thread(target=b.publish, args=(1,))
        worker.start()
        worker.join()
        assert threads == [worker]

    def test_publish_returns_delivered_count(self):
        b = SnapshotBroadcaster("t")
        b.subscribe(lambda v: None)
        b.subscribe(lambda v: None)
        assert b.publish(1) == 2

    def test_stage_updates_last_without_notifying(self):
        b = SnapshotBroadcaster("t")
        seen = []
        b.subscribe(seen.append)
        b.stage("x")
        assert b.last() == "x"
        assert b.has_value is True
        assert seen == []

    def test_dispatch_delivers_without_touching_last(self):
        b = SnapshotBroadcaster("t")
        seen = []
        b.subscribe(seen.append)
        b.stage("newer")
        assert b.dispatch("older") == 1
        assert seen == ["older"]
        assert b.last() == "newer"


class TestFaultIsolation:
    def test_raising_handler_does_not_block_others(self, caplog):
        b = SnapshotBroadcaster("prices")
        seen = []

        def boom(_value):
            raise RuntimeError("subscriber bug")

        b.subscribe(boom)
        b.subscribe(seen.append)

        with caplog.at_level(logging.ERROR, logger="packages.coinmarket.broadcaster"):
            delivered = b.publish("snap")

        assert seen == ["snap"]
        assert delivered == 1
        assert b.failure_count == 1
        assert "prices: subscriber 1 raised" in caplog.text

    def test_publisher_never_sees_handler_exception(self):
        b = SnapshotBroadcaster("t")
        b.subscribe(lambda v: 1 / 0)
        b.publish(1)
        b.publish(2)
        assert b.failure_count == 2
        assert b.last() == 2


class TestUnsubscribeDuringDispatch:
    def test_handler_can_unsubscribe_itself(self):
        b = SnapshotBroadcaster("t")
        seen = []
        tokens = {}

        def once(value):
            seen.append(value)
            b.unsubscribe(tokens["once"])

        tokens["once"] = b.subscribe(once)
        b.publish(1)
        b.publish(2)
        assert seen == [1]

    def test_removing_a_later_handler_mid_publish_is_safe(self):
        b = SnapshotBroadcaster("t")
        later_seen = []
        tokens = {}

        def remover(_value):
            b.unsubscribe(tokens["later"])

        b.subscribe(remover)
        tokens["later"] = b.subscribe(later_seen.append)

        b.publish(1)  # in-flight dispatch may still reach "later"
        b.publish(2)
        assert 2 not in later_seen
        assert b.subscriber_count == 1
