"""
Unit tests for change-feed normalisation, reconnection and the local broker.
"""

import asyncio

from ebf.feed import Broker, ChangeEvent, ChangeFeed, Synchronizer, normalize_event
from ebf.models import ChangeKind
from ebf.state import AppState
from ebf.store import EntityStore


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeSource:
    """Each listen() call plays the next batch; exceptions in a batch are raised."""

    def __init__(self, batches):
        self.batches = list(batches)
        self.connects = 0

    async def listen(self, tables):
        self.connects += 1
        if not self.batches:
            await asyncio.Event().wait()
        for item in self.batches.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


class EmptyRemote:
    async def fetch_all(self, table):
        return []


async def wait_until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(poll(), timeout)


def raw(kind, table="stocks", **row):
    side = "old" if kind == "DELETE" else "new"
    return {"eventType": kind, "table": table, side: row}


# ── Tests: normalize_event ───────────────────────────────────────────

def test_normalize_service_shape():
    event = normalize_event(raw("UPDATE", id="s1", quantity=3))
    assert event == ChangeEvent(ChangeKind.UPDATE, "stocks", {"id": "s1", "quantity": 3})


def test_delete_uses_old_row():
    event = normalize_event({"eventType": "DELETE", "table": "stocks", "new": {}, "old": {"id": "s1"}})
    assert event.kind == ChangeKind.DELETE
    assert event.payload == {"id": "s1"}


def test_lowercase_type_and_payload_key():
    event = normalize_event({"type": "insert", "table": "clients", "payload": {"id": "c1"}})
    assert event.kind == ChangeKind.INSERT and event.table == "clients"


def test_unusable_payloads_are_none():
    assert normalize_event("garbage") is None
    assert normalize_event({"eventType": "TRUNCATE", "table": "stocks", "new": {"id": "1"}}) is None
    assert normalize_event({"eventType": "INSERT", "table": "patients", "new": {"id": "1"}}) is None
    assert normalize_event({"eventType": "INSERT", "table": "stocks", "new": {}}) is None


def test_change_event_passes_through():
    event = ChangeEvent(ChangeKind.INSERT, "stocks", {"id": "s1"})
    assert normalize_event(event) is event


# ── Tests: ChangeFeed ────────────────────────────────────────────────

def test_feed_reconnects_after_connection_loss():
    async def scenario():
        source = FakeSource([
            [raw("INSERT", id="s1"), ConnectionError("socket closed")],
            [raw("INSERT", id="s2")],
        ])
        feed = ChangeFeed(source, ["stocks"], reconnect_delay=0)
        received = []
        sub = feed.subscribe(received.append)
        await wait_until(lambda: len(received) == 2)
        sub.cancel()
        await sub.wait_closed()
        return received, feed, sub

    received, feed, sub = asyncio.run(scenario())
    assert [e.payload["id"] for e in received] == ["s1", "s2"]
    assert feed.connections >= 2
    assert not sub.active


def test_feed_survives_unexpected_source_error(caplog):
    async def scenario():
        source = FakeSource([
            [ValueError("bad frame")],
            [raw("INSERT", id="s2")],
        ])
        feed = ChangeFeed(source, ["stocks"], reconnect_delay=0)
        received = []
        sub = feed.subscribe(received.append)
        await wait_until(lambda: received)
        alive = sub.active
        sub.cancel()
        await sub.wait_closed()
        return received, feed, alive

    received, feed, alive = asyncio.run(scenario())
    assert alive
    assert [e.payload["id"] for e in received] == ["s2"]
    assert feed.failures == 1
    assert "Change feed source failed" in caplog.text


def test_feed_skips_malformed_events_and_handler_errors():
    async def scenario():
        source = FakeSource([["garbage", raw("INSERT", id="bad"), raw("INSERT", id="ok")]])
        feed = ChangeFeed(source, ["stocks"], reconnect_delay=0)
        received = []

        def handler(event):
            if event.payload["id"] == "bad":
                raise RuntimeError("cannot apply")
            received.append(event)

        sub = feed.subscribe(handler)
        await wait_until(lambda: received)
        sub.cancel()
        await sub.wait_closed()
        return received, feed

    received, feed = asyncio.run(scenario())
    assert [e.payload["id"] for e in received] == ["ok"]
    assert feed.skipped == 2


# ── Tests: Broker + Synchronizer ─────────────────────────────────────

def test_broker_filters_tables():
    async def scenario():
        broker = Broker()
        got = []

        async def consume():
            async for event in broker.listen(["stocks"]):
                got.append(event)

        task = asyncio.create_task(consume())
        await wait_until(lambda: broker.listeners == 1)
        broker.publish(raw("INSERT", table="clients", id="c1"))
        broker.publish(raw("INSERT", table="stocks", id="s1"))
        await wait_until(lambda: got)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return got, broker

    got, broker = asyncio.run(scenario())
    assert [e["table"] for e in got] == ["stocks"]
    assert broker.listeners == 0


def test_synchronizer_applies_events_until_stopped():
    async def scenario():
        broker = Broker()
        store = EntityStore(EmptyRemote(), AppState())
        sync = Synchronizer(store, ChangeFeed(broker, store.tables, reconnect_delay=0))
        sync.start()
        await wait_until(lambda: broker.listeners == 1)

        broker.publish(raw("INSERT", id="s1", name="Câble"))
        broker.publish(raw("UPDATE", id="s1", name="Câble 2.5"))
        await wait_until(lambda: store.get("stocks", "s1") and store.get("stocks", "s1").name == "Câble 2.5")

        await sync.stop()
        broker.publish(raw("DELETE", id="s1"))
        await asyncio.sleep(0.01)
        return store, broker, sync

    store, broker, sync = asyncio.run(scenario())
    assert store.get("stocks", "s1") is not None
    assert broker.listeners == 0
    assert sync.subscription is None
