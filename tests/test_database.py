"""
Unit tests for the SQL remote store on a temporary SQLite database.
"""

import asyncio

import pytest
from sqlalchemy import create_engine, inspect

from ebf.database import METADATA, SqlRemoteStore, init_engine
from ebf.errors import RemoteRejection
from ebf.models import RECORD_TYPES


# ── Helpers / Fakes ──────────────────────────────────────────────────

class RecordingBroker:
    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)


@pytest.fixture
def remote(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'ebf.db'}", future=True)
    store = SqlRemoteStore(engine, broker=RecordingBroker())
    store.create_all()
    return store


# ── Tests: schema ────────────────────────────────────────────────────

def test_schema_has_one_table_per_record_type(remote):
    assert set(METADATA.tables) == set(RECORD_TYPES)
    assert set(inspect(remote.engine).get_table_names()) == set(RECORD_TYPES)


def test_schema_columns_follow_persisted_names():
    interventions = METADATA.tables["interventions"]
    assert "clientPhone" in interventions.c
    assert "is_manual" not in METADATA.tables["ticker_messages"].c
    assert [c.name for c in METADATA.tables["daily_stats"].primary_key] == ["date", "site"]


def test_init_engine_reports_connection(tmp_path, capsys):
    engine = init_engine(f"sqlite:///{tmp_path / 'x.db'}")
    assert engine is not None
    assert "[init] Connected to DB." in capsys.readouterr().out


# ── Tests: reads / writes ────────────────────────────────────────────

def test_insert_assigns_id_and_publishes(remote):
    row = asyncio.run(remote.insert("clients", {"name": "SODECI", "site": "Abidjan", "extra": "dropped"}))
    assert row["id"]
    assert row["name"] == "SODECI"
    assert "extra" not in row
    assert remote.broker.events == [{"eventType": "INSERT", "table": "clients", "new": row, "old": {}}]
    assert asyncio.run(remote.fetch_all("clients")) == [row]


def test_get_and_find(remote):
    asyncio.run(remote.insert("profiles", {"id": "u1", "email": "awa@ebf.ci", "role": "Admin"}))
    assert asyncio.run(remote.get("profiles", {"id": "u1"}))["role"] == "Admin"
    assert asyncio.run(remote.get("profiles", {"id": "nope"})) is None
    assert asyncio.run(remote.find("profiles", "email", "awa@ebf.ci"))["id"] == "u1"


def test_fetch_all_ordering(remote):
    async def scenario():
        for i, created in enumerate(["2024-05-01", "2024-05-03", "2024-05-02"]):
            await remote.insert("notifications", {"id": f"n{i}", "title": "t", "created_at": created})
        for order in (3, 1, 2):
            await remote.insert("ticker_messages", {"text": str(order), "display_order": order})
        return await remote.fetch_all("notifications"), await remote.fetch_all("ticker_messages")

    notifs, ticker = asyncio.run(scenario())
    assert [n["created_at"] for n in notifs] == ["2024-05-03", "2024-05-02", "2024-05-01"]
    assert [t["text"] for t in ticker] == ["1", "2", "3"]


def test_update_returns_full_row(remote):
    asyncio.run(remote.insert("stocks", {"id": "s1", "name": "Câble", "quantity": 45, "threshold": 50}))
    row = asyncio.run(remote.update("stocks", {"id": "s1"}, {"quantity": 60, "id": "ignored"}))
    assert row["id"] == "s1"
    assert row["quantity"] == 60
    assert row["name"] == "Câble"
    assert remote.broker.events[-1]["eventType"] == "UPDATE"


def test_daily_stats_composite_key(remote):
    async def scenario():
        await remote.insert("daily_stats", {"date": "2024-05-15", "site": "Abidjan", "revenue": 100})
        await remote.insert("daily_stats", {"date": "2024-05-15", "site": "Bouaké", "revenue": 200})
        await remote.update("daily_stats", {"date": "2024-05-15", "site": "Bouaké"}, {"revenue": 250})
        return await remote.fetch_all("daily_stats")

    rows = asyncio.run(scenario())
    assert {r["site"]: r["revenue"] for r in rows} == {"Abidjan": 100, "Bouaké": 250}


def test_duplicate_key_is_a_remote_rejection(remote):
    asyncio.run(remote.insert("clients", {"id": "c1", "name": "A"}))
    with pytest.raises(RemoteRejection):
        asyncio.run(remote.insert("clients", {"id": "c1", "name": "B"}))
    assert len(remote.broker.events) == 1


def test_missing_rows_are_rejected(remote):
    with pytest.raises(RemoteRejection):
        asyncio.run(remote.update("clients", {"id": "nope"}, {"name": "X"}))
    with pytest.raises(RemoteRejection):
        asyncio.run(remote.delete("clients", {"id": "nope"}))
    assert remote.broker.events == []


def test_delete_publishes_key(remote):
    asyncio.run(remote.insert("clients", {"id": "c1", "name": "A"}))
    asyncio.run(remote.delete("clients", {"id": "c1"}))
    assert remote.broker.events[-1] == {"eventType": "DELETE", "table": "clients", "new": {}, "old": {"id": "c1"}}
    assert asyncio.run(remote.fetch_all("clients")) == []


def test_unknown_table(remote):
    with pytest.raises(RemoteRejection, match="Table inconnue"):
        asyncio.run(remote.fetch_all("patients"))
