"""
Unit tests for the demo data generator.
"""

import asyncio
from datetime import date

from sqlalchemy import create_engine

from ebf.database import SqlRemoteStore
from ebf.metrics import generate_auto_ticker
from ebf.models import DailyStat, record_from_row
from ebf.seed import ACCOUNTS, generate_demo_data, seed_database

TODAY = date(2024, 5, 15)


def test_generation_is_deterministic():
    assert generate_demo_data(TODAY, seed=7) == generate_demo_data(TODAY, seed=7)


def test_daily_stats_are_consistent_and_unique():
    stats = generate_demo_data(TODAY, days=14)["daily_stats"]
    keys = {(s["date"], s["site"]) for s in stats}
    assert len(keys) == len(stats)
    for s in stats:
        assert s["profit"] == s["revenue"] - s["expenses"]
        assert date.fromisoformat(s["date"]).weekday() != 6
    assert any(s["date"] == TODAY.isoformat() for s in stats)


def test_every_role_has_an_account_and_team_rows_follow():
    data = generate_demo_data(TODAY)
    assert [p["email"] for p in data["profiles"]] == [a[0] for a in ACCOUNTS]
    team_ids = {t["id"] for t in data["technicians"]}
    for p in data["profiles"]:
        assert (p["id"] in team_ids) is (p["role"] != "Visiteur")


def test_rows_build_valid_records():
    data = generate_demo_data(TODAY)
    for table, rows in data.items():
        for row in rows:
            assert record_from_row(table, row).key[0] is not None
    stats = [DailyStat.from_row(r) for r in data["daily_stats"]]
    messages = generate_auto_ticker(stats, TODAY)
    assert messages
    assert all(m.id.startswith("auto-") for m in messages)


def test_seed_database(tmp_path):
    remote = SqlRemoteStore(create_engine(f"sqlite:///{tmp_path / 'ebf.db'}", future=True))
    remote.create_all()
    data = generate_demo_data(TODAY, days=7)
    counts = asyncio.run(seed_database(remote, data))
    assert counts["stocks"] == len(data["stocks"])
    assert len(asyncio.run(remote.fetch_all("daily_stats"))) == counts["daily_stats"]
